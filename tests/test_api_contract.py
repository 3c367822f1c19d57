import base64
import io
import wave

from fastapi.testclient import TestClient

from voice_mixdown.api.server import create_app
from voice_mixdown.audio.buffer import PcmBuffer
from voice_mixdown.audio.decoder import AudioEncoding, DecodedAudio, DecoderAdapter
from voice_mixdown.audio.output_graph import TrackStage
from voice_mixdown.config import StudioConfig
from voice_mixdown.errors import DecodeError
from voice_mixdown.studio.service import StudioService


class _FakeUnit:
    def start(self, when: float, duration: float | None = None) -> None:
        pass

    def stop(self) -> None:
        pass


class _FakeGraph:
    sample_rate = 8000

    def current_time(self) -> float:
        return 0.0

    def attach(self, stage: TrackStage) -> None:
        pass

    def detach(self, stage: TrackStage) -> None:
        pass

    def create_playback_unit(self, buffer: PcmBuffer, stage: TrackStage, unit_gain: float = 1.0) -> _FakeUnit:
        return _FakeUnit()


class _FailingDecoder(DecoderAdapter):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def decode(self, data: bytes, encoding: AudioEncoding | str | None = None) -> DecodedAudio:
        if self.fail:
            raise DecodeError("corrupt frame")
        return super().decode(data, encoding)


def _wav_b64(duration_sec: float = 0.25, amplitude: float = 0.3, sample_rate: int = 8000) -> str:
    value = int(amplitude * 32767).to_bytes(2, "little", signed=True)
    target = io.BytesIO()
    with wave.open(target, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(value * int(sample_rate * duration_sec))
    return base64.b64encode(target.getvalue()).decode("ascii")


def _client(decoder: DecoderAdapter | None = None) -> TestClient:
    config = StudioConfig(sample_rate=8000, fallback_duration_sec=1.0, decode_timeout_sec=5.0, workers=2)
    return TestClient(create_app(StudioService(config=config, decoder=decoder, graph_factory=_FakeGraph)))


def _upload(client: TestClient, track: str, *names: str) -> list[str]:
    response = client.post(
        f"/v1/tracks/{track}/clips",
        json={"files": [{"name": name, "content": _wav_b64()} for name in names]},
    )
    assert response.status_code == 200
    return [clip["clip_id"] for clip in response.json()["added"]]


def test_root_and_favicon_endpoints() -> None:
    client = _client()

    root_response = client.get("/")
    assert root_response.status_code == 200
    assert root_response.json()["status"] == "ok"
    assert root_response.json()["docs"] == "/docs"

    favicon_response = client.get("/favicon.ico")
    assert favicon_response.status_code == 204


def test_upload_reports_added_and_failed_files() -> None:
    client = _client()

    response = client.post(
        "/v1/tracks/voice/clips",
        json={
            "files": [
                {"name": "take.wav", "content": _wav_b64()},
                {"name": "junk.bin", "content": base64.b64encode(b"junk bytes").decode("ascii")},
            ]
        },
    )
    body = response.json()

    assert response.status_code == 200
    assert [clip["name"] for clip in body["added"]] == ["take.wav"]
    assert body["added"][0]["gain"] == 1.0
    assert body["failures"][0]["name"] == "junk.bin"

    track = client.get("/v1/tracks/voice").json()
    assert track["volume"] == 70.0
    assert track["pitch"] == 100.0
    assert [clip["position"] for clip in track["clips"]] == [0]


def test_invalid_base64_and_unknown_track_are_rejected() -> None:
    client = _client()

    bad = client.post("/v1/tracks/voice/clips", json={"files": [{"name": "x.wav", "content": "@@not-base64@@"}]})
    unknown = client.get("/v1/tracks/drums")

    assert bad.status_code == 400
    assert unknown.status_code == 422


def test_levels_reorder_and_clip_gain() -> None:
    client = _client()
    first, second = _upload(client, "voice", "a.wav", "b.wav")

    levels = client.patch("/v1/tracks/voice/levels", json={"volume": 50, "pitch": 150, "muted": True})
    assert levels.status_code == 200
    assert levels.json()["volume"] == 50.0
    assert levels.json()["pitch"] == 150.0
    assert levels.json()["muted"] is True

    music_pitch = client.patch("/v1/tracks/music/levels", json={"pitch": 120})
    assert music_pitch.status_code == 400

    reordered = client.post("/v1/tracks/voice/reorder", json={"from_index": 1, "to_index": 0})
    assert [clip["clip_id"] for clip in reordered.json()["clips"]] == [second, first]

    gain = client.put(f"/v1/clips/{first}/gain", json={"gain": 2.5})
    assert gain.status_code == 200
    assert {clip["clip_id"]: clip["gain"] for clip in gain.json()["clips"]}[first] == 2.5

    assert client.post("/v1/tracks/voice/reorder", json={"from_index": 0, "to_index": 5}).status_code == 400
    assert client.put("/v1/clips/missing/gain", json={"gain": 1.0}).status_code == 404


def test_rejected_levels_patch_changes_nothing() -> None:
    client = _client()

    response = client.patch("/v1/tracks/music/levels", json={"volume": 50, "pitch": 120})

    assert response.status_code == 400
    assert client.get("/v1/tracks/music").json()["volume"] == 30.0


def test_delete_clip() -> None:
    client = _client()
    clip_id = _upload(client, "music", "bed.wav")[0]

    assert client.delete(f"/v1/clips/{clip_id}").status_code == 204
    assert client.delete(f"/v1/clips/{clip_id}").status_code == 404
    assert client.get("/v1/tracks/music").json()["clips"] == []


def test_compose_and_download_audio() -> None:
    client = _client()
    assert client.get("/v1/composition/audio").status_code == 404
    _upload(client, "voice", "a.wav")

    composed = client.post("/v1/composition")
    body = composed.json()

    assert composed.status_code == 200
    assert body["state"] == "ready"
    assert body["duration_sec"] == 0.25
    assert client.get("/v1/composition").json()["composition_id"] == body["composition_id"]
    audio = client.get("/v1/composition/audio")
    assert audio.status_code == 200
    assert audio.headers["content-type"] == "audio/wav"
    assert audio.content[:4] == b"RIFF"


def test_compose_without_clips_is_conflict() -> None:
    client = _client()

    response = client.post("/v1/composition")

    assert response.status_code == 409
    assert client.get("/v1/composition").json()["state"] == "failed"


def test_export_and_download_artifact() -> None:
    client = _client()
    _upload(client, "voice", "a.wav")

    response = client.post("/v1/export", json={"formats": ["wav", "aac"]})
    artifacts = response.json()["artifacts"]

    assert response.status_code == 200
    assert [(item["requested"], item["container"]) for item in artifacts] == [("wav", "wav"), ("aac", "wav")]
    download = client.get(f"/v1/resources/{artifacts[0]['handle_id']}")
    assert download.status_code == 200
    assert artifacts[0]["file_name"] in download.headers["content-disposition"]
    assert download.content[:4] == b"RIFF"
    assert client.get("/v1/resources/unknown").status_code == 404


def test_export_without_voice_is_conflict_but_playback_starts() -> None:
    client = _client()
    _upload(client, "music", "bed.wav")

    export = client.post("/v1/export", json={"formats": ["wav"]})
    play = client.post("/v1/playback/play")

    assert export.status_code == 409
    assert play.status_code == 200
    assert play.json()["state"] == "playing"
    assert play.json()["total_duration_sec"] == 1.0
    stopped = client.post("/v1/playback/stop")
    assert stopped.json()["state"] == "idle"
    assert client.get("/v1/playback").json()["position_sec"] == 0.0


def test_play_with_no_clips_is_conflict() -> None:
    client = _client()

    assert client.post("/v1/playback/play").status_code == 409


def test_normalize_recover_and_reset() -> None:
    client = _client()
    _upload(client, "voice", "a.wav", "b.wav")

    normalized = client.post("/v1/voice/normalize")
    recovered = client.post("/v1/recover")
    reset = client.post("/v1/reset")

    assert normalized.status_code == 200
    assert sorted(normalized.json()["gains"].values()) == [1.0, 1.0]
    assert recovered.json() == {"checked": 2, "recovered": [], "failed": {}}
    assert reset.status_code == 204
    assert client.get("/v1/tracks/voice").json()["clips"] == []
    assert client.get("/v1/composition").json()["state"] == "absent"


def test_normalize_decode_failure_is_bad_request() -> None:
    decoder = _FailingDecoder()
    client = _client(decoder)
    _upload(client, "voice", "a.wav")
    decoder.fail = True

    response = client.post("/v1/voice/normalize")

    assert response.status_code == 400
    assert "corrupt frame" in response.json()["detail"]
