import threading
from dataclasses import dataclass

import pytest

from voice_mixdown.audio.resources import ResourceHandle, ResourceManager
from voice_mixdown.errors import DecodeError, HandleInvalidError


@dataclass
class _Owner:
    clip_id: str
    name: str
    source: bytes
    handle: ResourceHandle | None


def _accept(data: bytes) -> object:
    return data


def _reject(data: bytes) -> object:
    raise DecodeError("not audio")


def test_release_frees_exactly_once() -> None:
    manager = ResourceManager()
    handle = manager.create(b"abc", kind="clip", mime_type="audio/wav")

    assert manager.resolve(handle) == b"abc"
    assert manager.release(handle) is True
    assert manager.release(handle) is False
    assert manager.release(None) is False
    with pytest.raises(HandleInvalidError):
        manager.resolve(handle)


def test_retain_keeps_entry_alive_until_last_release() -> None:
    manager = ResourceManager()
    handle = manager.create(b"abc", kind="export")
    manager.retain(handle)

    assert manager.ref_count(handle) == 2
    assert manager.release(handle) is False
    assert manager.validate(handle)
    assert manager.release(handle) is True
    assert not manager.validate(handle)
    assert manager.ref_count(handle) == 0


def test_active_handles_lists_live_entries() -> None:
    manager = ResourceManager()
    first = manager.create(b"12345", kind="clip")
    manager.create(b"12", kind="composition")
    manager.release(first)

    handles = manager.active_handles()

    assert [(info.kind, info.size_bytes, info.ref_count) for info in handles] == [("composition", 2, 1)]
    assert manager.find(first.handle_id) is None
    assert manager.find(handles[0].handle_id) is not None
    manager.log_active_handles()


def test_recover_swaps_in_fresh_handle() -> None:
    manager = ResourceManager()
    owner = _Owner("c1", "take.wav", b"source-bytes", None)
    owner.handle = manager.create(owner.source, kind="clip", mime_type="audio/wav")
    old = owner.handle
    manager.evict(old)

    fresh = manager.recover(owner, _accept)

    assert owner.handle is fresh
    assert fresh.handle_id != old.handle_id
    assert fresh.mime_type == "audio/wav"
    assert manager.resolve(fresh) == b"source-bytes"
    assert len(manager.active_handles()) == 1


def test_recover_releases_fresh_handle_when_trial_decode_fails() -> None:
    manager = ResourceManager()
    owner = _Owner("c1", "broken.wav", b"garbage", None)
    owner.handle = manager.create(owner.source, kind="clip")
    manager.evict(owner.handle)
    evicted = owner.handle

    with pytest.raises(HandleInvalidError, match="broken.wav"):
        manager.recover(owner, _reject)

    assert owner.handle is evicted
    assert manager.active_handles() == []


def test_recover_releases_previous_live_handle() -> None:
    manager = ResourceManager()
    owner = _Owner("c1", "take.wav", b"bytes", None)
    owner.handle = manager.create(owner.source, kind="clip")
    old = owner.handle

    manager.recover(owner, _accept)

    assert not manager.validate(old)
    assert len(manager.active_handles()) == 1


def test_concurrent_recoveries_leave_one_live_handle() -> None:
    manager = ResourceManager()
    owner = _Owner("c1", "take.wav", b"source-bytes", None)
    owner.handle = manager.create(owner.source, kind="clip")
    manager.evict(owner.handle)
    barrier = threading.Barrier(2)
    results: list[ResourceHandle] = []

    def trial(data: bytes) -> object:
        barrier.wait(timeout=5.0)
        return data

    def run() -> None:
        results.append(manager.recover(owner, trial))

    workers = [threading.Thread(target=run) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=10.0)

    assert len(results) == 2
    assert results[0] is results[1] is owner.handle
    assert manager.validate(owner.handle)
    assert [info.kind for info in manager.active_handles()] == ["clip"]


def test_sweep_reports_recovered_and_failed_owners() -> None:
    manager = ResourceManager()
    healthy = _Owner("a", "a.wav", b"a", None)
    healthy.handle = manager.create(healthy.source, kind="clip")
    evicted = _Owner("b", "b.wav", b"b", None)
    evicted.handle = manager.create(evicted.source, kind="clip")
    manager.evict(evicted.handle)
    sourceless = _Owner("c", "c.wav", b"", None)

    report = manager.sweep([healthy, evicted, sourceless], _accept)

    assert report.checked == 3
    assert report.recovered == ["b"]
    assert list(report.failed) == ["c"]
    assert not report.ok
    assert manager.validate(evicted.handle)
