"""Reference-counted arena of derived binary artifacts.

Every decoded-for-replay source and every encoded export is stored as an entry
keyed by handle id. Callers hold :class:`ResourceHandle` values; the bytes are
freed exactly when the count reaches zero, and any later ``resolve`` raises
:class:`HandleInvalidError`. ``evict`` models the hosting environment dropping
entries behind the owner's back, which ``recover`` repairs from the original
byte source.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol
from uuid import uuid4

from voice_mixdown.errors import DecodeError, HandleInvalidError, UnsupportedEnvironmentError

_LOGGER = logging.getLogger("voice_mixdown.resources")

TrialDecode = Callable[[bytes], object]


@dataclass(frozen=True, slots=True)
class ResourceHandle:
    handle_id: str
    kind: str
    mime_type: str = "application/octet-stream"

    @property
    def uri(self) -> str:
        return f"mem://{self.kind}/{self.handle_id}"


@dataclass(slots=True)
class ResourceEntry:
    handle: ResourceHandle
    data: bytes = field(repr=False)
    ref_count: int = 1


@dataclass(frozen=True, slots=True)
class HandleInfo:
    handle_id: str
    kind: str
    ref_count: int
    size_bytes: int


class RecoverableOwner(Protocol):
    """Anything that owns one handle and keeps the bytes it was derived from."""

    clip_id: str
    name: str
    source: bytes
    handle: ResourceHandle | None


@dataclass(slots=True)
class SweepReport:
    checked: int = 0
    recovered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ResourceManager:
    def __init__(self) -> None:
        self._entries: dict[str, ResourceEntry] = {}
        self._lock = threading.RLock()

    def create(self, data: bytes, kind: str, mime_type: str = "application/octet-stream") -> ResourceHandle:
        handle = ResourceHandle(handle_id=str(uuid4()), kind=kind, mime_type=mime_type)
        with self._lock:
            self._entries[handle.handle_id] = ResourceEntry(handle=handle, data=bytes(data))
        _LOGGER.debug("created %s (%d bytes)", handle.uri, len(data))
        return handle

    def retain(self, handle: ResourceHandle) -> ResourceHandle:
        with self._lock:
            entry = self._require(handle)
            entry.ref_count += 1
        return handle

    def release(self, handle: ResourceHandle | None) -> bool:
        """Drop one reference; returns True when this call freed the entry."""
        if handle is None:
            return False
        with self._lock:
            entry = self._entries.get(handle.handle_id)
            if entry is None:
                return False
            entry.ref_count -= 1
            if entry.ref_count > 0:
                return False
            del self._entries[handle.handle_id]
        _LOGGER.debug("released %s", handle.uri)
        return True

    def validate(self, handle: ResourceHandle | None) -> bool:
        if handle is None:
            return False
        with self._lock:
            return handle.handle_id in self._entries

    def resolve(self, handle: ResourceHandle | None) -> bytes:
        with self._lock:
            return self._require(handle).data

    def ref_count(self, handle: ResourceHandle) -> int:
        with self._lock:
            entry = self._entries.get(handle.handle_id)
            return 0 if entry is None else entry.ref_count

    def find(self, handle_id: str) -> ResourceHandle | None:
        with self._lock:
            entry = self._entries.get(handle_id)
            return None if entry is None else entry.handle

    def evict(self, handle: ResourceHandle) -> None:
        with self._lock:
            self._entries.pop(handle.handle_id, None)
        _LOGGER.info("evicted %s", handle.uri)

    def active_handles(self) -> list[HandleInfo]:
        with self._lock:
            return [
                HandleInfo(
                    handle_id=entry.handle.handle_id,
                    kind=entry.handle.kind,
                    ref_count=entry.ref_count,
                    size_bytes=len(entry.data),
                )
                for entry in self._entries.values()
            ]

    def log_active_handles(self) -> None:
        handles = self.active_handles()
        _LOGGER.info("%d active handle(s)", len(handles))
        for info in handles:
            _LOGGER.info("  %s kind=%s refs=%d size=%d", info.handle_id, info.kind, info.ref_count, info.size_bytes)

    def recover(self, owner: RecoverableOwner, trial_decode: TrialDecode) -> ResourceHandle:
        """Re-derive ``owner.handle`` from ``owner.source`` and swap it in.

        The fresh handle is trial-decoded first and released again when that
        fails, so an owner never ends up with two live handles.
        """
        old = owner.handle
        kind = old.kind if old is not None else "clip"
        mime_type = old.mime_type if old is not None else "application/octet-stream"
        if not owner.source:
            raise HandleInvalidError(f"'{owner.name}' has no original bytes to recover from")

        fresh = self.create(owner.source, kind=kind, mime_type=mime_type)
        try:
            trial_decode(self.resolve(fresh))
        except (DecodeError, UnsupportedEnvironmentError) as exc:
            self.release(fresh)
            raise HandleInvalidError(f"recovery of '{owner.name}' failed: {exc}") from exc

        with self._lock:
            current = owner.handle
            if current is not old and self.validate(current):
                # Another recovery of the same owner won the race.
                assert current is not None
                self.release(fresh)
                return current
            owner.handle = fresh
            if current is not None:
                self.release(current)
        _LOGGER.info("recovered '%s' as %s", owner.name, fresh.uri)
        return fresh

    def sweep(self, owners: Iterable[RecoverableOwner], trial_decode: TrialDecode) -> SweepReport:
        report = SweepReport()
        for owner in owners:
            report.checked += 1
            if self.validate(owner.handle):
                continue
            try:
                self.recover(owner, trial_decode)
            except HandleInvalidError as exc:
                _LOGGER.error("%s", exc)
                report.failed[owner.clip_id] = str(exc)
                continue
            report.recovered.append(owner.clip_id)
        return report

    def _require(self, handle: ResourceHandle | None) -> ResourceEntry:
        if handle is None:
            raise HandleInvalidError("no handle")
        entry = self._entries.get(handle.handle_id)
        if entry is None:
            raise HandleInvalidError(f"handle {handle.uri} is no longer live")
        return entry
