# services/api/imagecraft/work_preservation.py

"""
Single-slot handoff record that carries an unsaved processing result across
the sign-in redirect. Read it back after the redirect, restore, then clear.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis import Redis

LOG = logging.getLogger("imagecraft.handoff")

STORAGE_KEY = "imagecraft_processing_state"
EXPIRY_MS = 30 * 60 * 1000

ProcessingKind = Literal[
    "compress",
    "optimize",
    "background-remove",
    "format-convert",
    "social-resizer",
    "passport-maker",
]


class ProcessingState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    processed_result_ref: str = Field(alias="processedResultRef", min_length=1)
    original_size_bytes: int = Field(alias="originalSizeBytes", ge=0)
    result_size_bytes: int = Field(alias="resultSizeBytes", ge=0)
    source_file_name: str = Field(default="", alias="sourceFileName")
    target_size_kb: Optional[int] = Field(default=None, alias="targetSizeKB", gt=0)
    processing_kind: ProcessingKind = Field(alias="processingKind")
    created_at_epoch_ms: Optional[int] = Field(default=None, alias="createdAtEpochMs")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# -----------------------------
# Slots
# -----------------------------

class Slot:
    def get(self) -> Optional[str]:
        raise NotImplementedError

    def set(self, value: str) -> None:
        raise NotImplementedError

    def delete(self) -> None:
        raise NotImplementedError

    def sweep(self, cutoff_ms: int) -> int:
        """Drop abandoned entries stamped at or before `cutoff_ms`. Returns how many went."""
        return 0


class MemorySlot(Slot):
    """Process-local slot. Several slots may share one backing dict."""

    def __init__(self, key: str = STORAGE_KEY, backing: Optional[Dict[str, str]] = None):
        self.key = key
        self._data = backing if backing is not None else {}

    def get(self) -> Optional[str]:
        return self._data.get(self.key)

    def set(self, value: str) -> None:
        self._data[self.key] = value

    def delete(self) -> None:
        self._data.pop(self.key, None)

    def sweep(self, cutoff_ms: int) -> int:
        # Redis expires keys on its own; the shared dict only shrinks here
        stale = []
        for k, raw in list(self._data.items()):
            created = _stamp(raw)
            if created is None or created <= cutoff_ms:
                stale.append(k)
        for k in stale:
            self._data.pop(k, None)
        return len(stale)


def _stamp(raw: str) -> Optional[int]:
    try:
        value = json.loads(raw).get("createdAtEpochMs")
    except (ValueError, AttributeError):
        return None
    return value if isinstance(value, int) else None


class RedisSlot(Slot):
    def __init__(self, redis: Redis, key: str, ttl_sec: int):
        self.redis = redis
        self.key = key
        self.ttl_sec = int(ttl_sec)

    def get(self) -> Optional[str]:
        return self.redis.get(self.key)

    def set(self, value: str) -> None:
        # Redis expiry only garbage-collects abandoned slots; age is still checked on read.
        self.redis.set(self.key, value, ex=self.ttl_sec + 60)

    def delete(self) -> None:
        self.redis.delete(self.key)


class FileSlot(Slot):
    """JSON file slot; the Python client's stand-in for browser localStorage."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def get(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, value: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, self.path)

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


# -----------------------------
# Store
# -----------------------------

def _now_ms() -> int:
    return int(time.time() * 1000)


class HandoffStore:
    def __init__(
        self,
        slot: Slot,
        *,
        expiry_ms: int = EXPIRY_MS,
        clock: Callable[[], int] = _now_ms,
    ):
        self.slot = slot
        self.expiry_ms = int(expiry_ms)
        self._clock = clock

    def save(self, state: ProcessingState) -> None:
        """Overwrites whatever is in the slot. Failures are logged, never raised."""
        try:
            now = self._clock()
            swept = self.slot.sweep(now - self.expiry_ms)
            if swept:
                LOG.info("swept %s expired processing states", swept)
            stamped = state.model_copy(update={"created_at_epoch_ms": now})
            self.slot.set(stamped.to_json())
        except Exception:
            LOG.exception("failed to save processing state")

    def load(self) -> Optional[ProcessingState]:
        try:
            raw = self.slot.get()
        except Exception:
            LOG.exception("failed to read processing state")
            self.clear()
            return None
        if not raw:
            return None

        try:
            state = ProcessingState.model_validate_json(raw)
        except (ValidationError, ValueError):
            LOG.warning("discarding unreadable processing state")
            self.clear()
            return None

        created = state.created_at_epoch_ms
        if created is None or self._clock() - created >= self.expiry_ms:
            LOG.info("discarding expired processing state kind=%s", state.processing_kind)
            self.clear()
            return None
        return state

    def clear(self) -> None:
        try:
            self.slot.delete()
        except Exception:
            LOG.exception("failed to clear processing state")

    def exists(self) -> bool:
        return self.load() is not None

    def consume(self) -> Optional[ProcessingState]:
        """Read-once: the state is gone after this returns it."""
        state = self.load()
        if state is not None:
            self.clear()
        return state


# -----------------------------
# Server-side slots, one per anonymous session
# -----------------------------

_memory_backing: Dict[str, str] = {}


def session_slot_key(session_id: str) -> str:
    return f"{STORAGE_KEY}:{session_id}"


def handoff_store_for(session_id: str, redis: Optional[Redis] = None, expiry_ms: int = EXPIRY_MS) -> HandoffStore:
    key = session_slot_key(session_id)
    if redis is not None:
        slot: Slot = RedisSlot(redis, key, ttl_sec=expiry_ms // 1000)
    else:
        slot = MemorySlot(key, _memory_backing)
    return HandoffStore(slot, expiry_ms=expiry_ms)
