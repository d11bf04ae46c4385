from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .data_sources import AppState, state_from_dict, state_to_dict, uid

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_state(device_id: Optional[str] = None) -> AppState:
    return state_from_dict(None, _now_iso(), device_id or uid())


@dataclass(frozen=True)
class SaveResult:
    used_fallback: bool
    saved_at: int
    source: str


class StateStore:
    """JSON file store with a second file used when the primary is unusable."""

    def __init__(self, primary: Path, fallback: Path, clock: Callable[[], float] = time.time) -> None:
        self.primary = primary
        self.fallback = fallback
        self.clock = clock

    def _read(self, path: Path) -> Optional[AppState]:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: not a JSON object", path)
            return None
        return state_from_dict(data, _now_iso(), uid())

    def load(self) -> AppState:
        for path in (self.primary, self.fallback):
            state = self._read(path)
            if state is not None:
                return state
        logger.info("No stored state found; starting empty")
        return default_state()

    def _write(self, path: Path, state: AppState) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(state_to_dict(state), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def save(self, state: AppState) -> SaveResult:
        saved_at = int(self.clock() * 1000)
        stamped = replace(
            state,
            updated_at=_now_iso(),
            meta=replace(state.meta, last_saved_at=saved_at, last_saved_with_fallback=False),
        )
        try:
            self._write(self.primary, stamped)
        except OSError as exc:
            logger.warning("Primary store %s failed (%s); writing fallback %s", self.primary, exc, self.fallback)
            meta = replace(stamped.meta, last_saved_with_fallback=True)
            self._write(self.fallback, replace(stamped, meta=meta))
            return SaveResult(used_fallback=True, saved_at=saved_at, source="fallback")
        return SaveResult(used_fallback=False, saved_at=saved_at, source="primary")


class SaveStatus(Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHED = "flushed"
    CANCELLED = "cancelled"


class SaveScheduler:
    """Debounced saves: only the latest requested snapshot is written.

    The host calls :meth:`poll` from its own loop; nothing here runs on a timer.
    """

    def __init__(self, store: StateStore, delay_ms: int = 500, clock: Callable[[], float] = time.monotonic) -> None:
        self.store = store
        self.delay = delay_ms / 1000.0
        self.clock = clock
        self.status = SaveStatus.IDLE
        self.last_result: Optional[SaveResult] = None
        self._pending: Optional[AppState] = None
        self._due_at: Optional[float] = None

    @property
    def pending(self) -> Optional[AppState]:
        return self._pending

    def request(self, state: AppState) -> None:
        self._pending = state
        self._due_at = self.clock() + self.delay
        self.status = SaveStatus.PENDING

    def poll(self) -> Optional[SaveResult]:
        if self.status is not SaveStatus.PENDING or self.clock() < self._due_at:
            return None
        return self.flush()

    def flush(self) -> Optional[SaveResult]:
        if self.status is not SaveStatus.PENDING:
            return None
        result = self.store.save(self._pending)
        self._pending = None
        self._due_at = None
        self.status = SaveStatus.FLUSHED
        self.last_result = result
        return result

    def cancel(self) -> bool:
        if self.status is not SaveStatus.PENDING:
            return False
        self._pending = None
        self._due_at = None
        self.status = SaveStatus.CANCELLED
        return True


def load_last_hash(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError:
        return None
    return data.get("last_payload_hash")


def save_last_hash(payload_hash: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"last_payload_hash": payload_hash}, indent=2))
