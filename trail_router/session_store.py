from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock
from typing import TypeVar

from .routing_errors import RoutingError
from .routing_session import RoutingSession
from .routing_source import TrailNetwork
from .settings import settings

T = TypeVar("T")


@dataclass
class _SessionEntry:
    touched_at: float
    session: RoutingSession
    lock: Lock = field(default_factory=Lock)


class SessionStore:
    """In-process routing sessions, least recently used evicted first."""

    def __init__(self, *, ttl_s: int, max_entries: int) -> None:
        self._ttl_s = max(1, int(ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._lock = Lock()
        self._items: OrderedDict[str, _SessionEntry] = OrderedDict()

        self._created = 0
        self._evictions = 0

    def _is_expired(self, entry: _SessionEntry) -> bool:
        return (time.time() - entry.touched_at) > self._ttl_s

    def create(self, network: TrailNetwork) -> RoutingSession:
        session = RoutingSession(
            graph=network.graph,
            connectivity=network.connectivity,
            session_id=uuid.uuid4().hex,
        )
        session.begin()
        with self._lock:
            self._items[session.session_id] = _SessionEntry(touched_at=time.time(), session=session)
            self._created += 1
            while len(self._items) > self._max_entries:
                self._items.popitem(last=False)
                self._evictions += 1
        return session

    def run(self, session_id: str, action: Callable[[RoutingSession], T]) -> T:
        """Apply ``action`` under the session's own lock, not the store lock."""
        with self._lock:
            entry = self._items.get(session_id)
            if entry is not None and self._is_expired(entry):
                self._items.pop(session_id, None)
                self._evictions += 1
                entry = None
            if entry is None:
                raise RoutingError(
                    reason_code="routing_session_not_found",
                    message="Routing session not found.",
                    details={"session_id": session_id},
                )
            self._items.move_to_end(session_id)
            entry.touched_at = time.time()
        with entry.lock:
            return action(entry.session)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(session_id, None) is not None

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "created": self._created,
                "evictions": self._evictions,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }


SESSIONS = SessionStore(
    ttl_s=settings.session_ttl_s,
    max_entries=settings.session_max_entries,
)
