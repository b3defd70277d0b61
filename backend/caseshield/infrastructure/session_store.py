"""
Access session persistence with per-session atomic updates.

Every mutation of a session goes through ``update`` (read-modify-write
under the session's lock) or ``compare_and_swap`` (optimistic write keyed
on ``version``). Writes to different sessions never contend.

Usage:
    store = InMemorySessionStore()
    await store.put(session)
    updated = await store.update(session.id, lambda s: s.model_copy(update={...}))
"""

from __future__ import annotations

import abc
import asyncio
import logging
import weakref
from typing import Callable, Dict, List, Optional

from caseshield.core.exceptions import NotFoundError
from caseshield.schemas.access import AccessSession

logger = logging.getLogger(__name__)

# Returns the replacement session, or None to leave the stored one unchanged.
SessionMutator = Callable[[AccessSession], Optional[AccessSession]]


class SessionStore(abc.ABC):
    """Storage contract for access sessions."""

    @abc.abstractmethod
    async def get(self, session_id: str) -> Optional[AccessSession]:
        ...

    @abc.abstractmethod
    async def put(self, session: AccessSession) -> AccessSession:
        """Insert a new session. Raises ValueError if the id already exists."""

    @abc.abstractmethod
    async def compare_and_swap(
        self, session_id: str, expected_version: int, new: AccessSession,
    ) -> bool:
        """Replace the session only if its stored version equals ``expected_version``."""

    @abc.abstractmethod
    async def update(self, session_id: str, mutator: SessionMutator) -> AccessSession:
        """
        Apply ``mutator`` atomically and return the stored result.

        Raises:
            NotFoundError: If no session has this id.
        """

    @abc.abstractmethod
    async def delete(self, session_id: str, expected_version: Optional[int] = None) -> bool:
        ...

    @abc.abstractmethod
    async def all(self) -> List[AccessSession]:
        ...

    async def find_by_record(self, record_id: str) -> List[AccessSession]:
        return [s for s in await self.all() if s.record_id == record_id]


class InMemorySessionStore(SessionStore):
    """
    Process-local store guarded by one ``asyncio.Lock`` per session.

    Locks are held weakly: a session's lock exists only while some
    operation on it is in flight, so idle and terminal sessions cost no lock.

    Stored sessions are immutable pydantic models; readers always see a
    complete version, never a half-applied mutation.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, AccessSession] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def get(self, session_id: str) -> Optional[AccessSession]:
        return self._sessions.get(session_id)

    async def put(self, session: AccessSession) -> AccessSession:
        async with self._lock_for(session.id):
            if session.id in self._sessions:
                raise ValueError(f"Session {session.id} already exists")
            self._sessions[session.id] = session
        logger.debug(f"[STORE] Session {session.id} stored (v{session.version})")
        return session

    async def compare_and_swap(
        self, session_id: str, expected_version: int, new: AccessSession,
    ) -> bool:
        async with self._lock_for(session_id):
            current = self._sessions.get(session_id)
            if current is None or current.version != expected_version:
                return False
            self._sessions[session_id] = new.model_copy(
                update={"version": expected_version + 1}
            )
            return True

    async def update(self, session_id: str, mutator: SessionMutator) -> AccessSession:
        async with self._lock_for(session_id):
            current = self._sessions.get(session_id)
            if current is None:
                raise NotFoundError(
                    f"Session {session_id} not found",
                    details={"session_id": session_id},
                )
            replacement = mutator(current)
            if replacement is None:
                return current
            stored = replacement.model_copy(update={"version": current.version + 1})
            self._sessions[session_id] = stored
        logger.debug(f"[STORE] Session {session_id} updated to v{stored.version}")
        return stored

    async def delete(self, session_id: str, expected_version: Optional[int] = None) -> bool:
        async with self._lock_for(session_id):
            current = self._sessions.get(session_id)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                return False
            del self._sessions[session_id]
        logger.debug(f"[STORE] Session {session_id} deleted")
        return True

    async def all(self) -> List[AccessSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)
