"""
AccessControlService — K-of-N committee gate over record decryption.

A requester opens a session for a record; a committee of N validators is
drawn from the ValidatorRegistry and K of them must approve before the
requester may decrypt.

State Machine:
    PENDING ──approve──▶ ACTIVE ──approve (count >= K)──▶ APPROVED
       │                   │
       ├── expire ─────────┼──▶ EXPIRED
       └── reject ─────────┴──▶ REJECTED

    APPROVED, EXPIRED and REJECTED are terminal. An APPROVED session still
    records further approvals from committee members but never changes
    status again.

Concurrency:
    Every mutation runs as a read-modify-write inside SessionStore.update,
    which serializes per session id. Two validators approving at once are
    both counted, and exactly one of them performs the transition to
    APPROVED. Expiry is lazy (checked on access) plus the periodic sweep.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from caseshield.core.config import Settings, settings as default_settings
from caseshield.core.exceptions import (
    CommitteeFormationError,
    DuplicateApprovalError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)
from caseshield.infrastructure.backends import KeyReconstructor, ValidatorRegistry
from caseshield.infrastructure.session_store import SessionStore
from caseshield.schemas.access import (
    AccessSession,
    CommitteeMember,
    CommitteeStatus,
    DecryptionResult,
    EncryptionScheme,
    RequesterType,
    SessionStatus,
    StateTransition,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SYSTEM_ACTOR = "system"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Valid status transitions. PENDING may jump straight to APPROVED when K == 1.
_VALID_TRANSITIONS: Dict[SessionStatus, List[SessionStatus]] = {
    SessionStatus.PENDING: [
        SessionStatus.ACTIVE,
        SessionStatus.APPROVED,
        SessionStatus.EXPIRED,
        SessionStatus.REJECTED,
    ],
    SessionStatus.ACTIVE: [
        SessionStatus.APPROVED,
        SessionStatus.EXPIRED,
        SessionStatus.REJECTED,
    ],
    SessionStatus.APPROVED: [],
    SessionStatus.EXPIRED: [],
    SessionStatus.REJECTED: [],
}


def _transition(
    session: AccessSession,
    new_status: SessionStatus,
    actor: str,
    at: datetime,
    **updates,
) -> AccessSession:
    if new_status not in _VALID_TRANSITIONS[session.status]:
        raise StateError(
            f"Invalid transition {session.status.value} → {new_status.value}",
            details={"session_id": session.id},
        )
    history = list(session.state_history)
    history.append(StateTransition(status=new_status, at=at, actor=actor))
    return session.model_copy(update={"status": new_status, "state_history": history, **updates})


def _state_error(session: AccessSession, action: str) -> StateError:
    return StateError(
        f"Cannot {action} session {session.id} in status {session.status.value}",
        details={"session_id": session.id, "status": session.status.value},
    )


class AccessControlService:
    """
    Usage:
        service = AccessControlService(InMemorySessionStore(), registry)
        session = await service.request_access("researcher-1", "rec-1", justification)
        for vid in [m.validator_id for m in session.committee][:3]:
            session = await service.approve(session.id, vid)
        result = await service.decrypt(session.id, "researcher-1")
    """

    def __init__(
        self,
        store: SessionStore,
        registry: ValidatorRegistry,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
        key_reconstructor: Optional[KeyReconstructor] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._settings = settings
        self._clock = clock
        self._reconstructor = key_reconstructor

    @property
    def registry(self) -> ValidatorRegistry:
        return self._registry

    @property
    def has_key_reconstructor(self) -> bool:
        return self._reconstructor is not None

    # ═══════════════════════════════════════════════════════════════════════
    # REQUEST
    # ═══════════════════════════════════════════════════════════════════════

    async def request_access(
        self,
        requester: str,
        record_id: str,
        justification: str,
        preferred_threshold: Optional[int] = None,
        requester_type: RequesterType = RequesterType.RESEARCHER,
        encryption_scheme: EncryptionScheme = EncryptionScheme.AES_256,
    ) -> AccessSession:
        """
        Open a new PENDING session for ``record_id``.

        Committee size is ``max(threshold + 2, DEFAULT_COMMITTEE_SIZE)``.
        The requester is never placed on their own committee.

        Raises:
            ValidationError: Missing identities, short justification or a
                threshold below 1.
            CommitteeFormationError: Registry cannot supply the committee.
        """
        if not requester:
            raise ValidationError("Requester is required", field="requester")
        if not record_id:
            raise ValidationError("Record id is required", field="record_id")

        min_length = self._settings.MIN_JUSTIFICATION_LENGTH
        if len((justification or "").strip()) < min_length:
            raise ValidationError(
                f"Justification must be at least {min_length} characters",
                field="justification",
            )

        threshold = self._settings.DEFAULT_THRESHOLD if preferred_threshold is None else preferred_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
            raise ValidationError("Threshold must be a positive integer", field="threshold")

        committee_size = max(threshold + 2, self._settings.DEFAULT_COMMITTEE_SIZE)
        validator_ids = list(self._registry.select_committee(committee_size, exclude=[requester]))
        if len(validator_ids) != committee_size or len(set(validator_ids)) != committee_size:
            raise CommitteeFormationError(
                f"Registry returned {len(set(validator_ids))} distinct validators, "
                f"committee needs {committee_size}",
                details={"required": committee_size},
            )
        if requester in validator_ids:
            raise CommitteeFormationError("Requester cannot sit on their own committee")

        now = self._clock()
        session_id = secrets.token_hex(16)
        mpc_session_id = await self._open_mpc_session(session_id, validator_ids, threshold)

        session = AccessSession(
            id=session_id,
            record_id=record_id,
            requester=requester,
            requester_type=requester_type,
            justification=justification,
            committee=[CommitteeMember(validator_id=vid) for vid in validator_ids],
            threshold=threshold,
            created_at=now,
            expires_at=now + timedelta(hours=self._settings.SESSION_TIMEOUT_HOURS),
            encryption_scheme=encryption_scheme,
            mpc_session_id=mpc_session_id,
            state_history=[StateTransition(status=SessionStatus.PENDING, at=now, actor=requester)],
        )
        await self._store.put(session)

        logger.info(
            f"[ACCESS] Session {session_id[:12]}... opened: record={record_id} "
            f"requester={requester} threshold={threshold}/{committee_size} "
            f"expires={session.expires_at.isoformat()}"
        )
        return session

    async def _open_mpc_session(
        self, session_id: str, committee: List[str], threshold: int,
    ) -> Optional[str]:
        if self._reconstructor is None:
            return None
        try:
            return await asyncio.to_thread(
                self._reconstructor.open_session, session_id, committee, threshold,
            )
        except Exception as exc:
            logger.warning(
                f"[ACCESS] MPC session for {session_id[:12]}... not opened: {exc}"
            )
            return None

    # ═══════════════════════════════════════════════════════════════════════
    # APPROVE / REJECT
    # ═══════════════════════════════════════════════════════════════════════

    async def approve(
        self,
        session_id: str,
        validator: str,
        share_commitment: Optional[bytes] = None,
    ) -> AccessSession:
        """
        Record one committee member's approval.

        Raises:
            NotFoundError: Unknown session.
            StateError: Session is EXPIRED, REJECTED or past its expiry.
                A past-due open session is persisted as EXPIRED first.
            UnauthorizedError: ``validator`` is not on the committee.
            DuplicateApprovalError: ``validator`` already approved.
        """
        expired_now = False
        transitioned = False

        def mutate(session: AccessSession) -> Optional[AccessSession]:
            nonlocal expired_now, transitioned
            now = self._clock()

            if session.status in (SessionStatus.EXPIRED, SessionStatus.REJECTED):
                raise _state_error(session, "approve")
            if session.is_past_due(now):
                if not session.is_open:
                    raise _state_error(session, "approve")
                expired_now = True
                return _transition(session, SessionStatus.EXPIRED, SYSTEM_ACTOR, now)

            member = session.member(validator)
            if member is None:
                raise UnauthorizedError(
                    f"{validator} is not on the committee for session {session.id}",
                    details={"session_id": session.id, "validator": validator},
                )
            if member.has_approved:
                raise DuplicateApprovalError(
                    f"{validator} already approved session {session.id}",
                    details={"session_id": session.id, "validator": validator},
                )

            committee = [
                m.model_copy(update={
                    "has_approved": True,
                    "approved_at": now,
                    "share_commitment": share_commitment,
                }) if m.validator_id == validator else m
                for m in session.committee
            ]
            updated = session.model_copy(update={"committee": committee})
            if session.status is SessionStatus.APPROVED:
                return updated

            target = (
                SessionStatus.APPROVED
                if updated.approval_count >= session.threshold
                else SessionStatus.ACTIVE
            )
            if target is not session.status:
                transitioned = True
                updated = _transition(updated, target, validator, now)
            return updated

        session = await self._store.update(session_id, mutate)

        if expired_now:
            logger.warning(f"[ACCESS] Session {session_id[:12]}... expired before approval by {validator}")
            raise _state_error(session, "approve")

        logger.info(
            f"[ACCESS] Session {session_id[:12]}... approved by {validator} "
            f"({session.approval_count}/{session.threshold})"
        )
        if transitioned:
            logger.info(f"[ACCESS] Session {session_id[:12]}... → {session.status.value}")
        return session

    async def reject(self, session_id: str, validator: str, reason: str = "") -> AccessSession:
        """
        Deny a session on behalf of a committee member.

        Raises:
            NotFoundError, StateError, UnauthorizedError
        """
        expired_now = False

        def mutate(session: AccessSession) -> Optional[AccessSession]:
            nonlocal expired_now
            now = self._clock()
            if not session.is_open:
                raise _state_error(session, "reject")
            if session.is_past_due(now):
                expired_now = True
                return _transition(session, SessionStatus.EXPIRED, SYSTEM_ACTOR, now)
            if session.member(validator) is None:
                raise UnauthorizedError(
                    f"{validator} is not on the committee for session {session.id}",
                    details={"session_id": session.id, "validator": validator},
                )
            return _transition(
                session, SessionStatus.REJECTED, validator, now,
                rejection_reason=reason or None,
            )

        session = await self._store.update(session_id, mutate)
        if expired_now:
            raise _state_error(session, "reject")

        logger.info(f"[ACCESS] Session {session_id[:12]}... → rejected (by {validator})")
        return session

    # ═══════════════════════════════════════════════════════════════════════
    # DECRYPT / CANCEL
    # ═══════════════════════════════════════════════════════════════════════

    async def decrypt(self, session_id: str, requester: str) -> DecryptionResult:
        """
        Release decryption to the original requester of an APPROVED session.

        When a KeyReconstructor is configured it is handed the approving
        members; a reconstruction failure is returned as ``success=False``
        and recorded on the session's ``error`` field.

        Raises:
            NotFoundError: Unknown session.
            UnauthorizedError: ``requester`` did not open the session.
            StateError: Session is not APPROVED.
        """
        session = await self.require_session(session_id)
        if session.requester != requester:
            logger.warning(f"[ACCESS] Decrypt of {session_id[:12]}... refused for {requester}")
            raise UnauthorizedError(
                f"{requester} is not the requester of session {session_id}",
                details={"session_id": session_id},
            )
        if session.status is not SessionStatus.APPROVED:
            raise _state_error(session, "decrypt")

        approvals = session.approving_members
        approved_by = [m.validator_id for m in approvals]
        data: Optional[bytes] = None
        error: Optional[str] = None

        if self._reconstructor is not None:
            try:
                data = await asyncio.to_thread(
                    self._reconstructor.reconstruct,
                    session.mpc_session_id or session.id,
                    session.record_id,
                    approved_by,
                )
            except Exception as exc:
                error = f"Key reconstruction failed: {exc}"
                logger.warning(f"[ACCESS] Session {session_id[:12]}... {error}")
                await self._store.update(
                    session_id, lambda s: s.model_copy(update={"error": error}),
                )

        logger.info(
            f"[ACCESS] Session {session_id[:12]}... decrypt released to {requester} "
            f"(approved_by={len(approved_by)})"
        )
        return DecryptionResult(
            success=error is None,
            session_id=session.id,
            record_id=session.record_id,
            approved_by=approved_by,
            approvals=approvals,
            decrypted_at=self._clock(),
            data=data,
            error=error,
        )

    async def cancel(self, session_id: str, requester: str) -> None:
        """
        Remove an open session. Only its requester may cancel it.

        Raises:
            NotFoundError, UnauthorizedError, StateError
        """
        while True:
            session = await self.require_session(session_id)
            if session.requester != requester:
                raise UnauthorizedError(
                    f"{requester} is not the requester of session {session_id}",
                    details={"session_id": session_id},
                )
            if await self._expire_if_due(session_id, self._clock()):
                session = await self.require_session(session_id)
            if not session.is_open:
                raise _state_error(session, "cancel")
            if await self._store.delete(session_id, expected_version=session.version):
                logger.info(f"[ACCESS] Session {session_id[:12]}... cancelled by {requester}")
                return
            # Lost a race with a concurrent writer; re-read and re-check.

    # ═══════════════════════════════════════════════════════════════════════
    # EXPIRY
    # ═══════════════════════════════════════════════════════════════════════

    async def _expire_if_due(self, session_id: str, now: datetime) -> bool:
        changed = False

        def mutate(session: AccessSession) -> Optional[AccessSession]:
            nonlocal changed
            if session.is_open and session.is_past_due(now):
                changed = True
                return _transition(session, SessionStatus.EXPIRED, SYSTEM_ACTOR, now)
            return None

        try:
            await self._store.update(session_id, mutate)
        except NotFoundError:
            return False
        return changed

    async def sweep_expired(self) -> List[str]:
        """
        Flip every past-due open session to EXPIRED.

        Idempotent and safe to run concurrently with itself and with
        approvals. Returns the ids this call expired.
        """
        now = self._clock()
        expired: List[str] = []
        for session in await self._store.all():
            if not (session.is_open and session.is_past_due(now)):
                continue
            if await self._expire_if_due(session.id, now):
                expired.append(session.id)

        if expired:
            logger.info(f"[ACCESS] Sweep expired {len(expired)} session(s)")
        return expired

    # ═══════════════════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════════════════

    async def get_session(self, session_id: str) -> Optional[AccessSession]:
        return await self._store.get(session_id)

    async def require_session(self, session_id: str) -> AccessSession:
        session = await self._store.get(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found", details={"session_id": session_id},
            )
        return session

    async def sessions_for_record(self, record_id: str) -> List[AccessSession]:
        sessions = await self._store.find_by_record(record_id)
        return sorted(sessions, key=lambda s: s.created_at)

    async def has_approved_session(self, record_id: str) -> bool:
        return any(
            s.status is SessionStatus.APPROVED
            for s in await self._store.find_by_record(record_id)
        )

    async def committee_status(self, session_id: str) -> CommitteeStatus:
        session = await self.require_session(session_id)
        approved = session.approval_count
        return CommitteeStatus(
            total=len(session.committee),
            approved=approved,
            threshold=session.threshold,
            progress=min(100.0, approved / session.threshold * 100),
            status=session.status,
            members=session.committee,
        )

    def time_remaining(self, session: AccessSession, now: Optional[datetime] = None) -> str:
        """Human readable time left, e.g. ``23h 59m``, or ``Expired``."""
        remaining = session.expires_at - (now or self._clock())
        if remaining.total_seconds() <= 0 or session.status is SessionStatus.EXPIRED:
            return "Expired"
        total_minutes = int(remaining.total_seconds() // 60)
        hours, minutes = divmod(total_minutes, 60)
        return f"{hours}h {minutes}m"
