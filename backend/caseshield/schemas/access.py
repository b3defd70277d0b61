"""
Pydantic models for threshold-committee access sessions.

State Machine:
    PENDING → ACTIVE → APPROVED
    PENDING/ACTIVE → EXPIRED
    PENDING/ACTIVE → REJECTED

APPROVED, EXPIRED and REJECTED are terminal. Sessions are never mutated in
place: every change produces a new model via ``model_copy`` and is written
back through the session store, which bumps ``version``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer


class SessionStatus(str, Enum):
    """Lifecycle of an access session."""
    PENDING = "pending"      # No approvals yet
    ACTIVE = "active"        # 1..K-1 approvals
    APPROVED = "approved"    # >= K approvals
    EXPIRED = "expired"      # Timed out before reaching K
    REJECTED = "rejected"    # Denied by a committee member


OPEN_STATUSES = frozenset({SessionStatus.PENDING, SessionStatus.ACTIVE})


class RequesterType(str, Enum):
    RESEARCHER = "researcher"
    VALIDATOR = "validator"
    PATIENT = "patient"


class EncryptionScheme(str, Enum):
    AES_256 = "aes-256"
    CHACHA20 = "chacha20"
    CUSTOM = "custom"


class CommitteeMember(BaseModel):
    """A validator eligible to approve one session."""
    validator_id: str
    has_approved: bool = False
    approved_at: Optional[datetime] = None
    # Commitment to a key share, never the share itself.
    share_commitment: Optional[bytes] = None

    @field_serializer("share_commitment", when_used="json")
    def _hex_commitment(self, value: Optional[bytes]) -> Optional[str]:
        return value.hex() if value is not None else None


class StateTransition(BaseModel):
    status: SessionStatus
    at: datetime
    actor: str


class AccessSession(BaseModel):
    """One request for decryption rights over a record."""
    id: str
    record_id: str
    requester: str
    requester_type: RequesterType = RequesterType.RESEARCHER
    justification: str
    committee: List[CommitteeMember]
    threshold: int = Field(..., ge=1)
    status: SessionStatus = SessionStatus.PENDING
    created_at: datetime
    expires_at: datetime
    encryption_scheme: EncryptionScheme = EncryptionScheme.AES_256
    mpc_session_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    error: Optional[str] = None
    state_history: List[StateTransition] = Field(default_factory=list)
    version: int = 0

    @property
    def approval_count(self) -> int:
        return sum(1 for m in self.committee if m.has_approved)

    @property
    def approving_members(self) -> List[CommitteeMember]:
        return [m for m in self.committee if m.has_approved]

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_past_due(self, now: datetime) -> bool:
        return now > self.expires_at

    def member(self, validator_id: str) -> Optional[CommitteeMember]:
        for m in self.committee:
            if m.validator_id == validator_id:
                return m
        return None


class CommitteeStatus(BaseModel):
    total: int
    approved: int
    threshold: int
    progress: float
    status: SessionStatus
    members: List[CommitteeMember]


class DecryptionResult(BaseModel):
    """
    Outcome of a decrypt call on an APPROVED session.

    ``approved_by`` lists the approving validators for audit. ``data`` is
    populated only when a key reconstructor is configured; otherwise the
    caller reconstructs the key from the approving members' shares.
    """
    success: bool
    session_id: str
    record_id: str
    approved_by: List[str]
    approvals: List[CommitteeMember]
    decrypted_at: datetime
    data: Optional[bytes] = None
    error: Optional[str] = None

    @field_serializer("data", when_used="json")
    def _hex_data(self, value: Optional[bytes]) -> Optional[str]:
        return value.hex() if value is not None else None
