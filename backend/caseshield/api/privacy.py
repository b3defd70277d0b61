"""
Privacy API — HTTP surface over the orchestrator and committee gate.

Binary values (encrypted payloads, share commitments, proofs) cross the
wire hex-encoded. CaseShieldErrors raised by the services are mapped to
HTTP responses by the handler registered in ``caseshield.main``.

Usage:
    from caseshield.api.privacy import privacy_router
    app.include_router(privacy_router)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from caseshield.core.exceptions import ValidationError
from caseshield.schemas.access import EncryptionScheme, RequesterType
from caseshield.schemas.privacy import ValidationInputs
from caseshield.schemas.record import CaseRecord, ClinicalInputs
from caseshield.services.container import PrivacyServices
from caseshield.services.orchestrator import privacy_level

logger = logging.getLogger(__name__)

privacy_router = APIRouter(prefix="/privacy", tags=["Privacy"])


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class SubmitRecordRequest(BaseModel):
    record_id: str = Field(..., min_length=1, max_length=128)
    submitter: str = Field(..., min_length=1, max_length=128)
    encrypted_payload: str = Field(..., description="Hex-encoded ciphertext")
    treatment_category: str = ""
    clinical: ClinicalInputs
    generate_proofs: bool = True
    compression_ratio: Optional[float] = None


class ValidationRequest(BaseModel):
    validator: str = Field(..., min_length=1)
    approve: bool = True
    clinical: ClinicalInputs
    notes: str = ""
    compression_ratio: Optional[float] = None


class AccessRequestBody(BaseModel):
    requester: str = Field(..., min_length=1)
    record_id: str = Field(..., min_length=1)
    justification: str
    preferred_threshold: Optional[int] = None
    requester_type: RequesterType = RequesterType.RESEARCHER
    encryption_scheme: EncryptionScheme = EncryptionScheme.AES_256


class ApproveBody(BaseModel):
    validator: str = Field(..., min_length=1)
    share_commitment: Optional[str] = Field(default=None, description="Hex-encoded commitment")


class RejectBody(BaseModel):
    validator: str = Field(..., min_length=1)
    reason: str = ""


class DecryptBody(BaseModel):
    requester: str = Field(..., min_length=1)


# ═══════════════════════════════════════════════════════════════════════════════
# DEPENDENCIES
# ═══════════════════════════════════════════════════════════════════════════════

def get_services(request: Request) -> PrivacyServices:
    return request.app.state.services


def _from_hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise ValidationError(f"{field} must be hex-encoded", field=field)


# ═══════════════════════════════════════════════════════════════════════════════
# RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@privacy_router.post("/records", summary="Submit an encrypted record with proofs and compression")
async def submit_record(
    body: SubmitRecordRequest,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    payload = _from_hex(body.encrypted_payload, "encrypted_payload")
    if not payload:
        raise ValidationError("encrypted_payload must not be empty", field="encrypted_payload")

    record = CaseRecord(
        record_id=body.record_id,
        submitter=body.submitter,
        encrypted_payload=payload,
        treatment_category=body.treatment_category,
        clinical=body.clinical,
    )
    result = await services.orchestrator.submit_with_privacy(
        record,
        generate_proofs=body.generate_proofs,
        compression_ratio=body.compression_ratio,
    )
    return result.to_dict()


@privacy_router.get("/records/{record_id}/score", summary="Current privacy score of a record")
async def record_score(
    record_id: str,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    score = await services.orchestrator.privacy_score(record_id)
    return {"record_id": record_id, "privacy_score": score, "privacy_level": privacy_level(score)}


@privacy_router.post("/records/{record_id}/validations", summary="Submit a validator vote with privacy")
async def validate_record(
    record_id: str,
    body: ValidationRequest,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    result = await services.orchestrator.validate_with_privacy(
        body.validator,
        record_id,
        ValidationInputs(approve=body.approve, clinical=body.clinical, notes=body.notes),
        compression_ratio=body.compression_ratio,
    )
    return result.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# ACCESS SESSIONS
# ═══════════════════════════════════════════════════════════════════════════════

@privacy_router.post("/access", summary="Request committee-gated research access")
async def request_access(
    body: AccessRequestBody,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    result = await services.orchestrator.request_research_access(
        body.requester,
        body.record_id,
        body.justification,
        preferred_threshold=body.preferred_threshold,
        requester_type=body.requester_type,
        encryption_scheme=body.encryption_scheme,
    )
    return result.to_dict()


@privacy_router.get("/access/{session_id}", summary="Fetch an access session")
async def get_session(
    session_id: str,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    session = await services.access.require_session(session_id)
    data = session.model_dump(mode="json")
    data["time_remaining"] = services.access.time_remaining(session)
    return data


@privacy_router.get("/access/{session_id}/committee", summary="Committee approval progress")
async def committee_status(
    session_id: str,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    status = await services.access.committee_status(session_id)
    return status.model_dump(mode="json")


@privacy_router.post("/access/{session_id}/approve", summary="Approve as a committee member")
async def approve_session(
    session_id: str,
    body: ApproveBody,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    commitment = (
        _from_hex(body.share_commitment, "share_commitment")
        if body.share_commitment is not None else None
    )
    session = await services.access.approve(session_id, body.validator, commitment)
    return session.model_dump(mode="json")


@privacy_router.post("/access/{session_id}/reject", summary="Reject as a committee member")
async def reject_session(
    session_id: str,
    body: RejectBody,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    session = await services.access.reject(session_id, body.validator, body.reason)
    return session.model_dump(mode="json")


@privacy_router.post("/access/{session_id}/decrypt", summary="Release decryption to the requester")
async def decrypt_session(
    session_id: str,
    body: DecryptBody,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    result = await services.access.decrypt(session_id, body.requester)
    return result.model_dump(mode="json")


@privacy_router.delete("/access/{session_id}", summary="Cancel an open access session")
async def cancel_session(
    session_id: str,
    requester: str,
    services: PrivacyServices = Depends(get_services),
) -> Dict[str, Any]:
    await services.access.cancel(session_id, requester)
    logger.info(f"[API] Session {session_id[:12]}... cancelled via API")
    return {"session_id": session_id, "cancelled": True}


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS
# ═══════════════════════════════════════════════════════════════════════════════

@privacy_router.get("/status", summary="Backend availability and configuration report")
async def privacy_status(services: PrivacyServices = Depends(get_services)) -> Dict[str, Any]:
    return {
        "services": services.orchestrator.service_status(),
        "configuration": services.orchestrator.validate_configuration(),
        "sweeper_running": services.sweeper.running,
    }
