from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from mfa_core.api.deps import get_current_claims, get_db
from mfa_core.core.errors import Result
from mfa_core.core.time import ensure_aware
from mfa_core.models import FactorStatus
from mfa_core.schemas.mfa import (
    AssuranceResponse,
    ChallengeAndVerifyRequest,
    ChallengeResponse,
    EnrollRequest,
    EnrollResponse,
    FactorOut,
    SessionResponse,
    TotpEnrollment,
    UnenrollResponse,
    VerifyRequest,
    VerifyResponse,
)
from mfa_core.services import assurance_service, challenge_service, factor_service, session_service
from mfa_core.services.assurance_service import AAL
from mfa_core.services.challenge_service import VerifyOutcome
from mfa_core.services.session_service import AMR_CLAIM, IssuedSession, normalize_amr

router = APIRouter(prefix="/mfa", tags=["mfa"])


def _unwrap(result: Result):
    if not result.ok:
        raise HTTPException(status_code=result.error.http_status, detail=result.error.as_detail())
    return result.value


def _session_response(issued: IssuedSession) -> Dict[str, Any]:
    return {
        "access_token": issued.token,
        "expires_at": issued.expires_at,
        "aal": issued.claims["aal"],
        "amr": issued.claims[AMR_CLAIM],
    }


def _verified_session(db: Session, claims: Dict[str, Any], outcome: VerifyOutcome) -> VerifyResponse:
    issued = session_service.issue_session(db, claims, outcome.factor_type, now=outcome.verified_at)
    return VerifyResponse(
        **_session_response(issued),
        factor_id=outcome.factor_id,
        accepted_step=outcome.accepted_step,
    )


@router.post("/factors", response_model=EnrollResponse, status_code=status.HTTP_201_CREATED)
def enroll(body: EnrollRequest, db: Session = Depends(get_db), claims=Depends(get_current_claims)):
    enrollment = _unwrap(
        factor_service.enroll_factor(
            db,
            claims["sub"],
            factor_type=body.factor_type,
            friendly_name=body.friendly_name,
            account_label=claims.get("email"),
            issuer=body.issuer,
        )
    )
    factor = enrollment.factor
    return EnrollResponse(
        id=factor.id,
        type=factor.factor_type,
        friendly_name=factor.friendly_name,
        status=factor.status,
        totp=TotpEnrollment(secret=enrollment.secret, uri=enrollment.uri),
    )


@router.get("/factors", response_model=List[FactorOut])
def list_factors(db: Session = Depends(get_db), claims=Depends(get_current_claims)):
    return factor_service.list_factors(db, claims["sub"])


@router.delete("/factors/{factor_id}", response_model=UnenrollResponse)
def unenroll(factor_id: str, db: Session = Depends(get_db), claims=Depends(get_current_claims)):
    factor = factor_service.get_factor(db, factor_id, user_id=claims["sub"])
    if factor and factor.status == FactorStatus.VERIFIED:
        level = assurance_service.get_assurance_level(db, claims)
        if level.current != AAL.AAL2:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="An aal2 session is required to unenroll a verified factor",
            )
    _unwrap(factor_service.unenroll(db, factor_id, user_id=claims["sub"]))
    return UnenrollResponse(id=factor_id)


@router.post("/factors/{factor_id}/challenge", response_model=ChallengeResponse)
def challenge(factor_id: str, db: Session = Depends(get_db), claims=Depends(get_current_claims)):
    created = _unwrap(challenge_service.create_challenge(db, factor_id, user_id=claims["sub"]))
    return ChallengeResponse(id=created.id, expires_at=ensure_aware(created.expires_at_utc))


@router.post("/factors/{factor_id}/verify", response_model=VerifyResponse)
def verify(
    factor_id: str,
    body: VerifyRequest,
    db: Session = Depends(get_db),
    claims=Depends(get_current_claims),
):
    outcome = _unwrap(
        challenge_service.verify_challenge(db, factor_id, body.challenge_id, body.code, user_id=claims["sub"])
    )
    return _verified_session(db, claims, outcome)


@router.post("/factors/{factor_id}/challenge-and-verify", response_model=VerifyResponse)
def challenge_and_verify(
    factor_id: str,
    body: ChallengeAndVerifyRequest,
    db: Session = Depends(get_db),
    claims=Depends(get_current_claims),
):
    outcome = _unwrap(challenge_service.challenge_and_verify(db, factor_id, body.code, user_id=claims["sub"]))
    return _verified_session(db, claims, outcome)


@router.get("/assurance", response_model=AssuranceResponse)
def assurance(db: Session = Depends(get_db), claims=Depends(get_current_claims)):
    level = assurance_service.get_assurance_level(db, claims)
    return AssuranceResponse(
        current_level=level.current,
        next_level=level.next,
        current_authentication_methods=normalize_amr(claims.get(AMR_CLAIM)),
    )


@router.post("/session/refresh", response_model=SessionResponse)
def refresh(db: Session = Depends(get_db), claims=Depends(get_current_claims)):
    return SessionResponse(**_session_response(session_service.refresh_session(db, claims)))
