from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from mfa_core.models.factor import FactorStatus
from mfa_core.services.assurance_service import AAL


class EnrollRequest(BaseModel):
    factor_type: Literal["totp"] = "totp"
    friendly_name: Optional[str] = Field(None, max_length=255)
    issuer: Optional[str] = Field(None, max_length=255)


class TotpEnrollment(BaseModel):
    secret: str
    uri: str


class EnrollResponse(BaseModel):
    id: str
    type: str
    friendly_name: Optional[str] = None
    status: FactorStatus
    totp: TotpEnrollment


class FactorOut(BaseModel):
    id: str
    friendly_name: Optional[str] = None
    factor_type: str
    status: FactorStatus
    created_at_utc: datetime
    updated_at_utc: datetime

    model_config = {"from_attributes": True}


class UnenrollResponse(BaseModel):
    id: str


class ChallengeResponse(BaseModel):
    id: str
    expires_at: datetime


class VerifyRequest(BaseModel):
    challenge_id: str
    # length only bounds the shape; the TOTP engine checks the digits
    code: str = Field(..., min_length=6, max_length=6)


class ChallengeAndVerifyRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6)


class AmrEntry(BaseModel):
    method: str
    timestamp: int


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    aal: AAL
    amr: List[AmrEntry]


class VerifyResponse(SessionResponse):
    factor_id: str
    accepted_step: int


class AssuranceResponse(BaseModel):
    current_level: AAL
    next_level: AAL
    current_authentication_methods: List[AmrEntry]
