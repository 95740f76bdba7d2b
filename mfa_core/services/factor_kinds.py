"""
Factor kinds registered by type tag.

ChallengeManager and FactorStore only talk to a factor through this
capability interface, so adding a new kind (SMS, hardware key) means adding
a class here and registering it.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from mfa_core.core import totp
from mfa_core.core.config import get_settings
from mfa_core.core.encryption import decrypt_secret
from mfa_core.models import Factor

logger = logging.getLogger(__name__)


class UnsupportedFactorType(ValueError):
    pass


@dataclass(frozen=True)
class FactorVerification:
    accepted: bool
    # monotonic counter the factor must never accept twice (time step for TOTP)
    accepted_step: Optional[int] = None
    replayed: bool = False


class FactorKind(ABC):
    type_tag: str

    @abstractmethod
    def new_secret(self) -> str:
        ...

    @abstractmethod
    def generate_enrollment_material(self, secret: str, account_label: str, issuer: str) -> dict:
        """Data the user needs once to register the factor on their device."""

    @abstractmethod
    def generate_challenge_material(self, factor: Factor) -> dict:
        """Data sent out when a challenge is issued (nothing for TOTP)."""

    @abstractmethod
    def verify_response(self, factor: Factor, response: str, now: datetime) -> FactorVerification:
        ...


class TotpFactorKind(FactorKind):
    type_tag = "totp"

    def new_secret(self) -> str:
        return totp.generate_secret()

    def generate_enrollment_material(self, secret: str, account_label: str, issuer: str) -> dict:
        return {"secret": secret, "uri": totp.encode_uri(secret, account_label, issuer)}

    def generate_challenge_material(self, factor: Factor) -> dict:
        return {}

    def verify_response(self, factor: Factor, response: str, now: datetime) -> FactorVerification:
        try:
            secret = decrypt_secret(factor.secret_encrypted)
        except ValueError:
            logger.error(f"Secret of factor {factor.id} cannot be decrypted; check MFACORE_SECRET_ENCRYPTION_KEY")
            raise
        result = totp.verify(
            secret,
            response,
            totp.timestep_for(now),
            factor.last_accepted_step,
            valid_window=get_settings().totp_valid_window,
        )
        return FactorVerification(
            accepted=result.accepted,
            accepted_step=result.accepted_step,
            replayed=result.replayed,
        )


FACTOR_KINDS: Dict[str, FactorKind] = {
    TotpFactorKind.type_tag: TotpFactorKind(),
}


def get_factor_kind(type_tag: str) -> FactorKind:
    try:
        return FACTOR_KINDS[type_tag]
    except KeyError:
        raise UnsupportedFactorType(f"Unsupported factor type: {type_tag!r}") from None
