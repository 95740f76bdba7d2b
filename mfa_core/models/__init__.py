from .factor import Factor, FactorStatus
from .challenge import MfaChallenge
from .mfa_event import MfaEvent, MfaEventType

__all__ = [
    "Factor",
    "FactorStatus",
    "MfaChallenge",
    "MfaEvent",
    "MfaEventType",
]
