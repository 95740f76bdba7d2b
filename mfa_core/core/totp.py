"""
TOTP primitives (RFC 6238 on top of RFC 4226 HOTP).

Parameters are fixed to the universally supported profile: SHA-1 HMAC,
6 digits, 30 second steps. Secrets are 32 base32 characters (160 bits).
"""
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pyotp
from pyotp.utils import strings_equal

from .time import epoch_seconds

DIGITS = 6
INTERVAL = 30
SECRET_LENGTH = 32
MAX_VALID_WINDOW = 1

_SECRET_RE = re.compile(r"^[A-Z2-7]{%d}$" % SECRET_LENGTH)
_CODE_RE = re.compile(r"^[0-9]{%d}$" % DIGITS)


class TotpFormatError(ValueError):
    """A secret, code or time step that is not in the expected shape."""


@dataclass(frozen=True)
class TotpVerification:
    accepted: bool
    accepted_step: Optional[int] = None
    # the code matched, but for a step at or before the last accepted one
    replayed: bool = False


def _check_secret(secret: str) -> str:
    if not isinstance(secret, str) or not _SECRET_RE.match(secret):
        raise TotpFormatError(f"TOTP secret must be {SECRET_LENGTH} upper-case base32 characters")
    return secret


def _check_step(timestep: int) -> int:
    if isinstance(timestep, bool) or not isinstance(timestep, int) or timestep < 0:
        raise TotpFormatError("time step must be a non-negative integer")
    return timestep


def _hotp(secret: str) -> pyotp.HOTP:
    return pyotp.HOTP(secret, digits=DIGITS, digest=hashlib.sha1)


def generate_secret() -> str:
    """Return a fresh 160-bit secret, base32 encoded, from the system CSPRNG."""
    return pyotp.random_base32(length=SECRET_LENGTH)


def encode_uri(secret: str, account_label: str, issuer: str) -> str:
    """
    Build the otpauth:// key provisioning URI for an authenticator app.

    See also:
        https://github.com/google/google-authenticator/wiki/Key-Uri-Format
    """
    _check_secret(secret)
    if not account_label:
        raise TotpFormatError("account label is required")
    totp = pyotp.TOTP(secret, digits=DIGITS, digest=hashlib.sha1, interval=INTERVAL)
    return totp.provisioning_uri(name=account_label, issuer_name=issuer or None)


def timestep_for(moment: datetime) -> int:
    return epoch_seconds(moment) // INTERVAL


def code(secret: str, timestep: int) -> str:
    """Zero-padded code for the given 30 second step index."""
    _check_secret(secret)
    return _hotp(secret).at(_check_step(timestep))


def verify(
    secret: str,
    submitted_code: str,
    current_step: int,
    last_accepted_step: Optional[int] = None,
    valid_window: int = MAX_VALID_WINDOW,
) -> TotpVerification:
    """
    Check a submitted code against the current step and its neighbours.

    Every candidate step is compared so the running time does not depend on
    which one matched. A match at or before ``last_accepted_step`` is a
    replay and is not accepted.
    """
    _check_secret(secret)
    _check_step(current_step)
    if not isinstance(submitted_code, str) or not _CODE_RE.match(submitted_code):
        raise TotpFormatError(f"code must be exactly {DIGITS} digits")
    if valid_window < 0 or valid_window > MAX_VALID_WINDOW:
        raise TotpFormatError("skew window wider than one step is not allowed")

    hotp = _hotp(secret)
    matched: Optional[int] = None
    for step in range(current_step - valid_window, current_step + valid_window + 1):
        if step < 0:
            continue
        if strings_equal(submitted_code, hotp.at(step)) and matched is None:
            matched = step

    if matched is None:
        return TotpVerification(accepted=False)
    if last_accepted_step is not None and matched <= last_accepted_step:
        return TotpVerification(accepted=False, accepted_step=None, replayed=True)
    return TotpVerification(accepted=True, accepted_step=matched)
