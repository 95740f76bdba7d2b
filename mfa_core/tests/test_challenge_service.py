from datetime import timedelta

import pytest

from mfa_core.core import totp
from mfa_core.core.errors import MfaErrorCode
from mfa_core.models import FactorStatus, MfaChallenge, MfaEventType
from mfa_core.services import challenge_service, factor_service, mfa_event_service

from .conftest import NOW


def enrolled(db, user_id="user-1"):
    enrollment = factor_service.enroll_factor(db, user_id, now=NOW).value
    return enrollment.factor, enrollment.secret


def code_at(secret, moment, offset=0):
    return totp.code(secret, totp.timestep_for(moment) + offset)


def wrong_code(secret, moment):
    step = totp.timestep_for(moment)
    valid = {totp.code(secret, s) for s in (step - 1, step, step + 1)}
    return next(c for c in ("000000", "123456", "999999") if c not in valid)


def test_challenge_has_five_minute_ttl(db):
    factor, _ = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    assert challenge.factor_id == factor.id
    assert not challenge.consumed
    assert challenge.expires_at_utc.replace(tzinfo=None) == (NOW + timedelta(minutes=5)).replace(tzinfo=None)


def test_challenge_unknown_or_disabled_factor(db):
    assert challenge_service.create_challenge(db, "missing", now=NOW).error.code == MfaErrorCode.NOT_FOUND
    factor, _ = enrolled(db)
    factor_service.disable_factor(db, factor.id, now=NOW)
    assert challenge_service.create_challenge(db, factor.id, now=NOW).error.code == MfaErrorCode.DISABLED


def test_challenge_for_other_users_factor_is_not_found(db):
    factor, _ = enrolled(db, user_id="user-1")
    result = challenge_service.create_challenge(db, factor.id, user_id="user-2", now=NOW)
    assert result.error.code == MfaErrorCode.NOT_FOUND


def test_enroll_challenge_verify_marks_factor_verified(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value

    result = challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, NOW), now=NOW)

    assert result.ok
    assert result.value.accepted_step == totp.timestep_for(NOW)
    assert result.value.factor_newly_verified
    db.refresh(factor)
    db.refresh(challenge)
    assert factor.status == FactorStatus.VERIFIED
    assert factor.last_accepted_step == totp.timestep_for(NOW)
    assert challenge.consumed
    assert challenge.consumed_at_utc is not None


def test_verifying_already_verified_factor_is_not_newly_verified(db):
    factor, secret = enrolled(db)
    first = challenge_service.create_challenge(db, factor.id, now=NOW).value
    challenge_service.verify_challenge(db, factor.id, first.id, code_at(secret, NOW), now=NOW)

    later = NOW + timedelta(minutes=1)
    second = challenge_service.create_challenge(db, factor.id, now=later).value
    result = challenge_service.verify_challenge(db, factor.id, second.id, code_at(secret, later), now=later)
    assert result.ok
    assert not result.value.factor_newly_verified


def test_wrong_code_is_retryable_until_expiry(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value

    failed = challenge_service.verify_challenge(db, factor.id, challenge.id, wrong_code(secret, NOW), now=NOW)
    assert failed.error.code == MfaErrorCode.INVALID_CODE
    assert failed.error.retryable

    later = NOW + timedelta(minutes=2)
    ok = challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, later), now=later)
    assert ok.ok


def test_malformed_code_is_invalid_code(db):
    factor, _ = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    result = challenge_service.verify_challenge(db, factor.id, challenge.id, "12a456", now=NOW)
    assert result.error.code == MfaErrorCode.INVALID_CODE


def test_expired_challenge_fails_even_with_correct_code(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value

    after = NOW + timedelta(minutes=5, seconds=1)
    result = challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, after), now=after)

    assert result.error.code == MfaErrorCode.EXPIRED
    assert not result.error.retryable
    db.refresh(factor)
    assert factor.status == FactorStatus.PENDING


def test_consumed_challenge_cannot_be_reused(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    code = code_at(secret, NOW)
    assert challenge_service.verify_challenge(db, factor.id, challenge.id, code, now=NOW).ok

    again = challenge_service.verify_challenge(db, factor.id, challenge.id, code, now=NOW)
    assert again.error.code == MfaErrorCode.ALREADY_CONSUMED


def test_same_code_rejected_on_a_fresh_challenge(db):
    factor, secret = enrolled(db)
    code = code_at(secret, NOW)
    first = challenge_service.create_challenge(db, factor.id, now=NOW).value
    second = challenge_service.create_challenge(db, factor.id, now=NOW).value

    assert challenge_service.verify_challenge(db, factor.id, first.id, code, now=NOW).ok
    replay = challenge_service.verify_challenge(db, factor.id, second.id, code, now=NOW)

    assert replay.error.code == MfaErrorCode.INVALID_CODE
    assert replay.error.message == "Code already used"


def test_skew_window(db):
    factor, secret = enrolled(db)

    stale = challenge_service.create_challenge(db, factor.id, now=NOW).value
    result = challenge_service.verify_challenge(db, factor.id, stale.id, code_at(secret, NOW, -3), now=NOW)
    assert result.error.code == MfaErrorCode.INVALID_CODE

    ahead = challenge_service.create_challenge(db, factor.id, now=NOW).value
    result = challenge_service.verify_challenge(db, factor.id, ahead.id, code_at(secret, NOW, +1), now=NOW)
    assert result.ok
    assert result.value.accepted_step == totp.timestep_for(NOW) + 1


def test_challenge_must_belong_to_factor(db):
    factor_a, secret_a = enrolled(db, user_id="user-a")
    factor_b, _ = enrolled(db, user_id="user-b")
    challenge = challenge_service.create_challenge(db, factor_a.id, now=NOW).value

    result = challenge_service.verify_challenge(db, factor_b.id, challenge.id, code_at(secret_a, NOW), now=NOW)
    assert result.error.code == MfaErrorCode.NOT_FOUND
    assert challenge_service.verify_challenge(db, factor_a.id, "missing", "123456", now=NOW).error.code == (
        MfaErrorCode.NOT_FOUND
    )


def test_disabled_factor_cannot_be_verified(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    factor_service.disable_factor(db, factor.id, now=NOW)

    result = challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, NOW), now=NOW)
    assert result.error.code == MfaErrorCode.DISABLED


def test_challenge_locks_after_max_invalid_attempts(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    bad = wrong_code(secret, NOW)

    for _ in range(5):
        result = challenge_service.verify_challenge(db, factor.id, challenge.id, bad, now=NOW)
        assert result.error.code == MfaErrorCode.INVALID_CODE

    locked = challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, NOW), now=NOW)
    assert locked.error.code == MfaErrorCode.TOO_MANY_ATTEMPTS

    fresh = challenge_service.create_challenge(db, factor.id, now=NOW).value
    assert challenge_service.verify_challenge(db, factor.id, fresh.id, code_at(secret, NOW), now=NOW).ok


def test_successful_code_does_not_use_up_an_attempt(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    for _ in range(2):
        challenge_service.verify_challenge(db, factor.id, challenge.id, wrong_code(secret, NOW), now=NOW)

    assert challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, NOW), now=NOW).ok
    stored = db.query(MfaChallenge).populate_existing().filter(MfaChallenge.id == challenge.id).one()
    assert stored.consumed
    assert stored.failed_attempts == 2


def test_undecryptable_secret_raises_instead_of_failing_the_code(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    factor.secret_encrypted = "not-a-fernet-token"
    db.commit()

    with pytest.raises(ValueError):
        challenge_service.verify_challenge(db, factor.id, challenge.id, code_at(secret, NOW), now=NOW)


def test_failed_attempts_are_counted_per_factor(db):
    factor, secret = enrolled(db)
    challenge = challenge_service.create_challenge(db, factor.id, now=NOW).value
    for _ in range(3):
        challenge_service.verify_challenge(db, factor.id, challenge.id, wrong_code(secret, NOW), now=NOW)

    assert mfa_event_service.count_failed_attempts(db, factor.id, minutes=15, now=NOW) == 3
    events = mfa_event_service.get_mfa_events(db, factor_id=factor.id, event_type=MfaEventType.VERIFY_FAILED)
    assert {e.error_code for e in events} == {MfaErrorCode.INVALID_CODE.value}
    assert all(e.challenge_id == challenge.id for e in events)


def test_purge_removes_only_long_expired_challenges(db):
    factor, _ = enrolled(db)
    recent = challenge_service.create_challenge(db, factor.id, now=NOW - timedelta(minutes=10)).value
    old = challenge_service.create_challenge(db, factor.id, now=NOW - timedelta(hours=3)).value

    assert challenge_service.purge_expired_challenges(db, now=NOW) == 1
    remaining = {c.id for c in db.query(MfaChallenge).all()}
    assert remaining == {recent.id}
    assert old.id not in remaining


def test_challenge_and_verify(db):
    factor, secret = enrolled(db)
    result = challenge_service.challenge_and_verify(db, factor.id, code_at(secret, NOW), now=NOW)
    assert result.ok
    db.refresh(factor)
    assert factor.status == FactorStatus.VERIFIED

    missing = challenge_service.challenge_and_verify(db, "missing", "123456", now=NOW)
    assert missing.error.code == MfaErrorCode.NOT_FOUND
