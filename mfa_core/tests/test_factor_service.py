from datetime import timedelta

import pyotp
import pytest

from mfa_core.core.config import get_settings
from mfa_core.core.encryption import decrypt_secret
from mfa_core.core.errors import MfaErrorCode
from mfa_core.models import Factor, FactorStatus, MfaChallenge
from mfa_core.services import challenge_service, factor_service
from mfa_core.services.factor_kinds import UnsupportedFactorType

from .conftest import NOW


def enroll(db, user_id="user-1", **kwargs):
    result = factor_service.enroll_factor(db, user_id, now=kwargs.pop("now", NOW), **kwargs)
    assert result.ok, result.error
    return result.value


def test_enroll_creates_pending_factor_with_secret_and_uri(db):
    enrollment = enroll(db, friendly_name="Phone", account_label="alice@example.com")

    factor = enrollment.factor
    assert factor.status == FactorStatus.PENDING
    assert factor.factor_type == "totp"
    assert factor.user_id == "user-1"
    assert len(enrollment.secret) == 32
    assert pyotp.parse_uri(enrollment.uri).secret == enrollment.secret
    assert "alice%40example.com" in enrollment.uri or "alice@example.com" in enrollment.uri


def test_secret_is_encrypted_at_rest(db):
    enrollment = enroll(db)
    stored = db.query(Factor).filter(Factor.id == enrollment.factor.id).one()
    assert stored.secret_encrypted != enrollment.secret
    assert decrypt_secret(stored.secret_encrypted) == enrollment.secret


def test_second_pending_factor_of_same_type_conflicts(db):
    enroll(db)
    result = factor_service.enroll_factor(db, "user-1", now=NOW)
    assert not result.ok
    assert result.error.code == MfaErrorCode.CONFLICT


def test_pending_factor_of_other_user_does_not_conflict(db):
    enroll(db, user_id="user-1")
    enroll(db, user_id="user-2")


def test_can_enroll_again_once_pending_factor_is_verified(db):
    first = enroll(db, friendly_name="Phone")
    assert factor_service.mark_verified(db, first.factor.id, now=NOW).ok
    second = enroll(db, friendly_name="Tablet", now=NOW + timedelta(minutes=1))
    assert second.factor.id != first.factor.id


def test_friendly_name_must_be_unique_per_user(db):
    first = enroll(db, friendly_name="Phone")
    factor_service.mark_verified(db, first.factor.id, now=NOW)
    result = factor_service.enroll_factor(db, "user-1", friendly_name="Phone", now=NOW)
    assert result.error.code == MfaErrorCode.CONFLICT


def test_enrolled_factor_limit(db, monkeypatch):
    monkeypatch.setattr(get_settings(), "max_enrolled_factors", 1)
    first = enroll(db)
    factor_service.mark_verified(db, first.factor.id, now=NOW)
    result = factor_service.enroll_factor(db, "user-1", now=NOW)
    assert result.error.code == MfaErrorCode.CONFLICT


def test_unknown_factor_type_is_a_validation_error(db):
    with pytest.raises(UnsupportedFactorType):
        factor_service.enroll_factor(db, "user-1", factor_type="sms")


def test_list_factors_is_ordered_and_never_exposes_secret(db):
    first = enroll(db, friendly_name="Phone", now=NOW)
    factor_service.mark_verified(db, first.factor.id, now=NOW)
    second = enroll(db, friendly_name="Tablet", now=NOW + timedelta(minutes=5))
    enroll(db, user_id="someone-else")

    summaries = factor_service.list_factors(db, "user-1")

    assert [s.id for s in summaries] == [first.factor.id, second.factor.id]
    assert [s.status for s in summaries] == [FactorStatus.VERIFIED, FactorStatus.PENDING]
    for summary in summaries:
        assert not hasattr(summary, "secret")
        assert not hasattr(summary, "secret_encrypted")


def test_mark_verified_only_once(db):
    factor = enroll(db).factor
    assert factor_service.mark_verified(db, factor.id, now=NOW).value.status == FactorStatus.VERIFIED

    again = factor_service.mark_verified(db, factor.id, now=NOW)
    assert again.error.code == MfaErrorCode.CONFLICT


def test_mark_verified_fails_on_disabled_and_missing(db):
    factor = enroll(db).factor
    factor_service.disable_factor(db, factor.id, now=NOW)
    assert factor_service.mark_verified(db, factor.id).error.code == MfaErrorCode.DISABLED
    assert factor_service.mark_verified(db, "missing").error.code == MfaErrorCode.NOT_FOUND


def test_count_verified_factors(db):
    assert factor_service.count_verified_factors(db, "user-1") == 0
    factor = enroll(db).factor
    assert factor_service.count_verified_factors(db, "user-1") == 0
    factor_service.mark_verified(db, factor.id, now=NOW)
    assert factor_service.count_verified_factors(db, "user-1") == 1


def test_unenroll_deletes_factor_and_its_challenges(db):
    factor = enroll(db).factor
    challenge_service.create_challenge(db, factor.id, now=NOW)
    challenge_service.create_challenge(db, factor.id, now=NOW)
    assert db.query(MfaChallenge).filter(MfaChallenge.factor_id == factor.id).count() == 2

    assert factor_service.unenroll(db, factor.id).ok

    assert factor_service.get_factor(db, factor.id) is None
    assert db.query(MfaChallenge).filter(MfaChallenge.factor_id == factor.id).count() == 0


def test_unenroll_unknown_or_foreign_factor_is_not_found(db):
    factor = enroll(db, user_id="user-1").factor
    assert factor_service.unenroll(db, "missing").error.code == MfaErrorCode.NOT_FOUND
    assert factor_service.unenroll(db, factor.id, user_id="user-2").error.code == MfaErrorCode.NOT_FOUND
    assert factor_service.get_factor(db, factor.id) is not None
