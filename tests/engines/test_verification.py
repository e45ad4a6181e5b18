"""Tests for the second-factor freshness check."""

from datetime import datetime, timedelta, timezone

from sgdea_engines.verification import check_second_factor
from sgdea_kernel.domain.actor import VerificationToken

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
LIFETIME = timedelta(minutes=30)


def test_missing_token_is_rejected():
    valid, reason = check_second_factor(None, NOW, LIFETIME)

    assert not valid
    assert reason == "Two-factor verification required"


def test_recent_verification_is_accepted():
    token = VerificationToken(verified_at=NOW - timedelta(minutes=5))

    assert check_second_factor(token, NOW, LIFETIME) == (True, "")


def test_exactly_at_lifetime_is_still_valid():
    token = VerificationToken(verified_at=NOW - LIFETIME)

    valid, _ = check_second_factor(token, NOW, LIFETIME)

    assert valid


def test_expired_verification_is_rejected():
    token = VerificationToken(verified_at=NOW - LIFETIME - timedelta(seconds=1))

    valid, reason = check_second_factor(token, NOW, LIFETIME)

    assert not valid
    assert "expired" in reason
