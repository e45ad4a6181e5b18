"""
sgdea_engines.verification -- Second-factor freshness check.

A verification older than the configured lifetime no longer counts.  The
comparison is ``now - verified_at > lifetime``; ``now`` comes from the
caller's clock so the check stays pure.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sgdea_kernel.domain.actor import VerificationToken


def check_second_factor(
    token: VerificationToken | None,
    now: datetime,
    lifetime: timedelta,
) -> tuple[bool, str]:
    """Return (valid, reason). reason is empty when valid."""
    if token is None:
        return (False, "Two-factor verification required")
    if now - token.verified_at > lifetime:
        return (False, "Two-factor verification expired, please verify again")
    return (True, "")
