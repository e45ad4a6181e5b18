"""
Actor -- the resolved identity an authorization decision is made for.

The web layer resolves the session user into an ``Actor`` before calling
into the core.  Roles and capabilities are plain strings; which of them
are "admin-tier" is a configuration concern (``sgdea_config``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class VerificationToken:
    """Proof that the actor passed a second-factor challenge.

    ``verified_at`` is the instant of the last successful verification.
    Freshness is decided by ``sgdea_engines.verification``.
    """

    verified_at: datetime
    method: str = "totp"


@dataclass(frozen=True)
class Actor:
    """A user acting on the workflow core."""

    actor_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    capabilities: frozenset[str] = field(default_factory=frozenset)
    second_factor: VerificationToken | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles) -> bool:
        return not self.roles.isdisjoint(roles)

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities
