"""
Workflow core configuration schema.

Frozen dataclasses the YAML configuration is parsed into.  One
``WorkflowCoreConfig`` is the runtime artifact; its sections map one to
one onto the top-level YAML keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field

INDEXING_MODES = ("sync", "deferred")
PRIORITIES = ("low", "medium", "high")


@dataclass(frozen=True)
class AuthorizationConfig:
    """Role names the authorization gate interprets."""

    super_admin_role: str = "super-admin"
    admin_roles: tuple[str, ...] = ("admin", "super-admin")
    create_capability: str = "crear_workflows"


@dataclass(frozen=True)
class AuditConfig:
    significant_fields: tuple[str, ...] = ("name", "steps", "active", "configuration")
    # Write audit records to the audit_events hash chain as well as the log.
    persist: bool = True


@dataclass(frozen=True)
class IndexingConfig:
    """Entity indexing hook settings."""

    mode: str = "sync"  # sync | deferred
    queue_name: str = "indexing"
    index_prefix: str = "sgdea"
    governed_kinds: tuple[str, ...] = ("document", "case_file")
    max_attempts: int = 3


@dataclass(frozen=True)
class NotificationConfig:
    default_priority: str = "medium"


@dataclass(frozen=True)
class TwoFactorConfig:
    enforce: bool = False
    session_lifetime_minutes: int = 30


@dataclass(frozen=True)
class RetentionConfig:
    completed_instance_days: int = 90


@dataclass(frozen=True)
class DeadlineConfig:
    # Remind deciders when the current step falls due within this many hours.
    reminder_window_hours: int = 24


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///sgdea.db"
    echo: bool = False


@dataclass(frozen=True)
class WorkflowCoreConfig:
    """Complete, validated configuration of the workflow core."""

    authorization: AuthorizationConfig = field(default_factory=AuthorizationConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    two_factor: TwoFactorConfig = field(default_factory=TwoFactorConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    deadlines: DeadlineConfig = field(default_factory=DeadlineConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    checksum: str = ""
