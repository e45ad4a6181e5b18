"""
Lightweight domain validation helpers.

Pure checks with no I/O, used by the definition service before anything
touches the session.  Every failure raises ``ValidationError`` naming the
offending field.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from sgdea_kernel.domain.workflow import AutoAdvance, EntityKind, Step
from sgdea_kernel.exceptions import ValidationError

PRIORITIES = frozenset({"low", "medium", "high"})

DEFINITION_PATCH_KEYS = frozenset(
    {"name", "description", "steps", "configuration", "active"}
)


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, "must be a non-empty string")
    return value.strip()


def coerce_entity_kind(value: Any) -> EntityKind:
    if isinstance(value, EntityKind):
        return value
    try:
        return EntityKind(value)
    except ValueError:
        raise ValidationError(
            "entity_kind",
            f"unknown entity kind {value!r}; expected one of "
            f"{', '.join(k.value for k in EntityKind)}",
        ) from None


def normalize_steps(steps: Iterable[Any] | None) -> tuple[Step, ...]:
    """Accept ``Step`` objects or plain mappings and return a step tuple."""
    if steps is None or isinstance(steps, (str, bytes, dict)):
        raise ValidationError("steps", "must be a list of steps")

    result: list[Step] = []
    for position, raw in enumerate(steps):
        if isinstance(raw, Step):
            step = raw
        elif isinstance(raw, dict):
            if "name" not in raw:
                raise ValidationError(f"steps[{position}].name", "is required")
            auto = raw.get("auto_advance")
            if auto is not None and auto not in {a.value for a in AutoAdvance} \
                    and not isinstance(auto, AutoAdvance):
                raise ValidationError(
                    f"steps[{position}].auto_advance",
                    f"unknown rule {auto!r}",
                )
            step = Step.from_dict(
                {**raw, "auto_advance": getattr(auto, "value", auto)}
            )
        else:
            raise ValidationError(f"steps[{position}]", "must be a step mapping")

        require_text(step.name, f"steps[{position}].name")
        if step.required_role is not None:
            require_text(step.required_role, f"steps[{position}].required_role")
        result.append(step)

    if not result:
        raise ValidationError("steps", "a workflow needs at least one step")
    return tuple(result)


def validate_configuration(configuration: Any) -> dict[str, Any]:
    """Check known options; unknown keys are kept verbatim."""
    if configuration is None:
        return {}
    if not isinstance(configuration, dict):
        raise ValidationError("configuration", "must be a mapping")

    for key in configuration:
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("configuration", "option names must be non-empty strings")

    try:
        json.dumps(configuration)
    except (TypeError, ValueError):
        raise ValidationError("configuration", "values must be JSON-serialisable") from None

    if "priority" in configuration and configuration["priority"] not in PRIORITIES:
        raise ValidationError(
            "configuration.priority",
            f"must be one of {', '.join(sorted(PRIORITIES))}",
        )
    if "due_days" in configuration:
        due = configuration["due_days"]
        if isinstance(due, bool) or not isinstance(due, int) or due <= 0:
            raise ValidationError("configuration.due_days", "must be a positive integer")
    for flag in ("notify_initiator", "notify_entity_owner"):
        if flag in configuration and not isinstance(configuration[flag], bool):
            raise ValidationError(f"configuration.{flag}", "must be a boolean")

    return dict(configuration)


def validate_patch_keys(patch: dict[str, Any]) -> None:
    unknown = set(patch) - DEFINITION_PATCH_KEYS
    if unknown:
        raise ValidationError(
            "patch",
            f"unsupported field(s): {', '.join(sorted(unknown))}",
        )
