from __future__ import annotations

import re
from collections.abc import Iterable

from .errors import MissingSeeds
from .models import RoleEntries, TournamentSetup, utc_now_iso


class InvalidValueError(ValueError):
    """Base exception for validation failures."""


MAX_ENTRIES_PER_JOIN = 1000
MAX_COLLECT_DURATION_SECONDS = 7 * 24 * 60 * 60

_ROLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
_SPLIT_PATTERN = re.compile(r"[\s,]+")


def validate_setup_name(raw: str) -> str:
    name = raw.strip()
    if not name:
        raise InvalidValueError("Setup name cannot be empty")
    if len(name) > 100:
        raise InvalidValueError("Setup name must be 100 characters or fewer")
    if any(ch.isspace() for ch in name):
        raise InvalidValueError("Setup name cannot contain spaces")
    return name


def validate_collect_duration(seconds: int) -> int:
    if seconds <= 0:
        raise InvalidValueError("Collection duration must be at least 1 second")
    if seconds > MAX_COLLECT_DURATION_SECONDS:
        raise InvalidValueError("Collection duration above 7 days is not supported")
    return seconds


def validate_entry_count(entries: int, *, label: str = "Base entries") -> int:
    if entries < 1:
        raise InvalidValueError(f"{label} must be at least 1")
    if entries > MAX_ENTRIES_PER_JOIN:
        raise InvalidValueError(
            f"{label} above {MAX_ENTRIES_PER_JOIN} are not supported"
        )
    return entries


def validate_role_entries(role_entries: Iterable[RoleEntries]) -> list[RoleEntries]:
    validated: list[RoleEntries] = []
    seen: set[str] = set()
    for role_entry in role_entries:
        role_id = role_entry.role_id.strip()
        if not role_id:
            raise InvalidValueError("Role id cannot be empty")
        if not _ROLE_ID_PATTERN.match(role_id):
            raise InvalidValueError(f"Invalid role id: {role_id}")
        if role_id in seen:
            raise InvalidValueError(f"Duplicate role id provided: {role_id}")
        seen.add(role_id)
        entries = validate_entry_count(
            role_entry.entries, label=f"Entries for role {role_id}"
        )
        validated.append(RoleEntries(role_id=role_id, entries=entries))
    return validated


def parse_role_entries(raw: str) -> list[RoleEntries]:
    """Parse ``role:entries`` pairs such as ``"123:5, 456:2"``."""
    raw = raw.strip()
    if not raw:
        return []
    parsed: list[RoleEntries] = []
    for part in (p for p in _SPLIT_PATTERN.split(raw) if p):
        role_id, sep, count = part.partition(":")
        if not sep:
            raise InvalidValueError(
                f"Role entry must look like role_id:entries, got {part}"
            )
        try:
            entries = int(count)
        except ValueError as exc:
            raise InvalidValueError(
                f"Entries for role {role_id} must be a number: {count}"
            ) from exc
        parsed.append(RoleEntries(role_id=role_id, entries=entries))
    return validate_role_entries(parsed)


def normalize_client_seeds(
    client_seed1: str | None, client_seed2: str | None
) -> tuple[str, str]:
    seed1 = (client_seed1 or "").strip()
    seed2 = (client_seed2 or "").strip()
    missing = [
        name
        for name, value in (("clientSeed1", seed1), ("clientSeed2", seed2))
        if not value
    ]
    if missing:
        raise MissingSeeds(
            "Both client seeds are required; missing " + ", ".join(missing)
        )
    return seed1, seed2


def build_setup(
    *,
    setup_id: str,
    name: str,
    description: str = "",
    collect_duration_seconds: int = 30,
    base_entries: int = 1,
    role_entries: Iterable[RoleEntries] = (),
    updated_by: int = 0,
) -> TournamentSetup:
    """Validate raw setup values and return an immutable setup."""
    return TournamentSetup(
        setup_id=setup_id,
        name=validate_setup_name(name),
        description=description.strip(),
        collect_duration_seconds=validate_collect_duration(collect_duration_seconds),
        base_entries=validate_entry_count(base_entries),
        role_entries=tuple(validate_role_entries(role_entries)),
        updated_by=updated_by,
        updated_at=utc_now_iso(),
    )


__all__ = [
    "InvalidValueError",
    "build_setup",
    "MAX_ENTRIES_PER_JOIN",
    "normalize_client_seeds",
    "parse_role_entries",
    "validate_collect_duration",
    "validate_entry_count",
    "validate_role_entries",
    "validate_setup_name",
]
