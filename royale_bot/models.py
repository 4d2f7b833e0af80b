from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format."""
    return datetime.now(UTC).strftime(ISO_FORMAT)


def format_iso(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime(ISO_FORMAT)


def parse_iso(value: str) -> datetime:
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=UTC)


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):  # pragma: no cover - defensive
        return None


def _optional_float(value: object) -> float | None:
    if value is None or value == "":
        return None
    return float(value)  # type: ignore[arg-type]


class TournamentState(StrEnum):
    COLLECTING = "collecting"
    LOCKED = "locked"
    RUNNING = "running"
    FINISHED = "finished"


class SnapshotKind(StrEnum):
    COLLECTING = "collecting"
    LOCKED = "locked"
    EMPTY = "empty"
    STARTING = "starting"
    FRAME = "frame"
    STEP_RESULT = "step_result"
    WINNER = "winner"


@dataclass(slots=True, frozen=True)
class RoleEntries:
    role_id: str
    entries: int

    def to_dict(self) -> dict[str, object]:
        return {"role_id": self.role_id, "entries": self.entries}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RoleEntries:
        return cls(
            role_id=str(data.get("role_id", "")),
            entries=int(data.get("entries", 1)),  # type: ignore[arg-type]
        )


@dataclass(slots=True, frozen=True)
class TournamentSetup:
    setup_id: str
    name: str
    description: str = ""
    collect_duration_seconds: int = 30
    base_entries: int = 1
    role_entries: tuple[RoleEntries, ...] = ()
    updated_by: int = 0
    updated_at: str = ""

    PK_VALUE: ClassVar[str] = "SETUP"
    SK_TEMPLATE: ClassVar[str] = "SETUP#%s"

    @classmethod
    def key(cls, setup_id: str) -> dict[str, str]:
        return {"pk": cls.PK_VALUE, "sk": cls.SK_TEMPLATE % setup_id}

    def entries_for_roles(self, role_tags: Iterable[str]) -> int:
        """Entry multiplier: the best of the base count and any matching role."""
        tags = set(role_tags)
        count = self.base_entries
        for role_entry in self.role_entries:
            if role_entry.role_id in tags:
                count = max(count, role_entry.entries)
        return count

    def to_dict(self) -> dict[str, object]:
        return {
            "setup_id": self.setup_id,
            "name": self.name,
            "description": self.description,
            "collect_duration_seconds": self.collect_duration_seconds,
            "base_entries": self.base_entries,
            "role_entries": [entry.to_dict() for entry in self.role_entries],
            "updated_by": str(self.updated_by),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> TournamentSetup:
        role_data = data.get("role_entries", []) or []
        return cls(
            setup_id=str(data["setup_id"]),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            collect_duration_seconds=int(data.get("collect_duration_seconds", 30)),  # type: ignore[arg-type]
            base_entries=int(data.get("base_entries", 1)),  # type: ignore[arg-type]
            role_entries=tuple(
                RoleEntries.from_dict(item)
                for item in role_data  # type: ignore[union-attr]
            ),
            updated_by=_optional_int(data.get("updated_by")) or 0,
            updated_at=str(data.get("updated_at", "")),
        )

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.setup_id)
        item.update(self.to_dict())
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> TournamentSetup:
        return cls.from_dict(item)


@dataclass(slots=True)
class Entry:
    entry_id: str
    participant_id: str
    sequence_index: int
    display_name: str = ""
    fairness_value: float | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "entry_id": self.entry_id,
            "participant_id": self.participant_id,
            "sequence_index": self.sequence_index,
            "display_name": self.display_name,
        }
        # DynamoDB rejects native floats
        if self.fairness_value is not None:
            data["fairness_value"] = repr(self.fairness_value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Entry:
        return cls(
            entry_id=str(data["entry_id"]),
            participant_id=str(data["participant_id"]),
            sequence_index=int(data["sequence_index"]),  # type: ignore[arg-type]
            display_name=str(data.get("display_name", "")),
            fairness_value=_optional_float(data.get("fairness_value")),
        )


@dataclass(slots=True, frozen=True)
class RankedEntry:
    entry_id: str
    participant_id: str
    sequence_index: int
    fairness_value: float

    def to_dict(self) -> dict[str, object]:
        return {
            "entry_id": self.entry_id,
            "participant_id": self.participant_id,
            "sequence_index": self.sequence_index,
            "fairness_value": repr(self.fairness_value),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RankedEntry:
        return cls(
            entry_id=str(data["entry_id"]),
            participant_id=str(data["participant_id"]),
            sequence_index=int(data["sequence_index"]),  # type: ignore[arg-type]
            fairness_value=float(data["fairness_value"]),  # type: ignore[arg-type]
        )


@dataclass(slots=True)
class Tournament:
    tournament_id: str
    setup: TournamentSetup
    server_seed: str
    server_seed_hash: str
    created_at: str
    collect_ends_at: str
    state: TournamentState = TournamentState.COLLECTING
    entries: list[Entry] = field(default_factory=list)
    entrant_totals: dict[str, int] = field(default_factory=dict)
    next_sequence: int = 0
    client_seed1: str | None = None
    client_seed2: str | None = None
    final_ranking: tuple[RankedEntry, ...] = ()
    survivor_count: int = 0
    steps_completed: int = 0
    winner: Entry | None = None
    finished_at: str | None = None
    created_by: int | None = None
    channel_id: int | None = None
    message_id: int | None = None

    PK_VALUE: ClassVar[str] = "TOURNAMENT"
    SK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"

    @classmethod
    def key(cls, tournament_id: str) -> dict[str, str]:
        return {"pk": cls.PK_VALUE, "sk": cls.SK_TEMPLATE % tournament_id}

    @property
    def seeds_revealed(self) -> bool:
        return self.client_seed1 is not None and self.client_seed2 is not None

    @property
    def is_finished(self) -> bool:
        return self.state is TournamentState.FINISHED

    def collect_deadline(self) -> datetime:
        return parse_iso(self.collect_ends_at)

    def find_entry(self, entry_id: str) -> Entry | None:
        for entry in self.entries:
            if entry.entry_id == entry_id:
                return entry
        return None

    def survivors(self) -> list[RankedEntry]:
        """Alive entries, safest first."""
        return list(self.final_ranking[: self.survivor_count])

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "setup": self.setup.to_dict(),
                "state": self.state.value,
                "server_seed": self.server_seed,
                "server_seed_hash": self.server_seed_hash,
                "created_at": self.created_at,
                "collect_ends_at": self.collect_ends_at,
                "entries": [entry.to_dict() for entry in self.entries],
                "entrant_totals": [
                    {"participant_id": participant, "count": count}
                    for participant, count in self.entrant_totals.items()
                ],
                "next_sequence": self.next_sequence,
                "final_ranking": [ranked.to_dict() for ranked in self.final_ranking],
                "survivor_count": self.survivor_count,
                "steps_completed": self.steps_completed,
            }
        )
        if self.client_seed1 is not None and self.client_seed2 is not None:
            item["client_seed1"] = self.client_seed1
            item["client_seed2"] = self.client_seed2
        if self.winner is not None:
            item["winner"] = self.winner.to_dict()
        if self.finished_at is not None:
            item["finished_at"] = self.finished_at
        for name in ("created_by", "channel_id", "message_id"):
            value = getattr(self, name)
            if value is not None:
                item[name] = str(value)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Tournament:
        totals_data = item.get("entrant_totals", []) or []
        winner_data = item.get("winner")
        return cls(
            tournament_id=str(item["tournament_id"]),
            setup=TournamentSetup.from_dict(item["setup"]),  # type: ignore[arg-type]
            state=TournamentState(str(item.get("state", "collecting"))),
            server_seed=str(item.get("server_seed", "")),
            server_seed_hash=str(item.get("server_seed_hash", "")),
            created_at=str(item.get("created_at", "")),
            collect_ends_at=str(item.get("collect_ends_at", "")),
            entries=[
                Entry.from_dict(entry)
                for entry in item.get("entries", []) or []  # type: ignore[union-attr]
            ],
            entrant_totals={
                str(row["participant_id"]): int(row["count"])
                for row in totals_data  # type: ignore[union-attr]
            },
            next_sequence=int(item.get("next_sequence", 0)),  # type: ignore[arg-type]
            client_seed1=(
                str(item["client_seed1"]) if "client_seed1" in item else None
            ),
            client_seed2=(
                str(item["client_seed2"]) if "client_seed2" in item else None
            ),
            final_ranking=tuple(
                RankedEntry.from_dict(ranked)
                for ranked in item.get("final_ranking", []) or []  # type: ignore[union-attr]
            ),
            survivor_count=int(item.get("survivor_count", 0)),  # type: ignore[arg-type]
            steps_completed=int(item.get("steps_completed", 0)),  # type: ignore[arg-type]
            winner=Entry.from_dict(winner_data) if winner_data else None,  # type: ignore[arg-type]
            finished_at=(
                str(item["finished_at"]) if item.get("finished_at") else None
            ),
            created_by=_optional_int(item.get("created_by")),
            channel_id=_optional_int(item.get("channel_id")),
            message_id=_optional_int(item.get("message_id")),
        )


@dataclass(slots=True, frozen=True)
class AdmissionRequest:
    tournament_id: str
    participant_id: str
    role_tags: frozenset[str] | None = None
    display_name: str = ""


@dataclass(slots=True, frozen=True)
class AdmissionResult:
    accepted: bool
    entries_granted: int = 0
    reason: str | None = None
    participant_total: int = 0


@dataclass(slots=True, frozen=True)
class ParticipantCount:
    participant_id: str
    count: int
    display_name: str = ""


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    tournament_id: str
    state: TournamentState
    round_label: str
    survivor_count: int
    total_entries: int
    participants: tuple[ParticipantCount, ...] = ()
    detail: str = ""
    eliminated: int = 0
    progress_percent: int | None = None
    kind: SnapshotKind = SnapshotKind.FRAME
    phase: str | None = None

    @property
    def final(self) -> bool:
        return self.kind in (SnapshotKind.WINNER, SnapshotKind.EMPTY)


__all__ = [
    "AdmissionRequest",
    "AdmissionResult",
    "Entry",
    "ISO_FORMAT",
    "ParticipantCount",
    "ProgressSnapshot",
    "RankedEntry",
    "RoleEntries",
    "SnapshotKind",
    "Tournament",
    "TournamentSetup",
    "TournamentState",
    "format_iso",
    "parse_iso",
    "utc_now_iso",
]
