"""Progress reporting for running giveaways."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol

from .models import (
    ParticipantCount,
    ProgressSnapshot,
    SnapshotKind,
    TournamentState,
)

log = logging.getLogger("royale-reporter")

SAMPLE_LIMIT = 100


class ProgressReporter(Protocol):
    async def report(self, tournament_id: str, snapshot: ProgressSnapshot) -> None:
        """Push a snapshot to whatever displays it.

        Implementations may raise; the engine logs and carries on.
        """


def participant_sample(
    participant_ids: Iterable[str],
    display_names: Mapping[str, str] | None = None,
    *,
    limit: int = SAMPLE_LIMIT,
) -> tuple[ParticipantCount, ...]:
    """Live entry counts per participant, in first-seen order, capped at ``limit``."""
    counts: dict[str, int] = {}
    for participant_id in participant_ids:
        counts[participant_id] = counts.get(participant_id, 0) + 1
    names = display_names or {}
    return tuple(
        ParticipantCount(
            participant_id=participant_id,
            count=count,
            display_name=names.get(participant_id, ""),
        )
        for participant_id, count in list(counts.items())[:limit]
    )


def build_snapshot(
    tournament_id: str,
    state: TournamentState,
    round_label: str,
    participant_ids: Iterable[str],
    *,
    total_entries: int,
    display_names: Mapping[str, str] | None = None,
    detail: str = "",
    eliminated: int = 0,
    progress_percent: int | None = None,
    kind: SnapshotKind = SnapshotKind.FRAME,
    phase: str | None = None,
) -> ProgressSnapshot:
    ids = list(participant_ids)
    return ProgressSnapshot(
        tournament_id=tournament_id,
        state=state,
        round_label=round_label,
        survivor_count=len(ids),
        total_entries=total_entries,
        participants=participant_sample(ids, display_names),
        detail=detail,
        eliminated=eliminated,
        progress_percent=progress_percent,
        kind=kind,
        phase=phase,
    )


class LoggingReporter:
    """Reporter that only writes snapshots to the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or log

    async def report(self, tournament_id: str, snapshot: ProgressSnapshot) -> None:
        self._log.info(
            "[%s] %s: %s remaining of %s%s",
            tournament_id,
            snapshot.round_label,
            snapshot.survivor_count,
            snapshot.total_entries,
            f" ({snapshot.detail})" if snapshot.detail else "",
        )


class CompositeReporter:
    """Fan a snapshot out to several reporters; one failing does not stop the rest."""

    def __init__(self, *reporters: ProgressReporter) -> None:
        self._reporters = list(reporters)

    async def report(self, tournament_id: str, snapshot: ProgressSnapshot) -> None:
        for reporter in self._reporters:
            try:
                await reporter.report(tournament_id, snapshot)
            except Exception as exc:  # pylint: disable=broad-except
                log.warning(
                    "Reporter %s failed for %s: %s",
                    type(reporter).__name__,
                    tournament_id,
                    exc,
                )


__all__ = [
    "CompositeReporter",
    "LoggingReporter",
    "ProgressReporter",
    "SAMPLE_LIMIT",
    "build_snapshot",
    "participant_sample",
]
