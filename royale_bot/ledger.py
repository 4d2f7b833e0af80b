from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import fields

from .errors import InvalidState
from .models import Entry, RankedEntry, Tournament, TournamentState


class EntryLedger:
    """Authoritative entry record for one tournament.

    Writers must hold ``lock``; the admission queue and the state machine are
    the only writers. Entries are never removed, eliminated ones are simply
    left out of :meth:`alive_entries`.
    """

    def __init__(self, tournament: Tournament) -> None:
        self._tournament = tournament
        self.lock = asyncio.Lock()

    @property
    def tournament(self) -> Tournament:
        return self._tournament

    @property
    def tournament_id(self) -> str:
        return self._tournament.tournament_id

    @property
    def state(self) -> TournamentState:
        return self._tournament.state

    def __len__(self) -> int:
        return len(self._tournament.entries)

    def ensure_collecting(self) -> None:
        state = self._tournament.state
        if state is TournamentState.FINISHED:
            raise InvalidState("Giveaway already finished.")
        if state is not TournamentState.COLLECTING:
            raise InvalidState("Collection already ended.")

    def append_entries(
        self, participant_id: str, count: int, display_name: str = ""
    ) -> list[Entry]:
        self.ensure_collecting()
        tournament = self._tournament
        added: list[Entry] = []
        for _ in range(count):
            sequence_index = tournament.next_sequence
            tournament.next_sequence += 1
            entry = Entry(
                entry_id=f"e{sequence_index}",
                participant_id=participant_id,
                sequence_index=sequence_index,
                display_name=display_name,
            )
            tournament.entries.append(entry)
            added.append(entry)
        tournament.entrant_totals[participant_id] = (
            tournament.entrant_totals.get(participant_id, 0) + len(added)
        )
        return added

    def display_names(self) -> dict[str, str]:
        names: dict[str, str] = {}
        for entry in self._tournament.entries:
            if entry.display_name and entry.participant_id not in names:
                names[entry.participant_id] = entry.display_name
        return names

    def publish_ranking(self, ranking: tuple[RankedEntry, ...]) -> None:
        tournament = self._tournament
        if tournament.final_ranking:
            raise InvalidState("Entries have already been ranked.")
        if len(ranking) != len(tournament.entries):
            raise ValueError("Ranking must cover every entry exactly once")
        values = {ranked.entry_id: ranked.fairness_value for ranked in ranking}
        for entry in tournament.entries:
            entry.fairness_value = values[entry.entry_id]
        tournament.final_ranking = ranking
        tournament.survivor_count = len(ranking)

    def alive_entries(self) -> list[RankedEntry]:
        return self._tournament.survivors()

    @contextmanager
    def transaction(self) -> Iterator[Tournament]:
        """Mutate the tournament in place; any exception restores it.

        Callers persist inside the block so memory never runs ahead of storage.
        """
        saved = self._tournament.to_item()
        try:
            yield self._tournament
        except BaseException:
            restored = Tournament.from_item(saved)
            for item in fields(Tournament):
                setattr(self._tournament, item.name, getattr(restored, item.name))
            raise

    def snapshot(self) -> Tournament:
        """Detached copy; readers never see later mutations."""
        return Tournament.from_item(self._tournament.to_item())


__all__ = ["EntryLedger"]
