"""Exceptions raised by the battle royale engine."""

from __future__ import annotations


class RoyaleError(Exception):
    """Base class for engine errors reported back to callers."""


class TournamentNotFound(RoyaleError, LookupError):
    def __init__(self, tournament_id: str) -> None:
        super().__init__(f"Tournament {tournament_id} not found")
        self.tournament_id = tournament_id


class SetupNotFound(RoyaleError, LookupError):
    def __init__(self, setup_ref: str) -> None:
        super().__init__(f'Setup "{setup_ref}" not found')
        self.setup_ref = setup_ref


class InvalidState(RoyaleError):
    """Operation is not legal in the tournament's current lifecycle state."""


class MissingSeeds(RoyaleError):
    """Seed reveal attempted without both client seeds."""


class CollaboratorUnavailable(RoyaleError):
    """The messaging platform could not be reached."""


__all__ = [
    "RoyaleError",
    "TournamentNotFound",
    "SetupNotFound",
    "InvalidState",
    "MissingSeeds",
    "CollaboratorUnavailable",
]
