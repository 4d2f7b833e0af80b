"""Battle royale giveaway engine."""

from .admission import AdmissionQueue
from .config import EngineTiming, RoyaleConfig
from .engine import RoyaleEngine
from .errors import (
    CollaboratorUnavailable,
    InvalidState,
    MissingSeeds,
    RoyaleError,
    SetupNotFound,
    TournamentNotFound,
)
from .fairness import commit_server_seed, derive, rank_entries, verify_commitment
from .ledger import EntryLedger
from .models import (
    AdmissionRequest,
    AdmissionResult,
    Entry,
    ParticipantCount,
    ProgressSnapshot,
    RankedEntry,
    RoleEntries,
    SnapshotKind,
    Tournament,
    TournamentSetup,
    TournamentState,
    utc_now_iso,
)
from .reporter import CompositeReporter, LoggingReporter, ProgressReporter
from .rounds import EliminationStep, plan_elimination
from .storage import RoyaleStorage
from .validation import (
    InvalidValueError,
    build_setup,
    normalize_client_seeds,
    parse_role_entries,
)

__all__ = [
    "AdmissionQueue",
    "AdmissionRequest",
    "AdmissionResult",
    "CollaboratorUnavailable",
    "CompositeReporter",
    "EliminationStep",
    "EngineTiming",
    "Entry",
    "EntryLedger",
    "InvalidState",
    "InvalidValueError",
    "LoggingReporter",
    "MissingSeeds",
    "ParticipantCount",
    "ProgressReporter",
    "ProgressSnapshot",
    "RankedEntry",
    "RoleEntries",
    "RoyaleConfig",
    "RoyaleEngine",
    "RoyaleError",
    "RoyaleStorage",
    "SetupNotFound",
    "SnapshotKind",
    "Tournament",
    "TournamentNotFound",
    "TournamentSetup",
    "TournamentState",
    "build_setup",
    "commit_server_seed",
    "derive",
    "normalize_client_seeds",
    "parse_role_entries",
    "plan_elimination",
    "rank_entries",
    "utc_now_iso",
    "verify_commitment",
]
