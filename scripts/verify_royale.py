#!/usr/bin/env python3
"""Independently recompute the outcome of a battle royale giveaway.

Give it the revealed seeds and the number of entries, or point it at a stored
giveaway (DynamoDB or a JSON export of the item), and it prints the
elimination plan and the winning entry. When a commitment or a stored record is
available it also checks that the published data matches the recomputation.
"""

from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:  # pragma: no cover - simple environment setup
    sys.path.insert(0, str(ROOT_DIR))

from royale_bot.fairness import rank_entries, verify_commitment
from royale_bot.models import Entry, RankedEntry, Tournament
from royale_bot.rounds import EliminationStep, plan_elimination
from royale_bot.storage import RoyaleStorage

log = logging.getLogger(__name__)


@dataclass(slots=True)
class AuditReport:
    ranking: tuple[RankedEntry, ...]
    steps: list[EliminationStep]
    commitment_ok: bool | None = None
    recorded_winner_ok: bool | None = None

    @property
    def winner(self) -> RankedEntry | None:
        return self.ranking[0] if self.ranking else None

    @property
    def ok(self) -> bool:
        return self.commitment_ok is not False and self.recorded_winner_ok is not False


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--server-seed", help="Revealed server seed")
    parser.add_argument("--client-seed1", help="First client seed")
    parser.add_argument("--client-seed2", help="Second client seed")
    parser.add_argument(
        "--entries",
        type=int,
        help="Number of entries in the locked pool (indices 0..N-1)",
    )
    parser.add_argument(
        "--commitment",
        help="SHA-256 commitment published before collection opened",
    )
    parser.add_argument(
        "--tournament",
        help="Giveaway id to load from DynamoDB",
    )
    parser.add_argument(
        "--table",
        help="DynamoDB table name that stores giveaway data",
    )
    parser.add_argument(
        "--profile",
        help="Optional AWS profile to use",
    )
    parser.add_argument(
        "--region",
        help="AWS region (defaults to boto3's resolution order)",
    )
    parser.add_argument(
        "--input-file",
        help="Audit a giveaway item exported as JSON instead of reading DynamoDB",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=10,
        help="How many ranked entries to print (default: 10)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def audit_seeds(
    server_seed: str,
    client_seed1: str,
    client_seed2: str,
    entry_count: int,
    *,
    commitment: str | None = None,
) -> AuditReport:
    if entry_count < 0:
        raise ValueError("Entry count cannot be negative")
    entries = [
        Entry(entry_id=f"e{index}", participant_id="", sequence_index=index)
        for index in range(entry_count)
    ]
    ranking = rank_entries(entries, server_seed, client_seed1, client_seed2)
    return AuditReport(
        ranking=ranking,
        steps=plan_elimination(len(ranking)),
        commitment_ok=(
            verify_commitment(server_seed, commitment) if commitment else None
        ),
    )


def audit_tournament(tournament: Tournament) -> AuditReport:
    if tournament.client_seed1 is None or tournament.client_seed2 is None:
        raise ValueError(
            f"Giveaway {tournament.tournament_id} has not revealed its seeds yet"
        )
    ranking = rank_entries(
        tournament.entries,
        tournament.server_seed,
        tournament.client_seed1,
        tournament.client_seed2,
    )
    report = AuditReport(
        ranking=ranking,
        steps=plan_elimination(len(ranking)),
        commitment_ok=verify_commitment(
            tournament.server_seed, tournament.server_seed_hash
        ),
    )
    if tournament.winner is not None:
        report.recorded_winner_ok = (
            report.winner is not None
            and report.winner.entry_id == tournament.winner.entry_id
        )
    return report


def load_item_file(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError("Input file must contain one JSON object")
    return data


def load_dynamo_tournament(
    table_name: str,
    tournament_id: str,
    *,
    profile: str | None = None,
    region: str | None = None,
) -> Tournament:
    session_kwargs: dict[str, Any] = {}
    if profile:
        session_kwargs["profile_name"] = profile
    if region:
        session_kwargs["region_name"] = region
    session = boto3.Session(**session_kwargs)
    table = session.resource("dynamodb").Table(table_name)
    # entries and ranking live in chunk items next to the header
    tournament = RoyaleStorage(table).get_tournament(tournament_id)
    if tournament is None:
        raise SystemExit(f"Giveaway {tournament_id} not found in {table_name}")
    return tournament


def log_report(report: AuditReport, *, top: int) -> None:
    log.info("Ranked %s entries", len(report.ranking))
    for position, ranked in enumerate(report.ranking[:top], start=1):
        log.info(
            "%3d. %s (index %s) %s %r",
            position,
            ranked.entry_id,
            ranked.sequence_index,
            ranked.participant_id or "-",
            ranked.fairness_value,
        )
    for step in report.steps:
        log.info("%s: %s -> %s", step.title, step.before, step.after)
    winner = report.winner
    if winner is None:
        log.info("No entries; no winner")
    else:
        log.info(
            "Winner: %s (index %s) with %r",
            winner.entry_id,
            winner.sequence_index,
            winner.fairness_value,
        )
    if report.commitment_ok is not None:
        log.info(
            "Server seed commitment %s",
            "matches" if report.commitment_ok else "DOES NOT MATCH",
        )
    if report.recorded_winner_ok is not None:
        log.info(
            "Recorded winner %s",
            "matches" if report.recorded_winner_ok else "DOES NOT MATCH",
        )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO), format="%(message)s"
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    if args.input_file:
        report = audit_tournament(Tournament.from_item(load_item_file(args.input_file)))
    elif args.tournament:
        if not args.table:
            raise SystemExit("--table is required with --tournament")
        try:
            tournament = load_dynamo_tournament(
                args.table, args.tournament, profile=args.profile, region=args.region
            )
        except (ClientError, BotoCoreError) as exc:  # pragma: no cover - network failure
            log.error("AWS request failed: %s", exc)
            raise SystemExit(2) from exc
        report = audit_tournament(tournament)
    else:
        missing = [
            flag
            for flag, value in (
                ("--server-seed", args.server_seed),
                ("--client-seed1", args.client_seed1),
                ("--client-seed2", args.client_seed2),
                ("--entries", args.entries),
            )
            if value is None
        ]
        if missing:
            raise SystemExit(f"Missing arguments: {', '.join(missing)}")
        report = audit_seeds(
            args.server_seed,
            args.client_seed1,
            args.client_seed2,
            args.entries,
            commitment=args.commitment,
        )

    log_report(report, top=args.top)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
