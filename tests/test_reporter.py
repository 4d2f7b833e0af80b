import logging
from unittest.mock import AsyncMock

import pytest

from royale_bot import CompositeReporter, LoggingReporter, TournamentState
from royale_bot.reporter import build_snapshot, participant_sample


def test_participant_sample_counts_in_first_seen_order():
    sample = participant_sample(["b", "a", "b", "c", "b"], {"a": "Alice"})

    assert [(p.participant_id, p.count) for p in sample] == [
        ("b", 3),
        ("a", 1),
        ("c", 1),
    ]
    assert sample[1].display_name == "Alice"


def test_participant_sample_capped():
    ids = [f"user{index}" for index in range(150)]

    sample = participant_sample(ids)

    assert len(sample) == 100
    assert sample[-1].participant_id == "user99"


def test_build_snapshot_counts_survivors():
    snapshot = build_snapshot(
        "gw-1",
        TournamentState.RUNNING,
        "Round 1",
        ["a", "a", "b"],
        total_entries=10,
        eliminated=7,
        phase="round",
    )

    assert snapshot.survivor_count == 3
    assert snapshot.total_entries == 10
    assert snapshot.phase == "round"
    assert len(snapshot.participants) == 2


@pytest.mark.asyncio
async def test_logging_reporter(caplog):
    snapshot = build_snapshot(
        "gw-1", TournamentState.RUNNING, "Round 1", ["a"], total_entries=2
    )

    with caplog.at_level(logging.INFO):
        await LoggingReporter().report("gw-1", snapshot)

    assert "Round 1" in caplog.text


@pytest.mark.asyncio
async def test_composite_reporter_isolates_failures():
    failing = AsyncMock()
    failing.report.side_effect = RuntimeError("boom")
    working = AsyncMock()
    snapshot = build_snapshot(
        "gw-1", TournamentState.RUNNING, "Round 1", ["a"], total_entries=1
    )

    await CompositeReporter(failing, working).report("gw-1", snapshot)

    working.report.assert_awaited_once_with("gw-1", snapshot)
