import asyncio
from unittest.mock import AsyncMock

import pytest

from royale_bot import (
    AdmissionQueue,
    AdmissionRequest,
    EntryLedger,
    Tournament,
    TournamentState,
)


def build_ledger(setup) -> EntryLedger:
    return EntryLedger(
        Tournament(
            tournament_id="gw-1",
            setup=setup,
            server_seed="seed",
            server_seed_hash="hash",
            created_at="2024-01-01T00:00:00.000000Z",
            collect_ends_at="2024-01-01T00:00:30.000000Z",
        )
    )


def request(participant_id: str, role_tags=None) -> AdmissionRequest:
    return AdmissionRequest(
        tournament_id="gw-1",
        participant_id=participant_id,
        role_tags=frozenset(role_tags) if role_tags is not None else None,
    )


class TestAdmissionQueue:
    @pytest.mark.asyncio
    async def test_vip_and_regular_entries(self, setup):
        ledger = build_ledger(setup)
        persisted = []
        queue = AdmissionQueue(ledger, persist=persisted.append, spacing=0)

        regular = await queue.submit(request("alice", []))
        vip = await queue.submit(request("bob", ["vip"]))

        assert regular.accepted and regular.entries_granted == 1
        assert vip.accepted and vip.entries_granted == 5
        assert vip.participant_total == 5
        assert len(ledger) == 6
        assert sum(ledger.tournament.entrant_totals.values()) == len(ledger)
        assert len(persisted) == 2

    @pytest.mark.asyncio
    async def test_requests_processed_in_submission_order(self, setup):
        ledger = build_ledger(setup)
        queue = AdmissionQueue(ledger, persist=lambda _t: None, spacing=0)

        futures = [queue.submit(request(f"user{index}", [])) for index in range(5)]
        await asyncio.gather(*futures)

        assert [entry.participant_id for entry in ledger.tournament.entries] == [
            f"user{index}" for index in range(5)
        ]

    @pytest.mark.asyncio
    async def test_spacing_applied_between_requests(self, setup):
        ledger = build_ledger(setup)
        sleep = AsyncMock()
        queue = AdmissionQueue(
            ledger, persist=lambda _t: None, spacing=1.0, sleep=sleep
        )

        await asyncio.gather(queue.submit(request("a", [])), queue.submit(request("b", [])))
        await queue.join()

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_role_lookup_used_when_tags_missing(self, setup):
        ledger = build_ledger(setup)
        resolve = AsyncMock(return_value=["vip"])
        queue = AdmissionQueue(
            ledger, persist=lambda _t: None, resolve_roles=resolve, spacing=0
        )

        result = await queue.submit(request("alice"))

        resolve.assert_awaited_once_with("alice")
        assert result.entries_granted == 5

    @pytest.mark.asyncio
    async def test_role_lookup_failure_falls_back_to_base(self, setup):
        ledger = build_ledger(setup)
        resolve = AsyncMock(side_effect=RuntimeError("discord down"))
        queue = AdmissionQueue(
            ledger, persist=lambda _t: None, resolve_roles=resolve, spacing=0
        )

        result = await queue.submit(request("alice"))

        assert result.accepted
        assert result.entries_granted == 1

    @pytest.mark.asyncio
    async def test_failed_save_rolls_back_entries(self, setup):
        ledger = build_ledger(setup)
        calls = {"count": 0}

        def persist(_tournament):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("write failed")

        queue = AdmissionQueue(ledger, persist=persist, spacing=0)

        first = queue.submit(request("alice", []))
        second = queue.submit(request("bob", []))

        with pytest.raises(RuntimeError, match="write failed"):
            await first
        result = await second
        assert result.accepted
        assert result.participant_total == 1
        assert "alice" not in ledger.tournament.entrant_totals
        assert [(entry.entry_id, entry.participant_id) for entry in ledger.tournament.entries] == [
            ("e0", "bob")
        ]
        assert ledger.tournament.next_sequence == 1

        retry = await queue.submit(request("alice", []))
        assert retry.participant_total == 1
        assert ledger.tournament.entrant_totals == {"bob": 1, "alice": 1}
        assert len(ledger) == 2

    @pytest.mark.asyncio
    async def test_regular_then_vip_join_accumulates(self, setup):
        ledger = build_ledger(setup)
        queue = AdmissionQueue(ledger, persist=lambda _t: None, spacing=0)

        first = await queue.submit(request("alice", []))
        second = await queue.submit(request("alice", ["vip"]))

        assert first.participant_total == 1
        assert second.entries_granted == 5
        assert second.participant_total == 6
        assert ledger.tournament.entrant_totals["alice"] == 6
        assert [entry.sequence_index for entry in ledger.tournament.entries] == list(
            range(6)
        )

    @pytest.mark.asyncio
    async def test_rejects_when_collection_ended(self, setup):
        ledger = build_ledger(setup)
        ledger.tournament.state = TournamentState.LOCKED
        queue = AdmissionQueue(ledger, persist=lambda _t: None, spacing=0)

        result = await queue.submit(request("alice", []))

        assert not result.accepted
        assert result.reason == "Collection already ended."
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_close_rejects_pending_requests(self, setup):
        ledger = build_ledger(setup)
        gate = asyncio.Event()

        async def slow_roles(_participant_id):
            await gate.wait()
            return []

        queue = AdmissionQueue(
            ledger, persist=lambda _t: None, resolve_roles=slow_roles, spacing=0
        )
        first = queue.submit(request("alice"))
        second = queue.submit(request("bob"))
        await asyncio.sleep(0)

        await queue.close(reason="Collection already ended.")

        assert (await first).reason == "Collection already ended."
        assert (await second).reason == "Collection already ended."
        assert len(ledger) == 0
        late = await queue.submit(request("carol", []))
        assert not late.accepted

    @pytest.mark.asyncio
    async def test_rejects_other_tournament(self, setup):
        queue = AdmissionQueue(build_ledger(setup), persist=lambda _t: None)

        with pytest.raises(ValueError):
            queue.submit(
                AdmissionRequest(tournament_id="gw-other", participant_id="alice")
            )
