from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from botocore.exceptions import ClientError

from royale_bot import (
    EngineTiming,
    ProgressSnapshot,
    RoleEntries,
    RoyaleEngine,
    RoyaleStorage,
    TournamentSetup,
)


class FakeTable:
    def __init__(self, page_size: int | None = None) -> None:
        self.items: dict[tuple[str, str], dict[str, object]] = {}
        self.put_count = 0
        self.query_count = 0
        self.page_size = page_size

    def get_item(self, *, Key):
        return {"Item": self.items.get((Key["pk"], Key["sk"]))}

    def put_item(self, *, Item):
        self.put_count += 1
        self.items[(Item["pk"], Item["sk"])] = Item

    def query(
        self, *, KeyConditionExpression, Select="COUNT", ExclusiveStartKey=None, **_kwargs
    ):
        self.query_count += 1
        pk_value = None
        sk_prefix = ""
        for condition in KeyConditionExpression._values:  # type: ignore[attr-defined]
            key, value = condition._values  # type: ignore[attr-defined]
            if key.name == "pk":  # pragma: no branch - helper
                pk_value = value
            elif key.name == "sk":
                sk_prefix = value
        matching_keys = [
            key
            for key in sorted(self.items)
            if key[0] == pk_value and key[1].startswith(sk_prefix)
        ]
        if ExclusiveStartKey is not None:
            start = (ExclusiveStartKey["pk"], ExclusiveStartKey["sk"])
            matching_keys = [key for key in matching_keys if key > start]
        response: dict[str, object] = {}
        if self.page_size is not None and len(matching_keys) > self.page_size:
            matching_keys = matching_keys[: self.page_size]
            last = matching_keys[-1]
            response["LastEvaluatedKey"] = {"pk": last[0], "sk": last[1]}
        items = [self.items[key] for key in matching_keys]
        response["Count"] = len(items)
        if Select != "COUNT":
            response["Items"] = [item.copy() for item in items]
        return response

    def delete_item(self, *, Key, ConditionExpression):
        del ConditionExpression  # pragma: no cover - unused in fake implementation
        item_key = (Key["pk"], Key["sk"])
        if item_key not in self.items:
            raise ClientError(
                {
                    "Error": {
                        "Code": "ConditionalCheckFailedException",
                        "Message": "Item not found",
                    }
                },
                "DeleteItem",
            )
        self.items.pop(item_key)


class RecordingReporter:
    def __init__(self) -> None:
        self.snapshots: list[tuple[str, ProgressSnapshot]] = []

    async def report(self, tournament_id: str, snapshot: ProgressSnapshot) -> None:
        self.snapshots.append((tournament_id, snapshot))

    def kinds(self) -> list[str]:
        return [snapshot.kind.value for _tid, snapshot in self.snapshots]


class ManualClock:
    """Clock that only moves when the injected sleep is awaited."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)
        await asyncio.sleep(0)


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def storage(table: FakeTable) -> RoyaleStorage:
    return RoyaleStorage(table)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def setup() -> TournamentSetup:
    return TournamentSetup(
        setup_id="setup-1",
        name="weekly",
        description="Weekly giveaway",
        collect_duration_seconds=30,
        base_entries=1,
        role_entries=(RoleEntries(role_id="vip", entries=5),),
        updated_by=99,
        updated_at="2024-01-01T00:00:00.000000Z",
    )


@pytest.fixture
def engine(storage: RoyaleStorage, reporter: RecordingReporter):
    return RoyaleEngine(
        storage,
        reporter,
        timing=EngineTiming.immediate(),
        server_seed="server-seed",
    )
