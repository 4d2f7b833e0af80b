from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from .models import Tournament, TournamentSetup, TournamentState

# rows per chunk item; keeps each item far below DynamoDB's 400 KB limit
CHUNK_ROWS = 200
CHUNK_SK_TEMPLATE = "CHUNK#%s#%s#%05d"
ENTRIES_PART = "ENTRIES"
RANKING_PART = "RANKING"


class RoyaleStorage:
    """DynamoDB persistence for giveaway setups and tournaments.

    A tournament is a header item plus chunk items holding its entries and
    ranking. Chunks are written before the header and the header records how
    many rows are valid, so a torn save still reads back as the previous state.
    """

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Royale table is not configured")

    def _query_all(self, condition) -> Iterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": condition,
            "Select": "ALL_ATTRIBUTES",
        }
        while True:
            response = self._table.query(**kwargs)
            yield from response.get("Items", [])
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key

    # ----- Setups -----
    def get_setup(self, setup_id: str) -> TournamentSetup | None:
        self.ensure_table()
        resp = self._table.get_item(Key=TournamentSetup.key(setup_id))
        item = resp.get("Item")
        if not item:
            return None
        return TournamentSetup.from_item(item)

    def find_setup(self, reference: str) -> TournamentSetup | None:
        """Look a setup up by id first, then by name."""
        setup = self.get_setup(reference)
        if setup is not None:
            return setup
        lowered = reference.lower()
        for candidate in self.list_setups():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def save_setup(self, setup: TournamentSetup) -> None:
        self.ensure_table()
        self._table.put_item(Item=setup.to_item())

    def list_setups(self) -> list[TournamentSetup]:
        self.ensure_table()
        setups = [
            TournamentSetup.from_item(item)
            for item in self._query_all(
                Key("pk").eq(TournamentSetup.PK_VALUE)
                & Key("sk").begins_with("SETUP#")
            )
        ]
        setups.sort(key=lambda setup: (setup.name.lower(), setup.setup_id))
        return setups

    def delete_setup(self, setup_id: str) -> bool:
        self.ensure_table()
        try:
            self._table.delete_item(
                Key=TournamentSetup.key(setup_id),
                ConditionExpression="attribute_exists(pk)",
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                return False
            raise
        return True

    # ----- Tournaments -----
    def get_tournament(self, tournament_id: str) -> Tournament | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Tournament.key(tournament_id))
        item = resp.get("Item")
        if not item:
            return None
        return self._assemble(item)

    def save_tournament(self, tournament: Tournament) -> None:
        self.ensure_table()
        header = tournament.to_item()
        entries: list[dict[str, object]] = header.pop("entries")  # type: ignore[assignment]
        ranking: list[dict[str, object]] = header.pop("final_ranking")  # type: ignore[assignment]
        # rebuilt from the entries on load
        header.pop("entrant_totals")
        self._put_chunks(tournament.tournament_id, ENTRIES_PART, entries)
        self._put_chunks(tournament.tournament_id, RANKING_PART, ranking)
        header["entry_count"] = len(entries)
        header["ranking_count"] = len(ranking)
        self._table.put_item(Item=header)

    def _put_chunks(
        self, tournament_id: str, part: str, rows: list[dict[str, object]]
    ) -> None:
        for start in range(0, len(rows), CHUNK_ROWS):
            self._table.put_item(
                Item={
                    "pk": Tournament.PK_VALUE,
                    "sk": CHUNK_SK_TEMPLATE % (tournament_id, part, start // CHUNK_ROWS),
                    "tournament_id": tournament_id,
                    "part": part,
                    "rows": rows[start : start + CHUNK_ROWS],
                }
            )

    def _assemble(self, header: dict[str, Any]) -> Tournament:
        # items saved before chunking carry their rows inline
        if "entry_count" not in header:
            return Tournament.from_item(header)
        tournament_id = str(header["tournament_id"])
        rows: dict[str, list[dict[str, Any]]] = {ENTRIES_PART: [], RANKING_PART: []}
        for chunk in self._query_all(
            Key("pk").eq(Tournament.PK_VALUE)
            & Key("sk").begins_with(f"CHUNK#{tournament_id}#")
        ):
            rows.setdefault(str(chunk.get("part", "")), []).extend(
                chunk.get("rows") or []
            )
        entries = rows[ENTRIES_PART][: int(header["entry_count"])]
        totals: dict[str, int] = {}
        for row in entries:
            participant_id = str(row["participant_id"])
            totals[participant_id] = totals.get(participant_id, 0) + 1
        item = dict(header)
        item["entries"] = entries
        item["final_ranking"] = rows[RANKING_PART][: int(header["ranking_count"])]
        item["entrant_totals"] = [
            {"participant_id": participant_id, "count": count}
            for participant_id, count in totals.items()
        ]
        return Tournament.from_item(item)

    def list_tournaments(self) -> list[Tournament]:
        self.ensure_table()
        tournaments = [
            self._assemble(item)
            for item in self._query_all(
                Key("pk").eq(Tournament.PK_VALUE)
                & Key("sk").begins_with("TOURNAMENT#")
            )
        ]
        tournaments.sort(key=lambda tournament: tournament.created_at)
        return tournaments

    def list_unfinished(self) -> list[Tournament]:
        return [
            tournament
            for tournament in self.list_tournaments()
            if tournament.state is not TournamentState.FINISHED
        ]


__all__ = ["CHUNK_ROWS", "RoyaleStorage"]
