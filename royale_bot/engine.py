"""Lifecycle of a battle royale giveaway.

``collecting -> locked -> running -> finished``, with ``locked -> finished``
when nobody joined. Each tournament owns one ledger, one admission queue and at
most one watcher and one runner task, so tournaments never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from .admission import AdmissionQueue, Sleep
from .config import EngineTiming
from .errors import CollaboratorUnavailable, InvalidState, TournamentNotFound
from .fairness import commit_server_seed, generate_server_seed, rank_entries
from .ledger import EntryLedger
from .models import (
    AdmissionRequest,
    AdmissionResult,
    Entry,
    ProgressSnapshot,
    SnapshotKind,
    Tournament,
    TournamentSetup,
    TournamentState,
    format_iso,
)
from .reporter import ProgressReporter, build_snapshot
from .rounds import EliminationStep, frame_progress, plan_elimination
from .storage import RoyaleStorage
from .validation import normalize_client_seeds

log = logging.getLogger("royale-engine")

Clock = Callable[[], datetime]
MemberRoleLookup = Callable[[Tournament, str], Awaitable[Iterable[str]]]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def new_tournament_id() -> str:
    return f"gw-{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class _TournamentRuntime:
    ledger: EntryLedger
    queue: AdmissionQueue
    watcher: asyncio.Task[None] | None = None
    runner: asyncio.Task[None] | None = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    def tasks(self) -> list[asyncio.Task[None]]:
        return [task for task in (self.watcher, self.runner) if task is not None]


class RoyaleEngine:
    """Owns every live tournament and is the only thing that mutates them."""

    def __init__(
        self,
        storage: RoyaleStorage,
        reporter: ProgressReporter,
        *,
        timing: EngineTiming | None = None,
        server_seed: str | None = None,
        member_roles: MemberRoleLookup | None = None,
        clock: Clock = _utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._reporter = reporter
        self._timing = timing or EngineTiming()
        self._server_seed = server_seed
        self._member_roles = member_roles
        self._clock = clock
        self._sleep = sleep
        self._tournaments: dict[str, _TournamentRuntime] = {}

    @property
    def timing(self) -> EngineTiming:
        return self._timing

    # ----- Registry -----
    def _build_runtime(self, tournament: Tournament) -> _TournamentRuntime:
        ledger = EntryLedger(tournament)
        queue = AdmissionQueue(
            ledger,
            persist=self._storage.save_tournament,
            resolve_roles=self._role_resolver(ledger),
            spacing=self._timing.admission_spacing,
            sleep=self._sleep,
        )
        runtime = _TournamentRuntime(ledger=ledger, queue=queue)
        if tournament.is_finished:
            runtime.finished.set()
        return runtime

    def _register(self, tournament: Tournament) -> _TournamentRuntime:
        runtime = self._build_runtime(tournament)
        self._tournaments[tournament.tournament_id] = runtime
        return runtime

    def _retire(self, runtime: _TournamentRuntime) -> None:
        """Forget a finished tournament; later lookups read it from storage."""
        runtime.finished.set()
        tournament_id = runtime.ledger.tournament_id
        if self._tournaments.get(tournament_id) is runtime:
            del self._tournaments[tournament_id]

    def _start_tasks(self, runtime: _TournamentRuntime) -> bool:
        """Start the watcher or runner the current state needs, if missing."""
        tournament_id = runtime.ledger.tournament_id
        state = runtime.ledger.state
        if state is TournamentState.COLLECTING:
            if runtime.watcher is None or runtime.watcher.done():
                runtime.watcher = asyncio.create_task(
                    self._watch_collection(runtime), name=f"collect-{tournament_id}"
                )
                return True
        elif state is TournamentState.RUNNING:
            if runtime.runner is None or runtime.runner.done():
                runtime.runner = asyncio.create_task(
                    self._run(runtime), name=f"royale-{tournament_id}"
                )
                return True
        return False

    def _role_resolver(self, ledger: EntryLedger):
        lookup = self._member_roles
        if lookup is None:
            return None

        async def resolve(participant_id: str) -> Iterable[str]:
            return await lookup(ledger.tournament, participant_id)

        return resolve

    def _runtime(self, tournament_id: str) -> _TournamentRuntime:
        runtime = self._tournaments.get(tournament_id)
        if runtime is not None:
            return runtime
        stored = self._storage.get_tournament(tournament_id)
        if stored is None:
            raise TournamentNotFound(tournament_id)
        if stored.is_finished:
            return self._build_runtime(stored)
        runtime = self._register(stored)
        if self._start_tasks(runtime):
            log.info(
                "Picked up tournament %s in state %s from storage",
                tournament_id,
                stored.state.value,
            )
        return runtime

    def get_state(self, tournament_id: str) -> Tournament:
        """Read-only copy of the tournament as it stands right now."""
        return self._runtime(tournament_id).ledger.snapshot()

    def active_tournaments(self) -> list[Tournament]:
        return [
            runtime.ledger.snapshot()
            for runtime in self._tournaments.values()
            if runtime.ledger.state is not TournamentState.FINISHED
        ]

    # ----- Creation & admission -----
    async def create_tournament(
        self,
        setup: TournamentSetup,
        *,
        created_by: int | None = None,
        channel_id: int | None = None,
        tournament_id: str | None = None,
    ) -> str:
        tournament_id = tournament_id or new_tournament_id()
        if tournament_id in self._tournaments:
            raise InvalidState(f"Tournament {tournament_id} already exists")
        now = self._clock()
        server_seed = self._server_seed or generate_server_seed()
        tournament = Tournament(
            tournament_id=tournament_id,
            setup=setup,
            server_seed=server_seed,
            server_seed_hash=commit_server_seed(server_seed),
            created_at=format_iso(now),
            collect_ends_at=format_iso(
                now + timedelta(seconds=setup.collect_duration_seconds)
            ),
            created_by=created_by,
            channel_id=channel_id,
        )
        self._storage.save_tournament(tournament)
        self._start_tasks(self._register(tournament))
        log.info(
            "Created tournament %s from setup %s (collecting until %s)",
            tournament_id,
            setup.setup_id,
            tournament.collect_ends_at,
        )
        return tournament_id

    def admit(self, request: AdmissionRequest) -> asyncio.Future[AdmissionResult]:
        """Queue a join; raises right away if the tournament cannot take entries."""
        runtime = self._runtime(request.tournament_id)
        runtime.ledger.ensure_collecting()
        return runtime.queue.submit(request)

    async def attach_message(
        self, tournament_id: str, channel_id: int, message_id: int
    ) -> None:
        runtime = self._runtime(tournament_id)
        ledger = runtime.ledger
        async with ledger.lock:
            if ledger.state is TournamentState.FINISHED:
                raise InvalidState("Giveaway already finished.")
            with ledger.transaction() as tournament:
                tournament.channel_id = channel_id
                tournament.message_id = message_id
                self._storage.save_tournament(tournament)

    # ----- Collection window -----
    async def _watch_collection(self, runtime: _TournamentRuntime) -> None:
        ledger = runtime.ledger
        tournament_id = ledger.tournament_id
        deadline = ledger.tournament.collect_deadline()
        interval = self._timing.live_update_interval
        last_reported: int | None = None
        while ledger.state is TournamentState.COLLECTING:
            now = self._clock()
            if now >= deadline:
                await self.close_collection(tournament_id)
                return
            if len(ledger) != last_reported:
                last_reported = len(ledger)
                await self._emit(runtime, self._collecting_snapshot(ledger))
            remaining = (deadline - now).total_seconds()
            await self._sleep(min(interval, remaining) if interval > 0 else remaining)

    def _collecting_snapshot(self, ledger: EntryLedger) -> ProgressSnapshot:
        tournament = ledger.tournament
        return build_snapshot(
            tournament.tournament_id,
            tournament.state,
            "Collecting entries",
            (entry.participant_id for entry in tournament.entries),
            total_entries=len(tournament.entries),
            display_names=ledger.display_names(),
            detail=f"Collecting ends {tournament.collect_ends_at}",
            kind=SnapshotKind.COLLECTING,
        )

    async def close_collection(self, tournament_id: str) -> Tournament:
        """Stop admissions. Calling it again is a no-op."""
        runtime = self._runtime(tournament_id)
        ledger = runtime.ledger
        async with ledger.lock:
            if ledger.state is not TournamentState.COLLECTING:
                return ledger.snapshot()
            with ledger.transaction() as tournament:
                tournament.state = TournamentState.LOCKED
                empty = not tournament.entries
                if empty:
                    tournament.state = TournamentState.FINISHED
                    tournament.finished_at = format_iso(self._clock())
                self._storage.save_tournament(tournament)

        watcher = runtime.watcher
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
        await runtime.queue.close(reason="Collection already ended.")

        if empty:
            log.info("Tournament %s closed with no entries", tournament_id)
            await self._emit(
                runtime,
                build_snapshot(
                    tournament_id,
                    TournamentState.FINISHED,
                    "No entries",
                    (),
                    total_entries=0,
                    detail="No entries - cannot run Battle Royale.",
                    kind=SnapshotKind.EMPTY,
                ),
            )
            self._retire(runtime)
        else:
            log.info(
                "Tournament %s locked with %s entries",
                tournament_id,
                len(tournament.entries),
            )
            await self._emit(
                runtime,
                build_snapshot(
                    tournament_id,
                    TournamentState.LOCKED,
                    "Collection ended",
                    (entry.participant_id for entry in tournament.entries),
                    total_entries=len(tournament.entries),
                    display_names=ledger.display_names(),
                    detail=(
                        f"Total entries: {len(tournament.entries)}. "
                        "Creator should press Verify and provide seeds."
                    ),
                    kind=SnapshotKind.LOCKED,
                ),
            )
        return ledger.snapshot()

    # ----- Reveal & run -----
    async def reveal_seeds(
        self, tournament_id: str, client_seed1: str | None, client_seed2: str | None
    ) -> Tournament:
        runtime = self._runtime(tournament_id)
        ledger = runtime.ledger
        if ledger.state is TournamentState.FINISHED:
            raise InvalidState("Giveaway already finished.")
        seed1, seed2 = normalize_client_seeds(client_seed1, client_seed2)

        async with ledger.lock:
            tournament = ledger.tournament
            if tournament.state is TournamentState.FINISHED:
                raise InvalidState("Giveaway already finished.")
            if tournament.state is TournamentState.COLLECTING:
                raise InvalidState(
                    "Collection is still open; seeds can be revealed once it ends."
                )
            if tournament.seeds_revealed or tournament.final_ranking:
                raise InvalidState("Seeds have already been revealed.")
            ranking = rank_entries(
                tournament.entries, tournament.server_seed, seed1, seed2
            )
            # a failed save leaves the giveaway locked so the reveal can be retried
            with ledger.transaction() as tournament:
                tournament.client_seed1 = seed1
                tournament.client_seed2 = seed2
                ledger.publish_ranking(ranking)
                tournament.state = TournamentState.RUNNING
                tournament.steps_completed = 0
                self._storage.save_tournament(tournament)

        log.info(
            "Seeds revealed for %s; running with %s entries",
            tournament_id,
            len(ranking),
        )
        await self._emit(
            runtime,
            self._survivor_snapshot(
                ledger,
                "Battle Royale starting",
                len(ranking),
                detail=f"Battle Royale starting now with {len(ranking)} entries.",
                kind=SnapshotKind.STARTING,
            ),
        )
        self._start_tasks(runtime)
        return ledger.snapshot()

    def _survivor_snapshot(
        self,
        ledger: EntryLedger,
        label: str,
        survivors: int,
        **kwargs,
    ) -> ProgressSnapshot:
        tournament = ledger.tournament
        return build_snapshot(
            tournament.tournament_id,
            tournament.state,
            label,
            (ranked.participant_id for ranked in tournament.final_ranking[:survivors]),
            total_entries=len(tournament.entries),
            display_names=ledger.display_names(),
            **kwargs,
        )

    async def _run(self, runtime: _TournamentRuntime) -> None:
        ledger = runtime.ledger
        tournament = ledger.tournament
        steps = plan_elimination(len(tournament.final_ranking))
        try:
            for step in steps[tournament.steps_completed :]:
                if tournament.survivor_count != step.before:
                    raise RuntimeError(
                        f"Survivor count {tournament.survivor_count} does not match "
                        f"step {step.index} of {tournament.tournament_id}"
                    )
                await self._play_step(runtime, step)
            await self._finish(runtime)
        except asyncio.CancelledError:
            log.info("Run for %s cancelled", tournament.tournament_id)
            raise
        except Exception:
            log.exception("Battle royale run failed for %s", tournament.tournament_id)
            raise

    async def _play_step(self, runtime: _TournamentRuntime, step: EliminationStep) -> None:
        ledger = runtime.ledger
        tournament = ledger.tournament
        timing = self._timing
        if step.starts_phase:
            await self._sleep(timing.pre_round_delay)

        frames = len(step.previews)
        for frame, survivors in enumerate(step.previews):
            await self._emit(
                runtime,
                self._survivor_snapshot(
                    ledger,
                    step.title,
                    survivors,
                    detail=(
                        f"Progress {frame + 1}/{frames}"
                        if step.kind == "round"
                        else "Eliminating gradually until 1 remains."
                    ),
                    eliminated=step.before - survivors,
                    progress_percent=round(frame_progress(frame, frames) * 100),
                    phase=step.kind,
                ),
            )
            await self._sleep(timing.round_duration / frames)

        async with ledger.lock:
            with ledger.transaction() as tournament:
                tournament.survivor_count = step.after
                tournament.steps_completed = step.index + 1
                self._storage.save_tournament(tournament)

        log.info(
            "%s for %s: %s -> %s",
            step.result_title,
            tournament.tournament_id,
            step.before,
            step.after,
        )
        await self._emit(
            runtime,
            self._survivor_snapshot(
                ledger,
                step.result_title,
                step.after,
                detail=f"{step.eliminated} entries eliminated this round.",
                eliminated=step.eliminated,
                kind=SnapshotKind.STEP_RESULT,
                phase=step.kind,
            ),
        )
        if step.kind == "final":
            await self._sleep(timing.final_pass_pause)

    async def _finish(self, runtime: _TournamentRuntime) -> None:
        ledger = runtime.ledger
        async with ledger.lock:
            with ledger.transaction() as tournament:
                top = tournament.final_ranking[0]
                source = tournament.find_entry(top.entry_id)
                winner = Entry(
                    entry_id=top.entry_id,
                    participant_id=top.participant_id,
                    sequence_index=top.sequence_index,
                    display_name=source.display_name if source else "",
                    fairness_value=top.fairness_value,
                )
                tournament.survivor_count = 1
                tournament.winner = winner
                tournament.state = TournamentState.FINISHED
                tournament.finished_at = format_iso(self._clock())
                self._storage.save_tournament(tournament)

        log.info(
            "Tournament %s won by %s with entry %s (%s)",
            tournament.tournament_id,
            winner.participant_id,
            winner.entry_id,
            winner.fairness_value,
        )
        await self._emit(
            runtime,
            self._survivor_snapshot(
                ledger,
                "Winner",
                1,
                detail=f"Winning entry id: {winner.entry_id}",
                kind=SnapshotKind.WINNER,
            ),
        )
        self._retire(runtime)

    async def wait_finished(self, tournament_id: str) -> Tournament:
        runtime = self._runtime(tournament_id)
        await runtime.finished.wait()
        return runtime.ledger.snapshot()

    # ----- Reporting -----
    async def _emit(self, runtime: _TournamentRuntime, snapshot: ProgressSnapshot) -> None:
        tournament_id = runtime.ledger.tournament_id
        try:
            await self._reporter.report(tournament_id, snapshot)
        except CollaboratorUnavailable as exc:
            log.warning("Progress display unavailable for %s: %s", tournament_id, exc)
        except Exception:  # pylint: disable=broad-except
            log.exception("Progress report failed for %s", tournament_id)

    # ----- Recovery -----
    async def resume(self) -> list[str]:
        """Pick up unfinished tournaments from storage after a restart."""
        resumed: list[str] = []
        for tournament in self._storage.list_unfinished():
            tournament_id = tournament.tournament_id
            # already loaded by an early lookup; make sure its tasks run
            runtime = self._tournaments.get(tournament_id)
            if runtime is None:
                runtime = self._register(tournament)
            self._start_tasks(runtime)
            log.info(
                "Resumed tournament %s in state %s (step %s)",
                tournament_id,
                runtime.ledger.state.value,
                runtime.ledger.tournament.steps_completed,
            )
            resumed.append(tournament_id)
        return resumed

    async def shutdown(self) -> None:
        for runtime in list(self._tournaments.values()):
            tasks = [task for task in runtime.tasks() if not task.done()]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await runtime.queue.close()


__all__ = ["MemberRoleLookup", "RoyaleEngine", "new_tournament_id"]
