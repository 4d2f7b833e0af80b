"""Rate-limited admission of join requests into a tournament ledger."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from .errors import InvalidState
from .ledger import EntryLedger
from .models import AdmissionRequest, AdmissionResult, Tournament

log = logging.getLogger("royale-admission")

RoleResolver = Callable[[str], Awaitable[Iterable[str]]]
Persist = Callable[[Tournament], None]
Sleep = Callable[[float], Awaitable[None]]


class AdmissionQueue:
    """Processes join requests strictly one at a time, in submission order.

    A failure while handling one request is logged and attached to that
    request's future; the queue moves on to the next request.
    """

    def __init__(
        self,
        ledger: EntryLedger,
        *,
        persist: Persist,
        resolve_roles: RoleResolver | None = None,
        spacing: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._persist = persist
        self._resolve_roles = resolve_roles
        self._spacing = spacing
        self._sleep = sleep
        self._pending: asyncio.Queue[
            tuple[AdmissionRequest, asyncio.Future[AdmissionResult]]
        ] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._current: asyncio.Future[AdmissionResult] | None = None
        self._closed = False
        self._closed_reason = "Giveaway is no longer running."

    @property
    def pending(self) -> int:
        return self._pending.qsize()

    @property
    def processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def submit(self, request: AdmissionRequest) -> asyncio.Future[AdmissionResult]:
        if request.tournament_id != self._ledger.tournament_id:
            raise ValueError("Request belongs to a different tournament")
        future: asyncio.Future[AdmissionResult] = (
            asyncio.get_running_loop().create_future()
        )
        if self._closed:
            future.set_result(
                AdmissionResult(accepted=False, reason=self._closed_reason)
            )
            return future
        self._pending.put_nowait((request, future))
        if not self.processing:
            self._worker = asyncio.create_task(
                self._drain(), name=f"admission-{self._ledger.tournament_id}"
            )
        return future

    async def join(self) -> None:
        """Wait until every submitted request has been handled."""
        while self.processing:
            await asyncio.shield(self._worker)  # type: ignore[arg-type]

    async def close(self, reason: str = "Giveaway is no longer running.") -> None:
        """Stop the worker and reject everything still waiting."""
        self._closed = True
        self._closed_reason = reason
        current = self._current
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        rejected = AdmissionResult(accepted=False, reason=reason)
        if current is not None and not current.done():
            current.set_result(rejected)
        while not self._pending.empty():
            _request, future = self._pending.get_nowait()
            if not future.done():
                future.set_result(rejected)

    async def _drain(self) -> None:
        while not self._pending.empty():
            request, future = self._pending.get_nowait()
            self._current = future
            try:
                result = await self.process(request)
            except Exception as exc:  # pylint: disable=broad-except
                log.exception(
                    "Error processing join for %s in %s",
                    request.participant_id,
                    request.tournament_id,
                )
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._current = None
            await self._sleep(self._spacing)

    async def entry_multiplier(self, request: AdmissionRequest) -> int:
        setup = self._ledger.tournament.setup
        role_tags: Iterable[str] | None = request.role_tags
        if role_tags is None and self._resolve_roles is not None:
            try:
                role_tags = await self._resolve_roles(request.participant_id)
            except Exception as exc:  # pylint: disable=broad-except
                log.warning(
                    "Role check failed for %s, using base entries: %s",
                    request.participant_id,
                    exc,
                )
                role_tags = None
        return setup.entries_for_roles(role_tags or ())

    async def process(self, request: AdmissionRequest) -> AdmissionResult:
        try:
            self._ledger.ensure_collecting()
        except InvalidState as exc:
            return AdmissionResult(accepted=False, reason=str(exc))

        count = await self.entry_multiplier(request)

        async with self._ledger.lock:
            try:
                self._ledger.ensure_collecting()
            except InvalidState as exc:
                return AdmissionResult(accepted=False, reason=str(exc))
            # a failed save rolls the entries back so a retry cannot double up
            with self._ledger.transaction() as tournament:
                added = self._ledger.append_entries(
                    request.participant_id, count, request.display_name
                )
                self._persist(tournament)
            total = tournament.entrant_totals[request.participant_id]

        log.info(
            "Admitted %s with %s entries into %s (%s total)",
            request.participant_id,
            len(added),
            request.tournament_id,
            len(self._ledger),
        )
        return AdmissionResult(
            accepted=True, entries_granted=len(added), participant_total=total
        )


__all__ = ["AdmissionQueue", "RoleResolver"]
