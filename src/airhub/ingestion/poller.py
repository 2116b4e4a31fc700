"""Snapshot polling.

This module owns the fixed-interval timer and the fetch bookkeeping
(sequence numbers, consecutive failures). The HTTP endpoint itself lives
in :mod:`airhub._api.airquality`; what happens to a fetched payload is the
hub's business.

Keeping the timer here keeps "how data enters" separate from "how it is
merged".
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from airhub.exceptions import AirHubTransportError

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    """Result of one tagged fetch."""

    sequence: int
    completed_at: datetime
    payload: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SnapshotPoller:
    """Issues tagged snapshot fetches, on demand or on a fixed interval.

    A failed fetch never raises: the outcome carries the error and the next
    tick simply tries again. There is no backoff. Outcomes only count
    towards the connection status once :meth:`commit` accepts them.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        *,
        interval: float,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetch = fetch
        self._interval = interval
        self._clock = clock
        self._sequence = itertools.count(1)
        self._task: asyncio.Task[None] | None = None
        self.consecutive_failures = 0
        self.last_error: str | None = None
        self.last_success_at: datetime | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def has_succeeded(self) -> bool:
        return self.last_success_at is not None

    async def fetch_once(self) -> FetchOutcome:
        """Fetch one snapshot, tagged with the next sequence number.

        Bookkeeping is left untouched; pass the outcome to :meth:`commit`
        when it is applied.
        """
        sequence = next(self._sequence)
        _logger.debug("Snapshot fetch #%d issued", sequence)
        try:
            payload = await self._fetch()
        except AirHubTransportError as exc:
            _logger.debug("Snapshot fetch #%d failed: %s", sequence, exc)
            return FetchOutcome(sequence=sequence, completed_at=self._clock(), error=str(exc))
        return FetchOutcome(sequence=sequence, completed_at=self._clock(), payload=payload)

    def commit(self, outcome: FetchOutcome) -> None:
        """Count *outcome* towards the failure streak and last success."""
        if outcome.ok:
            self.consecutive_failures = 0
            self.last_error = None
            self.last_success_at = outcome.completed_at
            return
        self.consecutive_failures += 1
        self.last_error = outcome.error
        _logger.warning(
            "Snapshot fetch #%d failed (%d consecutive): %s",
            outcome.sequence,
            self.consecutive_failures,
            outcome.error,
        )

    def start(self, on_tick: Callable[[], Awaitable[None]]) -> None:
        """Run *on_tick* now and then every ``interval`` seconds until stopped."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(on_tick), name="airhub-poller")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, on_tick: Callable[[], Awaitable[None]]) -> None:
        while True:
            try:
                await on_tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.warning("Poll cycle failed unexpectedly", exc_info=True)
            await asyncio.sleep(self._interval)
