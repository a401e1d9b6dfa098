"""
Retry Service

Drives a delivery sequence through the failover dispatcher with
exponential backoff, recording the sequence in the attempt ledger.

States: FRESH (no record) -> RETRYING (record exists, waiting)
-> SUCCEEDED (record deleted) | ABANDONED (record flagged).
"""
import asyncio
import enum
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from courier.config import RequesterConfig
from courier.errors import ExhaustionFailure, TransportFailure
from courier.logging_config import get_logger
from courier.routes.metrics import (
    track_delivery_abandoned,
    track_delivery_started,
    track_delivery_succeeded,
    track_retry_scheduled,
)
from courier.sentry_config import capture_exception, capture_message
from courier.services.dispatcher import FailoverDispatcher
from courier.services.ledger_service import AttemptLedger

logger = get_logger(component="retry")

# Exponential backoff: 2s, 4s, 8s, 16s, ...
BACKOFF_BASE = 2

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt `attempt` before the next one."""
    return float(BACKOFF_BASE ** attempt)


class DeliveryState(str, enum.Enum):
    """Delivery sequence state."""
    FRESH = "fresh"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    ABANDONED = "abandoned"


@dataclass
class DeliveryOutcome:
    """Terminal result of a delivery sequence."""
    state: DeliveryState
    attempts: int
    request_id: str | None = None
    status_code: int | None = None
    last_error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.state == DeliveryState.SUCCEEDED


class RetryEngine:
    """Delivers payloads with failover, backoff and a persisted attempt ledger."""

    def __init__(
        self,
        config: RequesterConfig,
        dispatcher: FailoverDispatcher,
        ledger: AttemptLedger,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.sleep = sleep
        self._tasks: set[asyncio.Task] = set()
        # request_ids of sequences this process is driving right now
        self.in_flight: set[str] = set()

    async def deliver(self, payload: Any, attempt: int = 1, request_id: str | None = None) -> DeliveryOutcome:
        """
        Run a delivery sequence to a terminal state.

        The ledger record is written lazily: only once the first attempt fails.

        Args:
            payload: JSON payload
            attempt: Attempt number to start from
            request_id: Existing sequence identifier, if any

        Returns:
            DeliveryOutcome in SUCCEEDED or ABANDONED state
        """
        return await self._run(payload, attempt, request_id, resumed=False)

    async def resume(self, request_id: str, attempt: int, payload: Any) -> DeliveryOutcome:
        """
        Continue a sequence recovered from the ledger.

        Args:
            request_id: Sequence identifier of the stored record
            attempt: Stored attempt_number (attempts already made)
            payload: Stored payload

        Returns:
            DeliveryOutcome in SUCCEEDED or ABANDONED state
        """
        return await self._run(payload, attempt + 1, request_id, resumed=True)

    async def _run(self, payload: Any, attempt: int, request_id: str | None, resumed: bool) -> DeliveryOutcome:
        max_attempts = self.config.max_attempts
        if request_id:
            self.in_flight.add(request_id)

        try:
            while True:
                log = get_logger(request_id=request_id, attempt=attempt, resumed=resumed)
                try:
                    response = await self.dispatcher.dispatch(payload)
                except TransportFailure as failure:
                    status_code = failure.classification
                    if request_id is None:
                        request_id = str(uuid.uuid4())
                        self.in_flight.add(request_id)
                        log = log.bind(request_id=request_id)
                    log.warning("delivery_attempt_failed", error=failure.message, status_code=status_code)

                    if attempt < max_attempts:
                        if attempt == 1 and not resumed:
                            await self.ledger.insert(request_id, attempt, status_code, payload)

                        delay = backoff_delay(attempt)
                        log.info("delivery_retry_scheduled", delay_seconds=delay, state=DeliveryState.RETRYING.value)
                        track_retry_scheduled()
                        await self.sleep(delay)
                        attempt += 1
                        continue

                    return await self._abandon(payload, request_id, attempt, status_code, resumed, log)

                # Nothing was persisted for a first-attempt success
                if resumed or (attempt > 1 and request_id):
                    await self.ledger.delete(request_id)
                log.info("delivery_succeeded", status_code=response.status_code)
                track_delivery_succeeded(resumed)
                return DeliveryOutcome(
                    state=DeliveryState.SUCCEEDED,
                    attempts=attempt,
                    request_id=request_id,
                    status_code=response.status_code,
                )
        finally:
            if request_id:
                self.in_flight.discard(request_id)

    async def _abandon(self, payload, request_id, attempt, status_code, resumed, log) -> DeliveryOutcome:
        if attempt == 1 and not resumed:
            # max_attempts == 1: the record only serves as an audit trail
            await self.ledger.insert(request_id, attempt, status_code, payload, abandoned=True)
        else:
            await self.ledger.mark_abandoned(request_id, attempt, status_code)

        exhaustion = ExhaustionFailure(request_id, attempt, status_code)
        log.error("delivery_abandoned", error=str(exhaustion), status_code=status_code)
        track_delivery_abandoned()
        capture_message(str(exhaustion), level="error")
        return DeliveryOutcome(
            state=DeliveryState.ABANDONED,
            attempts=attempt,
            request_id=request_id,
            last_error=status_code,
        )

    async def start_delivery(self, payload: Any) -> None:
        """
        Fire-and-forget entry point.

        Every outcome is logged; nothing is raised to the caller.
        """
        track_delivery_started()
        try:
            await self.deliver(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("delivery_crashed", error=str(e))
            capture_exception(e)

    def schedule_delivery(self, payload: Any) -> asyncio.Task:
        """Run start_delivery in the background on the current event loop."""
        task = asyncio.create_task(self.start_delivery(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """Wait for all scheduled deliveries to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_pending(self):
        """Cancel scheduled deliveries that are still running (used at shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("deliveries_cancelled", count=len(tasks))
