"""
Recovery Service

Resumes delivery sequences that were still pending when a previous
process stopped. Records are processed one after another, so a large
backlog takes the sum of its retry schedules to drain.
"""
import asyncio
from dataclasses import dataclass

from courier.logging_config import get_logger
from courier.routes.metrics import track_record_recovered
from courier.services.ledger_service import AttemptLedger
from courier.services.retry_service import DeliveryOutcome, DeliveryState, RetryEngine

logger = get_logger(component="recovery")


@dataclass
class RecoveryReport:
    scanned: int = 0
    succeeded: int = 0
    abandoned: int = 0
    errored: int = 0

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "succeeded": self.succeeded,
            "abandoned": self.abandoned,
            "errored": self.errored,
        }


class RecoveryScan:
    """Lists pending ledger records and resumes each through the retry engine."""

    def __init__(self, engine: RetryEngine, ledger: AttemptLedger):
        self.engine = engine
        self.ledger = ledger

    async def run(self) -> RecoveryReport:
        """
        Resume every pending (non-abandoned) record.

        Records whose sequence this process is still retrying are left to
        that sequence. A record that fails to resume is logged and skipped.
        """
        report = RecoveryReport()
        records = await self.ledger.list_pending()
        if not records:
            logger.info("recovery_nothing_pending")
            return report

        logger.info("recovery_started", pending=len(records))
        for record in records:
            if record.request_id in self.engine.in_flight:
                logger.info("recovery_record_in_flight", request_id=record.request_id)
                continue
            report.scanned += 1
            try:
                outcome = await self.engine.resume(record.request_id, record.attempt_number, record.payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                report.errored += 1
                logger.exception("recovery_record_failed", request_id=record.request_id, error=str(e))
                continue

            track_record_recovered()
            if outcome.state == DeliveryState.SUCCEEDED:
                report.succeeded += 1
            else:
                report.abandoned += 1

        logger.info("recovery_finished", **report.to_dict())
        return report

    async def replay(self, request_id: str) -> DeliveryOutcome | None:
        """
        Replay a stored record's payload as a brand new delivery sequence.

        The stored record (usually abandoned) is left untouched as audit data.

        Returns:
            Outcome of the new sequence, or None if no record exists
        """
        record = await self.ledger.get(request_id)
        if record is None:
            return None

        logger.info("replay_started", original_request_id=request_id, abandoned=record.abandoned)
        return await self.engine.deliver(record.payload)
