import logging
from dataclasses import dataclass, field
from datetime import timedelta

from intakegenie.errors import EmailDeliveryError, FinalizeError, InvalidTransition
from intakegenie.finalizer import IntakeFinalizer
from intakegenie.notify import EmailClient, render_stuck_email
from intakegenie.states import CallStatus
from intakegenie.store import CallRecord, CallStore, utcnow

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(minutes=5)
STUCK_STATUSES = (CallStatus.TRANSCRIBING, CallStatus.SUMMARIZING)
STUCK_MESSAGE = "Call stuck in processing for >5 minutes, watchdog triggered fallback"


@dataclass
class WatchdogReport:
    count: int = 0
    retriggered: int = 0
    marked_failed: int = 0
    results: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "retriggered": self.retriggered,
            "marked_failed": self.marked_failed,
            "results": self.results,
        }


class Watchdog:
    """Re-drives calls stuck mid-pipeline so every call reaches a terminal state."""

    def __init__(
        self,
        store: CallStore,
        finalizer: IntakeFinalizer,
        email: EmailClient | None = None,
        threshold: timedelta = STALE_AFTER,
        clock=utcnow,
    ):
        self.store = store
        self.finalizer = finalizer
        self.email = email
        self.threshold = threshold
        self._clock = clock

    async def sweep(self) -> WatchdogReport:
        cutoff = self._clock() - self.threshold
        stuck = await self.store.find_stale(STUCK_STATUSES, older_than=cutoff)
        report = WatchdogReport(count=len(stuck))
        if stuck:
            logger.warning("watchdog found %d stuck call(s)", len(stuck))

        for record in stuck:
            outcome = await self._rescue(record)
            report.results.append({"call_id": record.id, "status": outcome})
            if outcome == "retriggered":
                report.retriggered += 1
            elif outcome == "marked_failed":
                report.marked_failed += 1
        return report

    async def _rescue(self, record: CallRecord) -> str:
        try:
            result = await self.finalizer.finalize(record.id)
        except FinalizeError as e:
            logger.error("watchdog re-drive of call %s failed: %s", record.id, e)
        else:
            if result.status == CallStatus.EMAILED:
                logger.info("watchdog re-drove call %s to emailed", record.id)
                return "retriggered"
            if result.status.is_pre_terminal:
                return "in_flight"
            logger.error("watchdog re-drive of call %s ended in %s", record.id, result.status.value)

        await self._send_stuck_email(record)
        await self._mark_failed(record.id)
        return "marked_failed"

    async def _send_stuck_email(self, record: CallRecord) -> None:
        if self.email is None or not record.firm_id:
            return
        firm = await self.store.get_firm(record.firm_id)
        if firm is None or not firm.notify_emails:
            return
        fresh = await self.store.get(record.id) or record
        try:
            await self.email.send(render_stuck_email(fresh, firm.notify_emails))
        except EmailDeliveryError as e:
            logger.error("stuck-call email for %s failed: %s", record.id, e)

    async def _mark_failed(self, call_id: str) -> None:
        record = await self.store.get(call_id)
        if record is None:
            return
        if record.status == CallStatus.ERROR:
            await self.store.update(call_id, error_message=STUCK_MESSAGE)
            return
        try:
            await self.store.transition(call_id, CallStatus.ERROR, error_message=STUCK_MESSAGE)
        except InvalidTransition as e:
            logger.warning("could not mark call %s failed: %s", call_id, e)
