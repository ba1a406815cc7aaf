"""
Poll loop - drives the automatic lifecycle engine

Runs inside the FastAPI process on an APScheduler interval job and on
demand (app regained focus). A tick that finds another tick in flight is
dropped, not queued.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from bookingcrm.application.ledger import PaymentLedger
from bookingcrm.application.lifecycle import BookingLifecycleEngine
from bookingcrm.application.notifications import NotificationSink
from bookingcrm.application.safety_checks import SafetyCheckScheduler
from bookingcrm.config import Settings, get_settings
from bookingcrm.domain.booking import TERMINAL_STATUSES, BookingStatus
from bookingcrm.infrastructure.db.models import BookingModel
from bookingcrm.infrastructure.db.session import get_session_factory
from bookingcrm.utils.clock import Clock, local_now

logger = logging.getLogger(__name__)

JOB_ID = "booking_poll"


@dataclass
class TickReport:
    transitions: int = 0
    completed: list[str] = field(default_factory=list)
    spawned: list[str] = field(default_factory=list)
    checks_created: int = 0
    overdue: int = 0
    errors: int = 0

    @property
    def idle(self) -> bool:
        return not (self.transitions or self.spawned or self.checks_created or self.overdue)


class PollLoop:
    """
    Owns the scheduler, the re-entrancy guard and the safety scheduler

    Usage:
        loop = PollLoop(sink=WebPushNotificationSink())
        loop.start()
        ...
        loop.wake()       # foreground trigger
        loop.shutdown()
    """

    def __init__(
        self,
        session_factory=None,
        sink: NotificationSink | None = None,
        clock: Clock = local_now,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.sink = sink
        self.safety = SafetyCheckScheduler(sink=sink, clock=clock, settings=self.settings)
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    def _session(self) -> Session:
        factory = self._session_factory or get_session_factory()
        return factory()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_tick(self, now: datetime | None = None) -> TickReport | None:
        """
        Evaluate every open booking, then the safety checks

        Returns:
            TickReport, or None if a tick was already running
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Tick skipped: previous tick still running")
            return None
        try:
            db = self._session()
            try:
                return self._tick(db, now or self.clock())
            finally:
                db.close()
        finally:
            self._lock.release()

    def wake(self) -> TickReport | None:
        """Foreground trigger: run a tick now unless one is in flight."""
        return self.run_tick()

    def _tick(self, db: Session, now: datetime) -> TickReport:
        report = TickReport()
        engine = BookingLifecycleEngine(
            db, safety=self.safety, sink=self.sink, clock=self.clock, settings=self.settings,
        )

        bookings = (
            db.query(BookingModel)
            .filter(BookingModel.status.notin_(list(TERMINAL_STATUSES)))
            .order_by(BookingModel.date_time.asc())
            .all()
        )
        for booking in bookings:
            booking_id = booking.id
            try:
                result = engine.evaluate(booking, now)
            except Exception:
                report.errors += 1
                logger.exception("Automatic transition failed for booking %s", booking_id)
                continue
            report.transitions += len(result.transitions)
            if any(target == BookingStatus.COMPLETED for _, target in result.transitions):
                report.completed.append(booking_id)
            if result.spawned_id:
                report.spawned.append(result.spawned_id)
            if result.check_created:
                report.checks_created += 1

        try:
            report.overdue = self.safety.process_due(db, now)
        except Exception:
            report.errors += 1
            logger.exception("Safety check processing failed")

        if not report.idle:
            logger.info(
                "Tick: %d transition(s), %d spawned, %d check(s) created, %d overdue",
                report.transitions, len(report.spawned), report.checks_created, report.overdue,
            )
        return report

    def _run_job(self) -> None:
        try:
            self.run_tick()
        except Exception:
            logger.exception("Poll job failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def migrate(self) -> int:
        db = self._session()
        try:
            return PaymentLedger(db, clock=self.clock).migrate_legacy_flags()
        finally:
            db.close()

    def start(self) -> None:
        """Backfill the ledger once, then schedule the interval job."""
        try:
            self.migrate()
        except Exception:
            logger.exception("Payment ledger migration failed")

        self._scheduler = BackgroundScheduler(daemon=True)
        job_kwargs = {}
        if self.settings.POLL_ON_STARTUP:
            job_kwargs["next_run_time"] = datetime.now()
        self._scheduler.add_job(
            self._run_job,
            "interval",
            seconds=self.settings.POLL_INTERVAL_SECONDS,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        self._scheduler.start()
        logger.info("Poll loop started (every %ds)", self.settings.POLL_INTERVAL_SECONDS)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Poll loop stopped")
        self._scheduler = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
