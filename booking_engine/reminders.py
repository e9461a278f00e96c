"""Reminder scheduler.

A periodic sweep flags each scheduled appointment once when its start enters
the reminder window (lead time +/- tolerance, default 30 +/- 1 minutes) and
hands a ReminderNotice to the notifier.

Delivery is at-most-once: reminder_sent is persisted before the notifier is
called, so a crash or notifier failure never produces a second reminder.
When storage refuses the flag the notice is held back and the appointment
stays due, so a later sweep inside the window sends it.

Known limitation: if the sweep period is longer than the window (2 x
tolerance), an appointment can fall between two sweeps and never be
reminded. This is accepted best-effort behaviour.
"""
import asyncio
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from booking_engine.clock import SystemClock
from booking_engine.errors import PersistenceFailure
from booking_engine.lifecycle import AppointmentLifecycle
from booking_engine.logging_config import get_logger
from booking_engine.models import Appointment, AppointmentStatus
from booking_engine.notifications import LoggingNotifier, Notifier, ReminderNotice
from booking_engine.storage import CLIENTS, TIME_SLOTS

logger = get_logger(__name__)


class ReminderScheduler:
    """Detects appointments entering the reminder window and notifies once."""

    def __init__(
        self,
        lifecycle: AppointmentLifecycle,
        notifier: Optional[Notifier] = None,
        clock=None,
        lead_minutes: int = 30,
        tolerance_minutes: int = 1,
        period_seconds: float = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize scheduler.

        Args:
            lifecycle: Appointment lifecycle (owns the reminder_sent write)
            notifier: Delivery collaborator (default: log only)
            clock: Source of "now"
            lead_minutes: Target minutes before start
            tolerance_minutes: Accepted distance from the target
            period_seconds: Time between sweeps in run()
            sleep: Awaitable sleep, replaced in tests
        """
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or SystemClock()
        self.lead_minutes = lead_minutes
        self.tolerance_minutes = tolerance_minutes
        self.period_seconds = period_seconds
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def in_window(self, start_at: datetime, now: datetime) -> bool:
        minutes_until_start = (start_at - now).total_seconds() / 60
        return abs(minutes_until_start - self.lead_minutes) <= self.tolerance_minutes

    def due(self, now: datetime) -> List[Appointment]:
        """Scheduled, not yet reminded appointments inside the window."""
        slots = {s.id: s for s in self.store.time_slots}
        return [
            a for a in self.store.appointments
            if a.status == AppointmentStatus.SCHEDULED
            and not a.reminder_sent
            and a.time_slot_id in slots
            and self.in_window(slots[a.time_slot_id].start_at, now)
        ]

    def sweep(self) -> List[ReminderNotice]:
        """
        Run one reminder pass.

        Returns:
            Notices handed to the notifier during this pass
        """
        now = self.clock.now()
        emitted = []

        for appointment in self.due(now):
            client = self.store.get(CLIENTS, appointment.client_id)
            slot = self.store.get(TIME_SLOTS, appointment.time_slot_id)
            if client is None or slot is None:
                logger.warning(
                    "reminder_skipped_missing_reference",
                    appointment_id=appointment.id,
                    client_found=client is not None,
                    slot_found=slot is not None
                )
                continue

            # Re-checks status under the lock; None means cancelled meanwhile
            try:
                flagged = self.lifecycle.flag_reminder(appointment.id)
            except PersistenceFailure:
                flagged = None
            else:
                if flagged is None:
                    continue
            if flagged is None or not flagged.durable:
                # Not notifying until the flag is stored; the next sweep retries
                logger.warning("reminder_deferred_not_durable", appointment_id=appointment.id)
                continue

            notice = ReminderNotice(
                appointment_id=appointment.id,
                client_name=client.name,
                phone=client.phone,
                appointment_datetime=slot.start_at,
                slot_label=slot.label,
            )
            try:
                self.notifier.notify(notice)
            except Exception as e:
                logger.error("reminder_delivery_failed", appointment_id=appointment.id, error=str(e))
                continue
            emitted.append(notice)

        if emitted:
            logger.info("reminder_sweep", emitted=len(emitted), at=now.isoformat())
        return emitted

    async def run(self):
        """Sweep forever, period_seconds apart, until cancelled."""
        while True:
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as e:
                logger.error("reminder_sweep_failed", error=str(e))
            await self._sleep(self.period_seconds)

    def start(self) -> asyncio.Task:
        """Start the repeating sweep on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
            logger.info("reminder_scheduler_started", period_seconds=self.period_seconds)
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self):
        """Cancel the repeating sweep and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("reminder_scheduler_stopped")
        self._task = None
