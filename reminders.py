"""
Due-date reminder jobs.

Two jobs run on a wall-clock schedule (UTC):
- due-soon: daily, emails the assignee of every open task due tomorrow
- overdue:  weekly, emails the assignee of every open task already past due

The scheduler takes its clock and sleep as arguments so tests can move time
forward instantly.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from config import Settings
from database import utcnow
from email_service import EmailService
from task_store import TaskStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Job = Callable[[], Awaitable[int]]

# Upper bound on a single sleep so a jump in the wall clock is noticed.
MAX_SLEEP_SECONDS = 3600.0


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class Schedule:
    """Fires daily at hour:minute, or weekly when weekday (0 = Monday) is set"""

    name: str
    hour: int
    minute: int = 0
    weekday: Optional[int] = None

    def next_run(self, after: datetime) -> datetime:
        """First fire time strictly later than after"""
        candidate = after.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if self.weekday is not None:
            candidate += timedelta(days=(self.weekday - candidate.weekday()) % 7)
        if candidate <= after:
            candidate += timedelta(days=1 if self.weekday is None else 7)
        return candidate


class ReminderService:
    def __init__(self, store: TaskStore, mailer: EmailService, clock: Clock = utcnow):
        self.store = store
        self.mailer = mailer
        self.clock = clock

    async def send_due_soon_reminders(self) -> int:
        now = self.clock()
        tomorrow = start_of_day(now) + timedelta(days=1)
        tasks = await asyncio.to_thread(self.store.due_between, tomorrow, tomorrow + timedelta(days=1))
        return await self._send_all("due-soon", tasks, self.mailer.send_due_soon_reminder, now)

    async def send_overdue_reminders(self) -> int:
        now = self.clock()
        tasks = await asyncio.to_thread(self.store.overdue_before, start_of_day(now))
        return await self._send_all("overdue", tasks, self.mailer.send_overdue_reminder, now)

    async def _send_all(self, kind: str, tasks: List[dict], send, now: datetime) -> int:
        sent = 0
        for task in tasks:
            try:
                if await send(task, now):
                    sent += 1
                else:
                    logger.warning("%s reminder for task %s was not sent", kind, task.get("id"))
            except Exception:
                logger.exception("%s reminder for task %s failed", kind, task.get("id"))
        logger.info("Sent %d of %d %s reminder emails", sent, len(tasks), kind)
        return sent


def default_jobs(service: ReminderService, config: Settings) -> List[Tuple[Schedule, Job]]:
    return [
        (Schedule("due-soon", hour=config.REMINDER_DUE_SOON_HOUR), service.send_due_soon_reminders),
        (
            Schedule("overdue", hour=config.REMINDER_OVERDUE_HOUR, weekday=config.REMINDER_OVERDUE_WEEKDAY),
            service.send_overdue_reminders,
        ),
    ]


async def run_reminder_scheduler(
        jobs: Sequence[Tuple[Schedule, Job]],
        *,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Run jobs forever at their scheduled times.

    A failing job is logged and rescheduled; it never stops the loop.
    Cancel the surrounding task to stop.
    """
    if not jobs:
        return
    start = clock()
    next_runs: Dict[int, datetime] = {i: schedule.next_run(start) for i, (schedule, _) in enumerate(jobs)}
    for i, (schedule, _) in enumerate(jobs):
        logger.info("Reminder job %s first run at %s", schedule.name, next_runs[i])

    while True:
        now = clock()
        wait = (min(next_runs.values()) - now).total_seconds()
        if wait > 0:
            await sleep(min(wait, MAX_SLEEP_SECONDS))
            continue

        for i, (schedule, job) in enumerate(jobs):
            if next_runs[i] > now:
                continue
            logger.info("Running reminder job %s", schedule.name)
            try:
                await job()
            except Exception:
                logger.exception("Reminder job %s failed", schedule.name)
            next_runs[i] = schedule.next_run(now)
