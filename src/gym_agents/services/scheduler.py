"""APScheduler-based service that starts automated sessions on a cron schedule."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Coroutine

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from gym_agents.config import ScheduleConfig
from gym_agents.core.types import CreatedBy
from gym_agents.log import get_logger

if TYPE_CHECKING:
    from gym_agents.core.session import SessionManager

logger = get_logger(__name__)


def cron_trigger(cron_expr: str, timezone: str) -> CronTrigger:
    """Five-field cron expression (minute hour day month day_of_week)."""
    parts = cron_expr.split()
    if len(parts) != 5:
        raise ValueError(f"Expected 5 cron fields, got {len(parts)}: {cron_expr!r}")
    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone,
    )


class SchedulerService:
    """Runs scheduled retention sessions (created_by = schedule)."""

    def __init__(
        self,
        schedules: list[ScheduleConfig],
        manager: SessionManager,
        timezone: str = "UTC",
    ):
        self._schedules = schedules
        self._manager = manager
        self._timezone = timezone
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    async def start(self) -> None:
        for schedule in self._schedules:
            try:
                self.add_cron_job(
                    schedule.cron,
                    self.run_schedule,
                    job_id=schedule.id,
                    schedule_id=schedule.id,
                )
            except ValueError as e:
                logger.error("schedule_invalid", schedule_id=schedule.id, error=str(e))
        self._scheduler.start()
        logger.info("scheduler_started", timezone=self._timezone, jobs=len(self._scheduler.get_jobs()))

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def add_cron_job(
        self,
        cron_expr: str,
        callback: Callable[..., Coroutine[Any, Any, Any]],
        job_id: str,
        **kwargs: Any,
    ) -> str:
        trigger = cron_trigger(cron_expr, self._timezone)
        self._scheduler.add_job(callback, trigger, id=job_id, kwargs=kwargs, replace_existing=True)
        logger.info("cron_job_added", job_id=job_id, cron=cron_expr)
        return job_id

    def _schedule(self, schedule_id: str) -> ScheduleConfig:
        for schedule in self._schedules:
            if schedule.id == schedule_id:
                return schedule
        raise KeyError(schedule_id)

    async def run_schedule(self, schedule_id: str) -> str:
        """Start the scheduled session in the background. Returns its id."""
        schedule = self._schedule(schedule_id)
        config = self._manager.session_config(
            account_id=schedule.account_id,
            role=schedule.role,
            goal=schedule.goal,
            created_by=CreatedBy.SCHEDULE,
        )
        session_id = self._manager.launch(config)
        logger.info(
            "scheduled_session_started",
            schedule_id=schedule_id,
            session_id=session_id,
            account_id=schedule.account_id,
            role=schedule.role,
        )
        return session_id
