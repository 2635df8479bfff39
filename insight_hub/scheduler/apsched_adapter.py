"""APScheduler wrapper driving the periodic pipeline triggers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType
from ..logging_conf import component_logger


class APSchedulerAdapter:
    """Manage one APScheduler job per named pipeline task."""

    def __init__(self) -> None:
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self.logger = component_logger("scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_task(self, name: str, schedule: ScheduleConfig, callback: Callable[[], object]) -> bool:
        if not schedule.enabled:
            self.logger.info("task_disabled", task=name)
            return False
        trigger = self._build_trigger(schedule)
        self.scheduler.add_job(
            self._guarded(name, callback),
            trigger=trigger,
            id=f"task::{name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("task_scheduled", task=name, schedule=schedule.model_dump(mode="json"))
        return True

    def remove_task(self, name: str) -> None:
        try:
            self.scheduler.remove_job(f"task::{name}")
        except Exception:  # noqa: BLE001
            self.logger.warning("task_remove_failed", task=name)

    def _guarded(self, name: str, callback: Callable[[], object]) -> Callable[[], None]:
        def run() -> None:
            try:
                callback()
            except Exception as exc:  # noqa: BLE001
                self.logger.error("task_failed", task=name, error=str(exc))

        run.__name__ = f"run_{name}"
        return run

    def _build_trigger(self, schedule: ScheduleConfig):
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value), timezone=timezone.utc)
        if schedule.type is ScheduleType.INTERVAL:
            if isinstance(schedule.value, (int, float)):
                return IntervalTrigger(seconds=float(schedule.value))
            if isinstance(schedule.value, dict):
                return IntervalTrigger(**schedule.value)
            raise ValueError("Interval schedule requires seconds or kwargs dict")
        if schedule.type is ScheduleType.ONCE:
            if schedule.value:
                run_date = datetime.fromisoformat(str(schedule.value))
            else:
                run_date = datetime.now(timezone.utc)
            return DateTrigger(run_date=run_date)
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def list_jobs(self) -> list[dict]:
        return [
            {"id": job.id, "next_run_time": job.next_run_time, "trigger": str(job.trigger)}
            for job in self.scheduler.get_jobs()
        ]


__all__ = ["APSchedulerAdapter"]
