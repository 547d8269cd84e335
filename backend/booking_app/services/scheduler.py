"""
定时任务 - 基于 APScheduler
按 cron 表达式定期执行未到店扫描（BookingService.sweep_no_shows）
"""
import logging
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from booking_app.database import SessionLocal
from booking_app.services.unit_of_work import Clock

logger = logging.getLogger(__name__)

NO_SHOW_SWEEP_JOB_ID = "booking.no_show_sweep"


class BookingScheduler:
    """预订定时任务调度器"""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None,
                 session_factory: Callable[[], Session] = SessionLocal,
                 clock: Optional[Clock] = None):
        self._scheduler = scheduler or BackgroundScheduler()
        self._session_factory = session_factory
        self._clock = clock

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def start(self) -> None:
        """启动调度器"""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Booking scheduler started")

    def shutdown(self) -> None:
        """关闭调度器"""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Booking scheduler shut down")

    def schedule_no_show_sweep(self, cron_expression: str) -> None:
        """按 cron 表达式注册未到店扫描任务（重复注册时替换）"""
        self._scheduler.add_job(
            self.run_no_show_sweep,
            trigger=CronTrigger.from_crontab(cron_expression),
            id=NO_SHOW_SWEEP_JOB_ID,
            replace_existing=True,
        )
        logger.info(f"Job added: {NO_SHOW_SWEEP_JOB_ID} ({cron_expression})")

    def run_no_show_sweep(self) -> int:
        """执行一次扫描，返回标记为 NO_SHOW 的预订数"""
        from booking_app.services.booking_service import BookingService

        db = self._session_factory()
        try:
            marked = BookingService(db, clock=self._clock).sweep_no_shows()
            return len(marked)
        finally:
            db.close()

    def get_jobs(self) -> List[Dict]:
        return [
            {
                "id": job.id,
                "trigger": str(job.trigger),
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]
