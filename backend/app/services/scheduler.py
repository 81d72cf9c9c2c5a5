"""
定时任务调度器服务
使用 APScheduler 每天重算一次项目回款汇总，修正缓存偏差
"""

import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.repair import rebuild_all

logger = logging.getLogger(__name__)

# 全局调度器实例
scheduler: Optional[AsyncIOScheduler] = None


async def check_payment_aggregates():
    """执行回款汇总巡检任务"""
    try:
        async with SessionLocal() as db:
            outcome = await rebuild_all(db)
        if outcome.repaired:
            logger.warning(f"⚠️ 巡检发现 {len(outcome.repaired)} 个项目回款汇总有偏差，已修正: {outcome.repaired}")
    except Exception as e:
        logger.error(f"❌ 回款汇总巡检失败: {str(e)}")


def init_scheduler():
    """初始化并启动调度器"""
    global scheduler

    if not settings.AGGREGATE_CHECK_ENABLED:
        logger.info("📦 回款汇总巡检已禁用")
        return

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        check_payment_aggregates,
        trigger=CronTrigger(
            hour=settings.AGGREGATE_CHECK_HOUR,
            minute=settings.AGGREGATE_CHECK_MINUTE
        ),
        id="payment_aggregate_check",
        name="项目回款汇总巡检",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"⏰ 定时任务调度器已启动 - 回款汇总巡检时间: 每天 {settings.AGGREGATE_CHECK_HOUR:02d}:{settings.AGGREGATE_CHECK_MINUTE:02d}")


def shutdown_scheduler():
    """关闭调度器"""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("⏰ 定时任务调度器已关闭")


def get_scheduler_status() -> dict:
    """获取调度器状态"""
    if not scheduler:
        return {
            "enabled": settings.AGGREGATE_CHECK_ENABLED,
            "running": False,
            "jobs": []
        }

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None
        })

    return {
        "enabled": settings.AGGREGATE_CHECK_ENABLED,
        "running": scheduler.running,
        "jobs": jobs
    }
