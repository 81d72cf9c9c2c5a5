from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.api import api_router
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.logging_config import setup_logging, get_logger
from app.services.scheduler import init_scheduler, shutdown_scheduler, get_scheduler_status
from app.db.session import SessionLocal
from app.db.migrations import run_migrations
from app.db.init_db import ensure_tables_exist

# 初始化日志系统
setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("🚀 应用启动中...")

    await ensure_tables_exist()
    logger.info("📊 数据库表已就绪")

    async with SessionLocal() as db:
        result = await run_migrations(db)

    if result.get("columns_added"):
        logger.info(f"📦 数据库结构更新: 添加了 {len(result['columns_added'])} 个字段")
        for col in result["columns_added"]:
            logger.info(f"   ✅ {col}")
    if result.get("aggregates_repaired"):
        logger.info(f"🔧 回款汇总已重算: {len(result['aggregates_repaired'])} 个项目")
    if result.get("old_version") != result.get("new_version"):
        logger.info(f"📊 数据库版本: {result.get('old_version') or '初始'} → {result.get('new_version')}")
    for error in result.get("errors", []):
        logger.warning(f"数据库迁移未完成: {error}")

    init_scheduler()
    yield
    logger.info("🛑 应用关闭中...")
    shutdown_scheduler()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    description="翻译公司回款确认与应收对账服务",
    lifespan=lifespan
)

# CORS配置
if settings.BACKEND_CORS_ORIGINS:
    logger.info(f"配置CORS，允许的源: {settings.BACKEND_CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_exception_handlers(app)

logger.info(f"注册API路由，前缀: {settings.API_PREFIX}")
app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/health")
async def health():
    return {"status": "ok", "scheduler": get_scheduler_status()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="info")
