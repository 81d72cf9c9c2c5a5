"""
数据库版本迁移模块

在启动时自动检查并更新数据库结构，兼容旧版本数据库：
1. 每次启动都检查所有必需的列，不依赖版本号
2. 旧版回款记录没有状态，补为已确认（旧版录入即计入已回款）
3. 补完旧记录后按回款记录重算项目回款汇总
4. 版本号记录在 system_config 表，用于追踪
"""

import logging
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.repair import rebuild_all

logger = logging.getLogger(__name__)

# 当前数据库版本 - 每次有重要更新时递增
CURRENT_DB_VERSION = "2.0.0"


async def get_db_version(db: AsyncSession):
    """获取数据库版本，如果没有版本记录则返回 None"""
    result = await db.execute(text(
        "SELECT value FROM system_config WHERE key = 'db_version'"
    ))
    row = result.fetchone()
    return row[0] if row else None


async def set_db_version(db: AsyncSession, version: str) -> None:
    """设置数据库版本"""
    await db.execute(text(
        "INSERT OR REPLACE INTO system_config (key, value) VALUES ('db_version', :version)"
    ), {"version": version})
    await db.commit()


async def ensure_system_config_table(db: AsyncSession) -> None:
    """确保 system_config 表存在"""
    await db.execute(text("""
        CREATE TABLE IF NOT EXISTS system_config (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
    """))
    await db.commit()


async def check_column_exists(db: AsyncSession, table: str, column: str) -> bool:
    """检查表中是否存在指定列"""
    result = await db.execute(text(f"PRAGMA table_info({table})"))
    columns = [row[1] for row in result.fetchall()]
    return column in columns


async def check_table_exists(db: AsyncSession, table: str) -> bool:
    """检查表是否存在"""
    result = await db.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:table"),
        {"table": table},
    )
    return result.fetchone() is not None


async def add_column_if_not_exists(
    db: AsyncSession,
    table: str,
    column: str,
    column_type: str,
    default: str = None
) -> bool:
    """
    如果列不存在则添加

    返回值:
        True: 成功添加了列
        False: 表不存在或列已存在
    """
    if not await check_table_exists(db, table):
        logger.debug(f"表 {table} 不存在，跳过添加列 {column}")
        return False

    if await check_column_exists(db, table, column):
        return False

    sql = f"ALTER TABLE {table} ADD COLUMN {column} {column_type}"
    if default is not None:
        sql += f" DEFAULT {default}"
    await db.execute(text(sql))
    await db.commit()
    logger.info(f"[+] 已添加列: {table}.{column}")
    return True


# ========== 必需的数据库列定义 ==========
# 格式: (表名, 列名, 列类型, 默认值)
# 旧版数据库中可能缺少的列，老用户升级时自动添加
REQUIRED_COLUMNS = [
    # ========== projects ==========
    ("projects", "remaining_amount", "DECIMAL(12,2)", "0"),
    ("projects", "payment_status", "VARCHAR(20)", None),
    ("projects", "is_fully_paid", "BOOLEAN", "0"),
    ("projects", "expected_at", "DATETIME", None),

    # ========== payment_records ==========
    ("payment_records", "status", "VARCHAR(20)", None),
    ("payment_records", "initiated_by", "INTEGER", None),
    ("payment_records", "confirmed_by", "INTEGER", None),
    ("payment_records", "confirmed_at", "DATETIME", None),
    ("payment_records", "confirm_note", "TEXT", None),
    ("payment_records", "finance_reviewed", "BOOLEAN", "0"),
    ("payment_records", "finance_reviewed_by", "INTEGER", None),
    ("payment_records", "finance_reviewed_at", "DATETIME", None),
    ("payment_records", "finance_review_note", "TEXT", None),
]


async def ensure_all_columns(db: AsyncSession) -> dict:
    """
    确保所有必需的列都存在
    每次启动都会检查，不依赖版本号
    """
    result = {
        "checked": 0,
        "added": 0,
        "columns_added": []
    }

    for table, column, col_type, default in REQUIRED_COLUMNS:
        result["checked"] += 1
        added = await add_column_if_not_exists(db, table, column, col_type, default)
        if added:
            result["added"] += 1
            result["columns_added"].append(f"{table}.{column}")

    return result


async def backfill_legacy_payments(db: AsyncSession) -> int:
    """
    旧版回款记录没有状态，视为已确认：
    发起人取录入人，确认人取收款人（没有则取录入人），确认时间取创建时间
    """
    result = await db.execute(text("""
        UPDATE payment_records
        SET status = 'confirmed',
            initiated_by = COALESCE(initiated_by, recorded_by),
            confirmed_by = COALESCE(confirmed_by, received_by, recorded_by),
            confirmed_at = COALESCE(confirmed_at, created_at),
            finance_reviewed = COALESCE(finance_reviewed, 0)
        WHERE status IS NULL OR status = ''
    """))
    await db.commit()
    return result.rowcount or 0


async def run_migrations(db: AsyncSession) -> dict:
    """
    运行数据库迁移

    无论版本号是什么，都检查所有必需列并补全旧回款记录
    """
    result = {
        "old_version": None,
        "new_version": CURRENT_DB_VERSION,
        "columns_added": [],
        "legacy_payments": 0,
        "aggregates_repaired": [],
        "errors": []
    }

    try:
        await ensure_system_config_table(db)

        current_version = await get_db_version(db)
        result["old_version"] = current_version
        logger.info(f"数据库版本检查: {current_version or '未知'} -> {CURRENT_DB_VERSION}")

        column_result = await ensure_all_columns(db)
        result["columns_added"] = column_result["columns_added"]
        if column_result["added"] == 0:
            logger.info("数据库结构完整，无需更新")

        # ★ 旧回款记录补状态后，项目汇总需要按记录重算 ★
        backfilled = await backfill_legacy_payments(db)
        result["legacy_payments"] = backfilled
        if backfilled:
            logger.info(f"📦 旧回款记录补全状态 {backfilled} 条，重算项目回款汇总")
            outcome = await rebuild_all(db)
            result["aggregates_repaired"] = outcome.repaired

        if current_version != CURRENT_DB_VERSION:
            await set_db_version(db, CURRENT_DB_VERSION)
            logger.info(f"数据库版本已更新为: {CURRENT_DB_VERSION}")

    except SQLAlchemyError as e:
        await db.rollback()
        error_msg = f"数据库迁移出错: {e}"
        logger.error(error_msg)
        result["errors"].append(error_msg)

    return result
