"""
项目回款汇总修复脚本
按回款记录（已确认/已审核）重算项目的已回款、未回款和回款状态

用法:
    python scripts/repair_payment_aggregates.py            # 全部项目
    python scripts/repair_payment_aggregates.py 12 15      # 指定项目
    python scripts/repair_payment_aggregates.py --user 1   # 记录审计日志的操作人
"""

import argparse
import asyncio
import sys
import os

# 添加项目路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.logging_config import setup_logging
from app.db.init_db import ensure_tables_exist
from app.db.session import SessionLocal
from app.services.repair import rebuild_all, rebuild_project_aggregate


async def repair(project_ids, actor_id=None) -> int:
    print("=" * 60)
    print("🔧 项目回款汇总修复")
    print("=" * 60 + "\n")

    await ensure_tables_exist()
    async with SessionLocal() as db:
        if not project_ids:
            outcome = await rebuild_all(db, actor_id=actor_id)
            print(f"✅ 检查 {outcome.checked} 个项目，修正 {len(outcome.repaired)} 个")
            for project_id in outcome.repaired:
                print(f"   - 项目 {project_id}")
            return 0

        failed = 0
        for project_id in project_ids:
            try:
                changed = await rebuild_project_aggregate(db, project_id, actor_id=actor_id)
            except NotFoundError:
                print(f"❌ 项目 {project_id} 不存在")
                failed += 1
                continue
            print(f"{'🔧 已修正' if changed else '✅ 无偏差'} 项目 {project_id}")
        return 1 if failed else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="按回款记录重算项目回款汇总")
    parser.add_argument("project_ids", nargs="*", type=int, help="项目ID，缺省为全部项目")
    parser.add_argument("--user", type=int, default=None, help="操作人ID（写入审计日志）")
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL, log_dir=None)
    return asyncio.run(repair(args.project_ids, actor_id=args.user))


if __name__ == "__main__":
    sys.exit(main())
