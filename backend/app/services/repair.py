"""
项目回款汇总修复

按回款记录全量重算（只累计 confirmed/approved），与项目上的缓存比较，
有偏差则写回。供迁移脚本、定时巡检使用。
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.payment_record import COUNTED_STATUSES, PaymentRecord
from app.models.project import Project
from app.services.audit import create_audit_log
from app.services.money import PaymentAggregate, quantize, resum, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class RepairResult:
    checked: int = 0
    repaired: List[int] = field(default_factory=list)


def aggregate_drifted(project: Project, expected: PaymentAggregate) -> bool:
    """缓存与重算结果是否不一致（金额按分比较）"""
    if quantize(project.received_amount) != quantize(expected.received_amount):
        return True
    if quantize(project.remaining_amount) != quantize(expected.remaining_amount):
        return True
    if project.payment_status != expected.payment_status.value:
        return True
    return bool(project.is_fully_paid) != expected.is_fully_paid


async def counted_amounts(db: AsyncSession, project_id: int) -> List[Decimal]:
    result = await db.execute(
        select(PaymentRecord.amount).where(
            PaymentRecord.project_id == project_id,
            PaymentRecord.status.in_(COUNTED_STATUSES),
        )
    )
    return [to_decimal(a) for a in result.scalars().all()]


async def rebuild_project_aggregate(
    db: AsyncSession,
    project_id: int,
    actor_id: Optional[int] = None,
    commit: bool = True) -> bool:
    """重算单个项目的回款汇总；返回是否发生了修正"""
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("项目不存在")

    expected = resum(project.project_amount, await counted_amounts(db, project_id))
    if not aggregate_drifted(project, expected):
        return False

    before = {
        "received_amount": float(project.received_amount or 0),
        "payment_status": project.payment_status,
    }
    await db.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(**expected.as_dict())
        .execution_options(synchronize_session=False)
    )
    if actor_id is not None:
        create_audit_log(
            db, actor_id, "repair", "project",
            resource_id=project_id,
            resource_name=project.project_number,
            description="按回款记录重算项目回款汇总",
            old_value=before,
            new_value={
                "received_amount": float(expected.received_amount),
                "payment_status": expected.payment_status.value,
            },
        )
    if commit:
        await db.commit()
    logger.warning(
        f"🔧 项目回款汇总偏差已修正 project={project_id} "
        f"{before['received_amount']} -> {expected.received_amount}"
    )
    return True


async def rebuild_all(db: AsyncSession, actor_id: Optional[int] = None) -> RepairResult:
    """重算全部项目"""
    result = await db.execute(select(Project.id).order_by(Project.id))
    project_ids = list(result.scalars().all())

    outcome = RepairResult(checked=len(project_ids))
    for project_id in project_ids:
        if await rebuild_project_aggregate(db, project_id, actor_id=actor_id, commit=False):
            outcome.repaired.append(project_id)
    await db.commit()

    logger.info(f"📊 回款汇总巡检完成: 检查 {outcome.checked} 个项目，修正 {len(outcome.repaired)} 个")
    return outcome


