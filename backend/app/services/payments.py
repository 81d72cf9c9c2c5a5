"""
回款记录生命周期

状态流转：
    财务录入           -> confirmed（对公转账及其他方式都直接确认）
    项目负责人发起     -> pending
    pending   --confirm--> confirmed   （仅指定收款人，计入项目已回款）
    pending   --reject---> rejected    （仅指定收款人，不影响汇总）
    confirmed --review---> confirmed / approved（财务复核，不影响汇总）
    任意状态  --delete---> 删除（confirmed/approved 需回滚汇总）

每次迁移都是"带前置状态的条件更新"，并发的重复确认只有一个能成功；
项目汇总通过一条原子 UPDATE 修改，不做"读-改-写"。
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError, InternalError, InvalidStateError, NotFoundError, ValidationError
)
from app.models.invoice import Invoice, InvoiceStatus
from app.models.payment_record import (
    COUNTED_STATUSES, INITIABLE_METHODS, PaymentMethod, PaymentRecord, RecordStatus
)
from app.models.project import Project, ProjectMember
from app.models.user import User
from app.schemas.payment_record import (
    PaymentConfirm, PaymentInitiate, PaymentRecordCreate, PaymentReview
)
from app.services.audit import create_audit_log, payment_snapshot
from app.services.money import aggregate_update_values, is_cents, recompute, to_decimal
from app.services.notifications import NotificationSink, NotificationTypes, notify

logger = logging.getLogger(__name__)


class PaymentEvent(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    REVIEW = "review"
    APPROVE = "approve"


TRANSITIONS: Dict[Tuple[str, PaymentEvent], str] = {
    (RecordStatus.PENDING.value, PaymentEvent.CONFIRM): RecordStatus.CONFIRMED.value,
    (RecordStatus.PENDING.value, PaymentEvent.REJECT): RecordStatus.REJECTED.value,
    (RecordStatus.CONFIRMED.value, PaymentEvent.REVIEW): RecordStatus.CONFIRMED.value,
    (RecordStatus.CONFIRMED.value, PaymentEvent.APPROVE): RecordStatus.APPROVED.value,
}


def next_status(current: str, event: PaymentEvent) -> str:
    """按迁移表求目标状态，不允许的迁移抛 InvalidStateError"""
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidStateError(f"当前状态为 {current}，不能执行 {event.value}")
    return target


def payment_amount(value) -> Decimal:
    """校验回款金额：大于0且最多两位小数，否则入库后与项目汇总对不上"""
    amount = to_decimal(value)
    if amount <= 0:
        raise ValidationError("回款金额必须大于0")
    if not is_cents(amount):
        raise ValidationError("回款金额最多保留两位小数")
    return amount


# ==================== 查询辅助 ====================

async def get_project(db: AsyncSession, project_id: int) -> Project:
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("项目不存在")
    return project


async def reload_project(db: AsyncSession, project_id: int) -> Project:
    result = await db.execute(
        select(Project)
        .where(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError("项目不存在")
    return project


async def load_payment(db: AsyncSession, payment_id: int) -> PaymentRecord:
    result = await db.execute(
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.receiver))
        .where(PaymentRecord.id == payment_id)
        .execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFoundError("回款记录不存在")
    return payment


async def is_project_owner(db: AsyncSession, project: Project, user_id: int) -> bool:
    """项目创建人，或已接受的项目成员"""
    if project.created_by == user_id:
        return True
    result = await db.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project.id,
            ProjectMember.user_id == user_id,
            ProjectMember.acceptance_status == "accepted",
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def validate_receiver(db: AsyncSession, user_id: Optional[int]) -> User:
    """收款人必须存在、启用，且角色在允许范围内"""
    if user_id is None:
        raise ValidationError("请选择收款人")
    receiver = await db.get(User, user_id)
    if not receiver:
        raise ValidationError("收款人不存在")
    if not receiver.is_active:
        raise ValidationError("收款人已被禁用")
    if not receiver.has_role(*settings.PAYMENT_RECEIVER_ROLES):
        raise ValidationError("收款人必须是财务、销售或管理员")
    return receiver


async def list_receivers(db: AsyncSession) -> List[User]:
    """可选收款人列表"""
    result = await db.execute(select(User).where(User.status.is_(True)).order_by(User.id))
    return [u for u in result.scalars().all() if u.has_role(*settings.PAYMENT_RECEIVER_ROLES)]


# ==================== 原子更新 ====================

async def shift_project_aggregate(db: AsyncSession, project_id: int, delta: Decimal) -> Project:
    """对项目已回款做原子增减，并同步派生字段"""
    result = await db.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(**aggregate_update_values(Project.__table__, delta), updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InternalError(f"更新项目回款汇总失败: project={project_id}")
    return await reload_project(db, project_id)


async def compare_and_set(db: AsyncSession, payment: PaymentRecord, expected_status: str, **values) -> None:
    """仅当记录仍处于 expected_status 时更新，防止并发重复处理"""
    result = await db.execute(
        update(PaymentRecord)
        .where(PaymentRecord.id == payment.id, PaymentRecord.status == expected_status)
        .values(updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("回款记录状态已变化，请刷新后重试")


# ==================== 生命周期 ====================

async def create_manual_payment(
    db: AsyncSession,
    project_id: int,
    payment_in: PaymentRecordCreate,
    actor_id: int) -> Tuple[PaymentRecord, Project]:
    """财务直接录入回款，直接计入已回款"""
    project = await get_project(db, project_id)
    amount = payment_amount(payment_in.amount)

    now = datetime.utcnow()
    if payment_in.method == PaymentMethod.BANK.value:
        # 对公转账自带凭证，无需收款人会签
        received_by = payment_in.received_by
        confirmed_by = actor_id
    else:
        receiver = await validate_receiver(db, payment_in.received_by)
        received_by = receiver.id
        confirmed_by = receiver.id

    payment = PaymentRecord(
        project_id=project.id,
        amount=amount,
        received_at=payment_in.received_at,
        method=payment_in.method,
        received_by=received_by,
        reference=payment_in.reference,
        invoice_number=payment_in.invoice_number,
        note=payment_in.note,
        status=RecordStatus.CONFIRMED.value,
        recorded_by=actor_id,
        initiated_by=actor_id,
        confirmed_by=confirmed_by,
        confirmed_at=now,
    )
    db.add(payment)
    await db.flush()

    # 关联发票号存在时，将该发票标记为已支付
    if payment_in.invoice_number:
        await db.execute(
            update(Invoice)
            .where(
                Invoice.invoice_number == payment_in.invoice_number,
                Invoice.status != InvoiceStatus.VOID.value,
            )
            .values(status=InvoiceStatus.PAID.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    project = await shift_project_aggregate(db, project.id, amount)

    create_audit_log(
        db, actor_id, "create", "payment",
        resource_id=payment.id,
        resource_name=project.project_number,
        description=f"录入回款 ¥{amount}（{payment.method_display}）",
        new_value=payment_snapshot(payment),
    )
    await db.commit()

    logger.info(f"💰 录入回款 payment={payment.id} project={project.id} amount={amount} by={actor_id}")
    return await load_payment(db, payment.id), project


async def initiate_payment(
    db: AsyncSession,
    project_id: int,
    payment_in: PaymentInitiate,
    actor_id: int,
    notifier: Optional[NotificationSink] = None) -> PaymentRecord:
    """项目负责人发起现金/支付宝/微信回款，等待收款人确认"""
    project = await get_project(db, project_id)

    if payment_in.method not in {m.value for m in INITIABLE_METHODS}:
        raise ValidationError("只有现金、支付宝、微信回款需要发起确认")
    amount = payment_amount(payment_in.amount)

    if not await is_project_owner(db, project, actor_id):
        raise AuthorizationError("只有项目创建人或项目成员可以发起回款")

    receiver = await validate_receiver(db, payment_in.received_by)

    payment = PaymentRecord(
        project_id=project.id,
        amount=amount,
        received_at=payment_in.received_at,
        method=payment_in.method,
        received_by=receiver.id,
        reference=payment_in.reference,
        note=payment_in.note,
        status=RecordStatus.PENDING.value,
        initiated_by=actor_id,
        recorded_by=actor_id,
    )
    db.add(payment)
    await db.flush()

    create_audit_log(
        db, actor_id, "initiate", "payment",
        resource_id=payment.id,
        resource_name=project.project_number,
        description=f"发起回款 ¥{amount}，待 {receiver.name or receiver.username} 确认",
        new_value=payment_snapshot(payment),
    )
    await db.commit()
    logger.info(f"📝 发起回款 payment={payment.id} project={project.id} amount={amount} receiver={receiver.id}")

    await notify(
        notifier, receiver.id, NotificationTypes.PAYMENT_INITIATED,
        f"项目「{project.project_name}」有一笔 ¥{amount} 的{payment.method_display}回款待您确认",
        link=f"/payments/{payment.id}",
    )
    return await load_payment(db, payment.id)


async def process_confirmation(
    db: AsyncSession,
    payment_id: int,
    confirm_in: PaymentConfirm,
    actor_id: int,
    notifier: Optional[NotificationSink] = None) -> Tuple[PaymentRecord, Project]:
    """指定收款人确认或拒绝待确认回款"""
    payment = await load_payment(db, payment_id)
    if payment.received_by != actor_id:
        raise AuthorizationError("只有指定的收款人可以确认该回款")

    event = PaymentEvent(confirm_in.action)
    target = next_status(payment.status, event)
    before = payment_snapshot(payment)

    await compare_and_set(
        db, payment, payment.status,
        status=target,
        confirmed_by=actor_id,
        confirmed_at=datetime.utcnow(),
        confirm_note=confirm_in.note,
    )

    if target in COUNTED_STATUSES:
        project = await shift_project_aggregate(db, payment.project_id, to_decimal(payment.amount))
    else:
        project = await reload_project(db, payment.project_id)

    payment = await load_payment(db, payment_id)
    create_audit_log(
        db, actor_id, event.value, "payment",
        resource_id=payment.id,
        resource_name=project.project_number,
        description=f"{'确认' if target in COUNTED_STATUSES else '拒绝'}回款 ¥{payment.amount}",
        old_value=before,
        new_value=payment_snapshot(payment),
    )
    await db.commit()
    logger.info(f"✅ 回款{event.value} payment={payment.id} project={project.id} amount={payment.amount} by={actor_id}")

    if target in COUNTED_STATUSES:
        message = f"项目「{project.project_name}」的 ¥{payment.amount} 回款已确认到账"
        notification_type = NotificationTypes.PAYMENT_CONFIRMED
    else:
        message = f"项目「{project.project_name}」的 ¥{payment.amount} 回款被拒绝"
        notification_type = NotificationTypes.PAYMENT_REJECTED
    await notify(notifier, payment.initiated_by, notification_type, message, link=f"/payments/{payment.id}")
    return payment, project


async def review_payment(
    db: AsyncSession,
    payment_id: int,
    review_in: PaymentReview,
    actor_id: int) -> PaymentRecord:
    """财务复核已确认回款，可推进到 approved；不改变项目汇总"""
    payment = await load_payment(db, payment_id)
    event = PaymentEvent.APPROVE if review_in.reviewed else PaymentEvent.REVIEW
    target = next_status(payment.status, event)
    before = payment_snapshot(payment)

    await compare_and_set(
        db, payment, payment.status,
        status=target,
        finance_reviewed=True,
        finance_reviewed_by=actor_id,
        finance_reviewed_at=datetime.utcnow(),
        finance_review_note=review_in.note,
    )
    payment = await load_payment(db, payment_id)

    create_audit_log(
        db, actor_id, "review", "payment",
        resource_id=payment.id,
        description=f"财务复核回款 ¥{payment.amount}",
        old_value=before,
        new_value=payment_snapshot(payment),
    )
    await db.commit()
    logger.info(f"🔍 财务复核 payment={payment.id} status={target} by={actor_id}")
    return payment


async def delete_payment(db: AsyncSession, payment_id: int, actor_id: int) -> Project:
    """删除回款记录；已计入的记录回滚项目汇总"""
    payment = await load_payment(db, payment_id)
    before = payment_snapshot(payment)
    counted = payment.is_counted

    result = await db.execute(
        delete(PaymentRecord)
        .where(PaymentRecord.id == payment.id, PaymentRecord.status == payment.status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("回款记录状态已变化，请刷新后重试")

    if counted:
        project = await shift_project_aggregate(db, payment.project_id, -to_decimal(payment.amount))
    else:
        project = await reload_project(db, payment.project_id)

    create_audit_log(
        db, actor_id, "delete", "payment",
        resource_id=payment.id,
        resource_name=project.project_number,
        description=f"删除回款 ¥{payment.amount}（{payment.status_display}）",
        old_value=before,
    )
    await db.commit()
    db.expunge(payment)
    logger.info(f"🗑️ 删除回款 payment={payment_id} project={project.id} rollback={counted} by={actor_id}")
    return project


# ==================== 项目回款列表 ====================

def parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"{field} 格式应为 YYYY-MM-DD")


def replay_payment_status(project_amount, records: List[PaymentRecord]) -> Dict[int, str]:
    """
    按时间顺序回放，只累计已计入的金额，
    得到每笔记录发生时项目所处的回款状态
    """
    ordered = sorted(records, key=lambda r: (r.received_at, r.created_at or r.received_at, r.id))
    running = Decimal("0")
    status_at = {}
    for record in ordered:
        if record.is_counted:
            running += to_decimal(record.amount)
        status_at[record.id] = recompute(project_amount, running).payment_status.value
    return status_at


async def list_project_payments(
    db: AsyncSession,
    project_id: int,
    viewer_id: int,
    view_all: bool,
    payment_status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    status: Optional[str] = None) -> Tuple[Project, List[Tuple[PaymentRecord, str]]]:
    """项目回款记录（新到旧），附带每笔发生时的回款状态"""
    project = await get_project(db, project_id)
    if not view_all and not await _is_project_participant(db, project, viewer_id):
        raise AuthorizationError("无权查看该项目的回款")

    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")

    result = await db.execute(
        select(PaymentRecord)
        .options(selectinload(PaymentRecord.receiver))
        .where(PaymentRecord.project_id == project.id)
    )
    records = list(result.scalars().all())
    status_at = replay_payment_status(project.project_amount, records)

    filtered = []
    for record in records:
        if status and record.status != status:
            continue
        if start and record.received_at < start:
            continue
        if end and record.received_at >= end + timedelta(days=1):
            continue
        if payment_status and status_at[record.id] != payment_status:
            continue
        filtered.append(record)

    filtered.sort(key=lambda r: (r.received_at, r.created_at or r.received_at, r.id), reverse=True)
    return project, [(r, status_at[r.id]) for r in filtered]


async def _is_project_participant(db: AsyncSession, project: Project, user_id: int) -> bool:
    if project.created_by == user_id:
        return True
    result = await db.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project.id,
            ProjectMember.user_id == user_id,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None
