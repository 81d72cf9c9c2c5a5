"""
发票台账

同一项目所有未作废发票金额合计不得超过项目总金额，
新建和修改时都要校验（修改时排除自身）。作废发票永久不计入。
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import AmountExceededError, DuplicateError, NotFoundError, ValidationError
from app.models.invoice import Invoice, InvoiceStatus
from app.models.project import Project
from app.schemas.invoice import InvoiceCreate, InvoiceUpdate
from app.services.audit import create_audit_log, invoice_snapshot
from app.services.money import Number, is_cents, to_decimal

logger = logging.getLogger(__name__)


def checked_amount(value: Number) -> Decimal:
    amount = to_decimal(value)
    if amount <= 0:
        raise ValidationError("发票金额必须大于0")
    if not is_cents(amount):
        raise ValidationError("发票金额最多保留两位小数")
    return amount


def validate_invoice_amount(
    new_amount: Number,
    project_amount: Number,
    existing_non_void_amounts: Iterable[Number]) -> Decimal:
    """
    校验开票金额

    Args:
        new_amount: 本次开票金额
        project_amount: 项目总金额
        existing_non_void_amounts: 其他未作废发票金额（修改时已排除自身）

    Returns:
        校验通过后的剩余可开票额度
    """
    amount = checked_amount(new_amount)
    total = to_decimal(project_amount)

    issued = sum((to_decimal(a) for a in existing_non_void_amounts), Decimal("0"))
    headroom = max(Decimal("0"), total - issued)

    if amount > total:
        raise AmountExceededError(
            f"发票金额 ¥{amount} 不能超过项目总金额 ¥{total}",
            remaining=headroom,
        )
    if issued + amount > total:
        raise AmountExceededError(
            f"累计开票金额不能超过项目总金额 ¥{total}，剩余可开票金额 ¥{headroom}",
            remaining=headroom,
        )
    return headroom - amount


async def existing_invoice_amounts(
    db: AsyncSession,
    project_id: int,
    excluding_id: Optional[int] = None) -> List[Decimal]:
    """项目下未作废发票金额"""
    conditions = [Invoice.project_id == project_id, Invoice.status != InvoiceStatus.VOID.value]
    if excluding_id is not None:
        conditions.append(Invoice.id != excluding_id)
    result = await db.execute(select(Invoice.amount).where(*conditions))
    return [to_decimal(a) for a in result.scalars().all()]


async def ensure_unique_number(
    db: AsyncSession,
    invoice_number: str,
    excluding_id: Optional[int] = None) -> None:
    """发票号在所有项目的未作废发票中唯一"""
    conditions = [
        Invoice.invoice_number == invoice_number,
        Invoice.status != InvoiceStatus.VOID.value,
    ]
    if excluding_id is not None:
        conditions.append(Invoice.id != excluding_id)
    result = await db.execute(select(func.count(Invoice.id)).where(*conditions))
    if (result.scalar() or 0) > 0:
        raise DuplicateError(f"发票号 {invoice_number} 已存在")


async def load_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
    result = await db.execute(
        select(Invoice)
        .options(selectinload(Invoice.project))
        .where(Invoice.id == invoice_id)
        .execution_options(populate_existing=True)
    )
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise NotFoundError("发票不存在")
    return invoice


async def create_invoice(
    db: AsyncSession,
    project_id: int,
    invoice_in: InvoiceCreate,
    actor_id: int) -> Invoice:
    """新建发票"""
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("项目不存在")

    invoice_number = invoice_in.invoice_number.strip()
    if not invoice_number:
        raise ValidationError("发票号不能为空")

    if invoice_in.status != InvoiceStatus.VOID.value:
        await ensure_unique_number(db, invoice_number)
        validate_invoice_amount(
            invoice_in.amount,
            project.project_amount,
            await existing_invoice_amounts(db, project.id),
        )
    else:
        checked_amount(invoice_in.amount)

    invoice = Invoice(
        project_id=project.id,
        invoice_number=invoice_number,
        amount=to_decimal(invoice_in.amount),
        issue_date=invoice_in.issue_date,
        status=invoice_in.status,
        type=invoice_in.type,
        note=invoice_in.note,
        created_by=actor_id,
    )
    db.add(invoice)
    await db.flush()

    create_audit_log(
        db, actor_id, "create", "invoice",
        resource_id=invoice.id,
        resource_name=invoice.invoice_number,
        description=f"开具发票 ¥{invoice.amount}",
        new_value=invoice_snapshot(invoice),
    )
    await db.commit()
    logger.info(f"🧾 新建发票 invoice={invoice.id} number={invoice_number} project={project.id} amount={invoice.amount}")
    return await load_invoice(db, invoice.id)


async def update_invoice(
    db: AsyncSession,
    invoice_id: int,
    invoice_in: InvoiceUpdate,
    actor_id: int) -> Invoice:
    """修改发票；结果仍为未作废时重新校验金额上限和发票号"""
    invoice = await load_invoice(db, invoice_id)
    project = invoice.project
    before = invoice_snapshot(invoice)

    changes = invoice_in.model_dump(exclude_unset=True)
    if "invoice_number" in changes and changes["invoice_number"] is not None:
        changes["invoice_number"] = changes["invoice_number"].strip()
        if not changes["invoice_number"]:
            raise ValidationError("发票号不能为空")

    new_status = changes.get("status") or invoice.status
    new_amount = changes["amount"] if changes.get("amount") is not None else invoice.amount
    new_number = changes.get("invoice_number") or invoice.invoice_number

    if new_status != InvoiceStatus.VOID.value:
        if new_number != invoice.invoice_number or invoice.is_void:
            await ensure_unique_number(db, new_number, excluding_id=invoice.id)
        validate_invoice_amount(
            new_amount,
            project.project_amount,
            await existing_invoice_amounts(db, project.id, excluding_id=invoice.id),
        )
    else:
        checked_amount(new_amount)

    for field, value in changes.items():
        if value is None:
            continue
        if field == "amount":
            value = to_decimal(value)
        setattr(invoice, field, value)
    invoice.updated_at = datetime.utcnow()

    create_audit_log(
        db, actor_id, "update", "invoice",
        resource_id=invoice.id,
        resource_name=invoice.invoice_number,
        description="修改发票",
        old_value=before,
        new_value=invoice_snapshot(invoice),
    )
    await db.commit()
    logger.info(f"🧾 修改发票 invoice={invoice.id} status={invoice.status} amount={invoice.amount}")
    return await load_invoice(db, invoice.id)


async def list_invoices(
    db: AsyncSession,
    viewer_id: int,
    view_all: bool,
    project_id: Optional[int] = None,
    status: Optional[str] = None) -> List[Invoice]:
    """发票列表；非财务角色只能看到自己创建的项目"""
    query = (
        select(Invoice)
        .join(Project, Invoice.project_id == Project.id)
        .options(selectinload(Invoice.project))
    )
    if not view_all:
        query = query.where(Project.created_by == viewer_id)
    if project_id:
        query = query.where(Invoice.project_id == project_id)
    if status:
        query = query.where(Invoice.status == status)

    result = await db.execute(query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()))
    return list(result.scalars().all())
