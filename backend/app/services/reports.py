"""
应收与对账报表

只读报表：不修改回款记录和发票。唯一的写操作是顺带修复
项目上缺失的 payment_status 缓存，修复失败只记日志，不影响返回。
"""

import csv
import io
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.invoice import Invoice, InvoiceStatus
from app.models.payment_record import COUNTED_STATUSES, PaymentRecord
from app.models.project import Project
from app.schemas.reports import (
    ReceivableItem, ReceivablesReport, ReceivablesSummary,
    ReconciliationItem, ReconciliationReport, ReconciliationSummary,
)
from app.services.money import PaymentAggregate, amounts_equal, payment_status_display, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class ReceivableFilters:
    customer_id: Optional[int] = None
    sales_id: Optional[int] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    has_invoice: Optional[bool] = None
    expected_from: Optional[str] = None
    expected_to: Optional[str] = None


def _parse_day(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"{field} 格式应为 YYYY-MM-DD")


def is_overdue(expected_at: Optional[datetime], is_fully_paid: bool, now: datetime) -> bool:
    return bool(expected_at and not is_fully_paid and expected_at < now)


def reconcile(total_payments, total_invoices) -> Tuple[Decimal, bool]:
    """返回 (回款 - 开票, 是否对平)"""
    payments = to_decimal(total_payments)
    invoices = to_decimal(total_invoices)
    return payments - invoices, amounts_equal(payments, invoices)


async def _projects_with_invoice(db: AsyncSession) -> set:
    result = await db.execute(
        select(Invoice.project_id)
        .where(Invoice.status != InvoiceStatus.VOID.value)
        .distinct()
    )
    return set(result.scalars().all())


async def persist_repairs(db: AsyncSession, repairs: Dict[int, PaymentAggregate]) -> None:
    """写回补算的缓存字段（只写派生字段，不动已回款金额）"""
    for project_id, aggregate in repairs.items():
        await db.execute(
            update(Project)
            .where(Project.id == project_id, Project.payment_status.is_(None))
            .values(
                payment_status=aggregate.payment_status.value,
                remaining_amount=aggregate.remaining_amount,
                is_fully_paid=aggregate.is_fully_paid,
            )
            .execution_options(synchronize_session=False)
        )
    await db.commit()


async def repair_cached_status(db: AsyncSession, repairs: Dict[int, PaymentAggregate]) -> bool:
    if not repairs:
        return True
    try:
        await persist_repairs(db, repairs)
        logger.info(f"🔧 补算项目回款状态 {len(repairs)} 个: {sorted(repairs)}")
        return True
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning(f"补算回款状态写回失败（本次返回计算值）: {e}")
        return False


async def receivables_report(
    db: AsyncSession,
    viewer_id: int,
    view_all: bool,
    filters: Optional[ReceivableFilters] = None,
    now: Optional[datetime] = None) -> ReceivablesReport:
    """应收列表：未回款、逾期、是否开票"""
    filters = filters or ReceivableFilters()
    now = now or datetime.utcnow()
    expected_from = _parse_day(filters.expected_from, "expected_from")
    expected_to = _parse_day(filters.expected_to, "expected_to")

    query = select(Project).options(selectinload(Project.customer))
    if not view_all:
        query = query.where(Project.created_by == viewer_id)
    if filters.customer_id:
        query = query.where(Project.customer_id == filters.customer_id)
    if filters.sales_id:
        query = query.where(Project.created_by == filters.sales_id)
    if filters.status:
        query = query.where(Project.status == filters.status)
    if expected_from:
        query = query.where(Project.expected_at >= expected_from)
    if expected_to:
        query = query.where(Project.expected_at < expected_to + timedelta(days=1))

    result = await db.execute(query.order_by(Project.expected_at.is_(None), Project.expected_at, Project.id))
    projects = list(result.scalars().all())
    invoiced = await _projects_with_invoice(db)

    repairs: Dict[int, PaymentAggregate] = {}
    items: List[ReceivableItem] = []
    for project in projects:
        if project.payment_status is None:
            aggregate = project.computed_aggregate()
            repairs[project.id] = aggregate
            payment_status = aggregate.payment_status.value
            is_fully_paid = aggregate.is_fully_paid
        else:
            payment_status = project.payment_status
            is_fully_paid = bool(project.is_fully_paid)

        has_invoice = project.id in invoiced
        if filters.payment_status and payment_status != filters.payment_status:
            continue
        if filters.has_invoice is not None and has_invoice != filters.has_invoice:
            continue

        total = to_decimal(project.project_amount)
        received = to_decimal(project.received_amount)
        outstanding = max(Decimal("0"), total - received)
        items.append(ReceivableItem(
            id=project.id,
            project_number=project.project_number,
            project_name=project.project_name,
            customer_id=project.customer_id,
            customer_name=project.customer.name if project.customer else "",
            created_by=project.created_by,
            status=project.status,
            project_amount=float(total),
            received_amount=float(received),
            outstanding=float(outstanding),
            payment_status=payment_status,
            payment_status_display=payment_status_display(payment_status),
            is_fully_paid=is_fully_paid,
            expected_at=project.expected_at,
            overdue=is_overdue(project.expected_at, is_fully_paid, now),
            has_invoice=has_invoice,
        ))

    await repair_cached_status(db, repairs)

    summary = ReceivablesSummary(project_count=len(items))
    for item in items:
        summary.total_amount += item.project_amount
        summary.total_received += item.received_amount
        summary.total_outstanding += item.outstanding
        if item.overdue:
            summary.overdue_count += 1
            summary.overdue_amount += item.outstanding
    return ReceivablesReport(items=items, summary=_round_summary(summary))


async def reconciliation_report(
    db: AsyncSession,
    viewer_id: int,
    view_all: bool,
    customer_id: Optional[int] = None,
    balanced: Optional[bool] = None) -> ReconciliationReport:
    """对账：每个项目已计入回款合计 vs 未作废发票合计"""
    payments_sq = (
        select(
            PaymentRecord.project_id.label("project_id"),
            func.coalesce(func.sum(PaymentRecord.amount), 0).label("total"),
            func.count(PaymentRecord.id).label("count"),
        )
        .where(PaymentRecord.status.in_(COUNTED_STATUSES))
        .group_by(PaymentRecord.project_id)
        .subquery()
    )
    invoices_sq = (
        select(
            Invoice.project_id.label("project_id"),
            func.coalesce(func.sum(Invoice.amount), 0).label("total"),
            func.count(Invoice.id).label("count"),
        )
        .where(Invoice.status != InvoiceStatus.VOID.value)
        .group_by(Invoice.project_id)
        .subquery()
    )

    query = (
        select(
            Project,
            payments_sq.c.total, payments_sq.c.count,
            invoices_sq.c.total, invoices_sq.c.count,
        )
        .outerjoin(payments_sq, payments_sq.c.project_id == Project.id)
        .outerjoin(invoices_sq, invoices_sq.c.project_id == Project.id)
        .options(selectinload(Project.customer))
    )
    if not view_all:
        query = query.where(Project.created_by == viewer_id)
    if customer_id:
        query = query.where(Project.customer_id == customer_id)

    result = await db.execute(query.order_by(Project.id))

    items: List[ReconciliationItem] = []
    for project, pay_total, pay_count, inv_total, inv_count in result.all():
        difference, is_balanced = reconcile(pay_total, inv_total)
        if balanced is not None and is_balanced != balanced:
            continue
        items.append(ReconciliationItem(
            project_id=project.id,
            project_number=project.project_number,
            project_name=project.project_name,
            customer_name=project.customer.name if project.customer else "",
            project_amount=float(project.project_amount or 0),
            total_payments=float(to_decimal(pay_total)),
            total_invoices=float(to_decimal(inv_total)),
            difference=float(difference),
            payment_count=pay_count or 0,
            invoice_count=inv_count or 0,
            is_balanced=is_balanced,
        ))

    return ReconciliationReport(items=items, summary=summarize_reconciliation(items))


def summarize_reconciliation(items: Sequence[ReconciliationItem]) -> ReconciliationSummary:
    total_payments = sum((to_decimal(i.total_payments) for i in items), Decimal("0"))
    total_invoices = sum((to_decimal(i.total_invoices) for i in items), Decimal("0"))
    balanced_count = sum(1 for i in items if i.is_balanced)
    return ReconciliationSummary(
        total_projects=len(items),
        balanced_count=balanced_count,
        unbalanced_count=len(items) - balanced_count,
        total_payments=float(total_payments),
        total_invoices=float(total_invoices),
        total_difference=float(total_payments - total_invoices),
    )


def _round_summary(summary: ReceivablesSummary) -> ReceivablesSummary:
    for field in ("total_amount", "total_received", "total_outstanding", "overdue_amount"):
        setattr(summary, field, round(getattr(summary, field), 2))
    return summary


# ==================== CSV 导出 ====================

RECEIVABLE_HEADERS = [
    "项目编号", "项目名称", "客户", "项目金额", "已回款", "未回款",
    "回款状态", "约定回款日期", "是否逾期", "是否开票",
]

RECONCILIATION_HEADERS = [
    "项目编号", "项目名称", "客户", "项目金额", "回款合计", "开票合计",
    "差额", "回款笔数", "发票张数", "是否对平",
]


def _yes_no(value: bool) -> str:
    return "是" if value else "否"


def receivable_rows(items: Iterable[ReceivableItem]) -> Iterator[list]:
    for item in items:
        yield [
            item.project_number or "", item.project_name, item.customer_name,
            f"{item.project_amount:.2f}", f"{item.received_amount:.2f}", f"{item.outstanding:.2f}",
            item.payment_status_display,
            item.expected_at.strftime("%Y-%m-%d") if item.expected_at else "",
            _yes_no(item.overdue), _yes_no(item.has_invoice),
        ]


def reconciliation_rows(items: Iterable[ReconciliationItem]) -> Iterator[list]:
    for item in items:
        yield [
            item.project_number or "", item.project_name, item.customer_name,
            f"{item.project_amount:.2f}", f"{item.total_payments:.2f}", f"{item.total_invoices:.2f}",
            f"{item.difference:.2f}", item.payment_count, item.invoice_count,
            _yes_no(item.is_balanced),
        ]


def iter_csv(headers: List[str], rows: Iterable[list], encoding: Optional[str] = None) -> Iterator[bytes]:
    """逐行生成已编码的 CSV（默认 GB18030，兼容 GBK，便于 Excel 直接打开）"""
    encoding = encoding or settings.EXPORT_ENCODING
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    for row in itertools.chain([headers], rows):
        writer.writerow(row)
        line = buffer.getvalue()
        try:
            chunk = line.encode(encoding)
        except UnicodeEncodeError:
            logger.warning(f"⚠️ 导出内容含 {encoding} 无法表示的字符，已替换为 ?：{line.strip()[:60]}")
            chunk = line.encode(encoding, errors="replace")
        yield chunk
        buffer.seek(0)
        buffer.truncate(0)
