"""回款记录API：录入、发起、确认、复核、删除、列表"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import CurrentUser, get_current_user, get_db, get_notifier, require_permission
from app.core.permissions import Permission
from app.models.payment_record import PaymentRecord
from app.models.project import Project
from app.schemas.common import ok
from app.schemas.payment_record import (
    PaymentConfirm, PaymentInitiate, PaymentRecordCreate, PaymentRecordResponse,
    PaymentMutationResult, PaymentReview, ProjectPaymentListResponse,
    ProjectPaymentSummary, ReceiverOption,
)
from app.services import payments as payment_service
from app.services.notifications import NotificationSink

router = APIRouter()


def build_payment_response(payment: PaymentRecord, status_at: Optional[str] = None) -> PaymentRecordResponse:
    """构建回款记录响应"""
    receiver = payment.receiver
    return PaymentRecordResponse(
        id=payment.id,
        project_id=payment.project_id,
        amount=float(payment.amount or 0),
        received_at=payment.received_at,
        method=payment.method,
        method_display=payment.method_display,
        status=payment.status,
        status_display=payment.status_display,
        received_by=payment.received_by,
        receiver_name=(receiver.name or receiver.username) if receiver else "",
        reference=payment.reference,
        invoice_number=payment.invoice_number,
        note=payment.note,
        recorded_by=payment.recorded_by,
        initiated_by=payment.initiated_by,
        confirmed_by=payment.confirmed_by,
        confirmed_at=payment.confirmed_at,
        confirm_note=payment.confirm_note,
        finance_reviewed=bool(payment.finance_reviewed),
        finance_reviewed_by=payment.finance_reviewed_by,
        finance_reviewed_at=payment.finance_reviewed_at,
        finance_review_note=payment.finance_review_note,
        payment_status_at_time=status_at,
        created_at=payment.created_at,
    )


def build_project_summary(project: Project) -> ProjectPaymentSummary:
    """构建项目回款汇总；缓存缺失时按当前金额计算"""
    aggregate = project.computed_aggregate()
    return ProjectPaymentSummary(
        project_id=project.id,
        project_amount=float(project.project_amount or 0),
        received_amount=float(project.received_amount or 0),
        remaining_amount=float((project.remaining_amount or 0) if project.payment_status else aggregate.remaining_amount),
        payment_status=project.payment_status or aggregate.payment_status.value,
        is_fully_paid=bool(project.is_fully_paid) if project.payment_status else aggregate.is_fully_paid,
    )


def build_mutation_result(payment: PaymentRecord, project: Project) -> PaymentMutationResult:
    return PaymentMutationResult(
        record=build_payment_response(payment),
        project=build_project_summary(project),
    )


@router.get("/receivers")
async def list_receivers(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user)) -> Any:
    """可选收款人"""
    users = await payment_service.list_receivers(db)
    return ok([
        ReceiverOption(id=u.id, username=u.username, name=u.name or u.username, roles=u.role_list)
        for u in users
    ])


@router.post("/{project_id}/initiate")
async def initiate_payment(
    *,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current: CurrentUser = Depends(get_current_user),
    project_id: int,
    payment_in: PaymentInitiate) -> Any:
    """项目负责人发起回款，等待收款人确认"""
    payment = await payment_service.initiate_payment(db, project_id, payment_in, current.id, notifier)
    return ok(build_payment_response(payment), message="回款已发起，等待收款人确认")


@router.post("/{payment_id}/confirm")
async def confirm_payment(
    *,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    current: CurrentUser = Depends(get_current_user),
    payment_id: int,
    confirm_in: PaymentConfirm) -> Any:
    """收款人确认或拒绝"""
    payment, project = await payment_service.process_confirmation(db, payment_id, confirm_in, current.id, notifier)
    message = "回款已确认" if confirm_in.action == "confirm" else "回款已拒绝"
    return ok(build_mutation_result(payment, project), message=message)


@router.post("/{payment_id}/review")
async def review_payment(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_permission(Permission.FINANCE_EDIT)),
    payment_id: int,
    review_in: Optional[PaymentReview] = None) -> Any:
    """财务复核"""
    payment = await payment_service.review_payment(db, payment_id, review_in or PaymentReview(), current.id)
    return ok(build_payment_response(payment), message="复核完成")


@router.post("/{project_id}")
async def create_payment(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_permission(Permission.FINANCE_EDIT)),
    project_id: int,
    payment_in: PaymentRecordCreate) -> Any:
    """财务直接录入回款"""
    payment, project = await payment_service.create_manual_payment(db, project_id, payment_in, current.id)
    return ok(build_mutation_result(payment, project), message="回款已录入")


@router.get("/{project_id}")
async def list_project_payments(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    project_id: int,
    payment_status: Optional[str] = Query(None, pattern="^(unpaid|partially_paid|paid)$", description="发生时的回款状态"),
    start_date: Optional[str] = Query(None, description="开始日期 YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="结束日期 YYYY-MM-DD"),
    status: Optional[str] = Query(None, pattern="^(pending|confirmed|rejected|approved)$")) -> Any:
    """项目回款记录"""
    project, rows = await payment_service.list_project_payments(
        db, project_id, current.id, current.can(Permission.FINANCE_VIEW),
        payment_status=payment_status,
        start_date=start_date,
        end_date=end_date,
        status=status,
    )
    return ok(ProjectPaymentListResponse(
        project=build_project_summary(project),
        records=[build_payment_response(record, status_at) for record, status_at in rows],
        total=len(rows),
    ))


@router.delete("/{record_id}")
async def delete_payment(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_permission(Permission.FINANCE_EDIT)),
    record_id: int) -> Any:
    """删除回款记录"""
    project = await payment_service.delete_payment(db, record_id, current.id)
    return ok({"project": build_project_summary(project)}, message="回款记录已删除")
