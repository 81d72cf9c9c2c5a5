"""应收与对账报表API（含 CSV 导出）"""

from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import CurrentUser, finance_scope, get_current_user, get_db
from app.schemas.common import ok
from app.services import reports as report_service
from app.services.reports import ReceivableFilters

router = APIRouter()


def receivable_filters(
    customer_id: Optional[int] = Query(None),
    sales_id: Optional[int] = Query(None, description="项目创建人"),
    status: Optional[str] = Query(None, description="项目状态"),
    payment_status: Optional[str] = Query(None, pattern="^(unpaid|partially_paid|paid)$"),
    has_invoice: Optional[bool] = Query(None),
    expected_from: Optional[str] = Query(None, description="约定回款开始日期 YYYY-MM-DD"),
    expected_to: Optional[str] = Query(None, description="约定回款结束日期 YYYY-MM-DD")) -> ReceivableFilters:
    return ReceivableFilters(
        customer_id=customer_id,
        sales_id=sales_id,
        status=status,
        payment_status=payment_status,
        has_invoice=has_invoice,
        expected_from=expected_from,
        expected_to=expected_to,
    )


def csv_response(filename: str, content) -> StreamingResponse:
    return StreamingResponse(
        content,
        media_type=f"text/csv; charset={settings.EXPORT_ENCODING}",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/receivables")
async def receivables(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    filters: ReceivableFilters = Depends(receivable_filters)) -> Any:
    """应收账款"""
    report = await report_service.receivables_report(db, current.id, finance_scope(current), filters)
    return ok(report)


@router.get("/receivables/export")
async def export_receivables(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    filters: ReceivableFilters = Depends(receivable_filters)) -> Any:
    """导出应收账款 CSV"""
    report = await report_service.receivables_report(db, current.id, finance_scope(current), filters)
    filename = f"receivables_{datetime.now().strftime('%Y%m%d')}.csv"
    return csv_response(
        filename,
        report_service.iter_csv(report_service.RECEIVABLE_HEADERS, report_service.receivable_rows(report.items)),
    )


@router.get("/reconciliation")
async def reconciliation(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    customer_id: Optional[int] = Query(None),
    balanced: Optional[bool] = Query(None, description="只看对平/未对平")) -> Any:
    """回款与开票对账"""
    report = await report_service.reconciliation_report(
        db, current.id, finance_scope(current), customer_id=customer_id, balanced=balanced
    )
    return ok(report)


@router.get("/reconciliation/export")
async def export_reconciliation(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    customer_id: Optional[int] = Query(None),
    balanced: Optional[bool] = Query(None)) -> Any:
    """导出对账 CSV"""
    report = await report_service.reconciliation_report(
        db, current.id, finance_scope(current), customer_id=customer_id, balanced=balanced
    )
    filename = f"reconciliation_{datetime.now().strftime('%Y%m%d')}.csv"
    return csv_response(
        filename,
        report_service.iter_csv(report_service.RECONCILIATION_HEADERS, report_service.reconciliation_rows(report.items)),
    )
