"""发票API"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import CurrentUser, finance_scope, get_current_user, get_db, require_permission
from app.core.permissions import Permission
from app.models.invoice import Invoice
from app.schemas.common import ok
from app.schemas.invoice import InvoiceCreate, InvoiceResponse, InvoiceUpdate
from app.services import invoices as invoice_service

router = APIRouter()


def build_invoice_response(invoice: Invoice) -> InvoiceResponse:
    """构建发票响应"""
    return InvoiceResponse(
        id=invoice.id,
        project_id=invoice.project_id,
        project_number=(invoice.project.project_number or "") if invoice.project else "",
        project_name=invoice.project.project_name if invoice.project else "",
        invoice_number=invoice.invoice_number,
        amount=float(invoice.amount or 0),
        issue_date=invoice.issue_date,
        status=invoice.status,
        status_display=invoice.status_display,
        type=invoice.type,
        type_display=invoice.type_display,
        note=invoice.note,
        created_by=invoice.created_by,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
    )


@router.get("")
async def list_invoices(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    project_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None, pattern="^(issued|paid|void)$")) -> Any:
    """发票列表"""
    view_all = finance_scope(current)
    invoices = await invoice_service.list_invoices(db, current.id, view_all, project_id=project_id, status=status)
    return ok([build_invoice_response(i) for i in invoices])


@router.post("/{project_id}")
async def create_invoice(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_permission(Permission.FINANCE_EDIT)),
    project_id: int,
    invoice_in: InvoiceCreate) -> Any:
    """开具发票"""
    invoice = await invoice_service.create_invoice(db, project_id, invoice_in, current.id)
    return ok(build_invoice_response(invoice), message="发票已创建")


@router.put("/{invoice_id}")
async def update_invoice(
    *,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_permission(Permission.FINANCE_EDIT)),
    invoice_id: int,
    invoice_in: InvoiceUpdate) -> Any:
    """修改发票"""
    invoice = await invoice_service.update_invoice(db, invoice_id, invoice_in, current.id)
    return ok(build_invoice_response(invoice), message="发票已更新")
