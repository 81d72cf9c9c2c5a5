"""操作日志记录"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog
from app.models.invoice import Invoice
from app.models.payment_record import PaymentRecord


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def payment_snapshot(payment: PaymentRecord) -> Dict[str, Any]:
    """回款记录快照（写入 old_value/new_value）"""
    fields = ("project_id", "amount", "method", "status", "received_by",
              "confirmed_by", "finance_reviewed", "received_at")
    return {f: _jsonable(getattr(payment, f)) for f in fields}


def invoice_snapshot(invoice: Invoice) -> Dict[str, Any]:
    fields = ("project_id", "invoice_number", "amount", "status", "type", "issue_date")
    return {f: _jsonable(getattr(invoice, f)) for f in fields}


def create_audit_log(
    db: AsyncSession,
    user_id: int,
    action: str,
    resource_type: str,
    resource_id: Optional[int] = None,
    resource_name: Optional[str] = None,
    description: Optional[str] = None,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None) -> AuditLog:
    """创建审计日志（随业务操作一起提交）"""
    log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        description=description,
        old_value=old_value,
        new_value=new_value
    )
    db.add(log)
    return log
