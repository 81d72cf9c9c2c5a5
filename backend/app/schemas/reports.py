"""应收与对账报表 Schema"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel


class ReceivableItem(BaseModel):
    """单个项目的应收情况"""
    id: int
    project_number: Optional[str] = None
    project_name: str
    customer_id: Optional[int] = None
    customer_name: str = ""
    created_by: int
    status: Optional[str] = None
    project_amount: float
    received_amount: float
    outstanding: float
    payment_status: str
    payment_status_display: str
    is_fully_paid: bool
    expected_at: Optional[datetime] = None
    overdue: bool
    has_invoice: bool


class ReceivablesSummary(BaseModel):
    """应收汇总"""
    project_count: int = 0
    total_amount: float = 0       # 项目总额
    total_received: float = 0     # 已回款
    total_outstanding: float = 0  # 未回款
    overdue_count: int = 0        # 逾期项目数
    overdue_amount: float = 0     # 逾期未回款金额


class ReceivablesReport(BaseModel):
    items: List[ReceivableItem]
    summary: ReceivablesSummary


class ReconciliationItem(BaseModel):
    """单个项目的回款/开票对账"""
    project_id: int
    project_number: Optional[str] = None
    project_name: str
    customer_name: str = ""
    project_amount: float
    total_payments: float
    total_invoices: float
    difference: float
    payment_count: int
    invoice_count: int
    is_balanced: bool


class ReconciliationSummary(BaseModel):
    """对账汇总"""
    total_projects: int = 0
    balanced_count: int = 0
    unbalanced_count: int = 0
    total_payments: float = 0
    total_invoices: float = 0
    total_difference: float = 0


class ReconciliationReport(BaseModel):
    items: List[ReconciliationItem]
    summary: ReconciliationSummary
