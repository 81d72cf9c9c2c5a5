"""回款记录 Schema"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field


class PaymentRecordCreate(BaseModel):
    """财务直接录入回款"""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    received_at: datetime
    method: str = Field(default="bank", pattern="^(bank|cash|alipay|wechat|other)$")
    reference: Optional[str] = None
    invoice_number: Optional[str] = None
    note: Optional[str] = None
    received_by: Optional[int] = None  # 非对公转账必填


class PaymentInitiate(BaseModel):
    """项目负责人发起回款（需收款人确认）"""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    received_at: datetime
    method: str = Field(..., pattern="^(cash|alipay|wechat)$")
    reference: Optional[str] = None
    note: Optional[str] = None
    received_by: int


class PaymentConfirm(BaseModel):
    """收款人确认或拒绝"""
    action: str = Field(..., pattern="^(confirm|reject)$")
    note: Optional[str] = None


class PaymentReview(BaseModel):
    """财务复核；reviewed 为 True 时推进到 approved"""
    reviewed: bool = True
    note: Optional[str] = None


class PaymentRecordResponse(BaseModel):
    """回款记录响应"""
    id: int
    project_id: int
    amount: float
    received_at: datetime
    method: str
    method_display: str
    status: str
    status_display: str
    received_by: Optional[int] = None
    receiver_name: str = ""
    reference: Optional[str] = None
    invoice_number: Optional[str] = None
    note: Optional[str] = None

    recorded_by: Optional[int] = None
    initiated_by: Optional[int] = None
    confirmed_by: Optional[int] = None
    confirmed_at: Optional[datetime] = None
    confirm_note: Optional[str] = None

    finance_reviewed: bool = False
    finance_reviewed_by: Optional[int] = None
    finance_reviewed_at: Optional[datetime] = None
    finance_review_note: Optional[str] = None

    # 按时间回放得到的、该笔回款发生时项目的回款状态
    payment_status_at_time: Optional[str] = None

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectPaymentSummary(BaseModel):
    """项目回款汇总"""
    project_id: int
    project_amount: float
    received_amount: float
    remaining_amount: float
    payment_status: str
    is_fully_paid: bool


class PaymentMutationResult(BaseModel):
    """回款变更结果：记录 + 变更后的项目汇总"""
    record: PaymentRecordResponse
    project: ProjectPaymentSummary


class ProjectPaymentListResponse(BaseModel):
    """项目回款记录列表"""
    project: ProjectPaymentSummary
    records: List[PaymentRecordResponse]
    total: int


class ReceiverOption(BaseModel):
    """可选收款人"""
    id: int
    username: str
    name: str
    roles: List[str]
