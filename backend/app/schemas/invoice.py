"""发票 Schema"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class InvoiceCreate(BaseModel):
    """创建发票（金额上限由服务层校验）"""
    invoice_number: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., decimal_places=2)
    issue_date: datetime
    status: str = Field(default="issued", pattern="^(issued|paid|void)$")
    type: str = Field(default="vat", pattern="^(vat|normal|other)$")
    note: Optional[str] = None


class InvoiceUpdate(BaseModel):
    """更新发票"""
    invoice_number: Optional[str] = Field(None, min_length=1, max_length=50)
    amount: Optional[Decimal] = Field(None, decimal_places=2)
    issue_date: Optional[datetime] = None
    status: Optional[str] = Field(None, pattern="^(issued|paid|void)$")
    type: Optional[str] = Field(None, pattern="^(vat|normal|other)$")
    note: Optional[str] = None


class InvoiceResponse(BaseModel):
    """发票响应"""
    id: int
    project_id: int
    project_number: str = ""
    project_name: str = ""
    invoice_number: str
    amount: float
    issue_date: datetime
    status: str
    status_display: str
    type: str
    type_display: str
    note: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
