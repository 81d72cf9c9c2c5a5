"""
发票模型 - 针对项目开具的发票

同一项目下未作废发票的金额合计不得超过项目总金额。
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import CheckConstraint, Column, DateTime, DECIMAL, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base


class InvoiceStatus(str, Enum):
    ISSUED = "issued"
    PAID = "paid"
    VOID = "void"


class InvoiceType(str, Enum):
    VAT = "vat"
    NORMAL = "normal"
    OTHER = "other"


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_invoice_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)

    # 发票号在未作废发票中全局唯一（由服务层校验）
    invoice_number = Column(String(50), nullable=False, index=True, comment="发票号")
    amount = Column(DECIMAL(12, 2), nullable=False, comment="发票金额")
    issue_date = Column(DateTime, nullable=False, comment="开票日期")
    status = Column(String(20), nullable=False, default=InvoiceStatus.ISSUED.value, index=True, comment="状态")
    type = Column(String(20), nullable=False, default=InvoiceType.VAT.value, comment="发票类型")
    note = Column(Text, comment="备注")

    created_by = Column(Integer, ForeignKey("sys_user.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="invoices")
    creator = relationship("User", foreign_keys=[created_by])

    def __repr__(self):
        return f"<Invoice {self.invoice_number}: {self.status} ¥{self.amount}>"

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID.value

    @property
    def status_display(self) -> str:
        status_map = {
            "issued": "已开票",
            "paid": "已支付",
            "void": "已作废",
        }
        return status_map.get(self.status, self.status)

    @property
    def type_display(self) -> str:
        type_map = {
            "vat": "增值税专票",
            "normal": "普通发票",
            "other": "其他",
        }
        return type_map.get(self.type, self.type)
