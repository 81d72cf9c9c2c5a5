"""
回款记录模型 - 项目的每一笔回款（已到账或待确认）
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, DECIMAL, ForeignKey, Integer, String, Text
)
from sqlalchemy.orm import relationship, validates

from app.db.base import Base


class PaymentMethod(str, Enum):
    BANK = "bank"
    CASH = "cash"
    ALIPAY = "alipay"
    WECHAT = "wechat"
    OTHER = "other"


# 可由项目负责人发起、需收款人确认的方式
INITIABLE_METHODS = (PaymentMethod.CASH, PaymentMethod.ALIPAY, PaymentMethod.WECHAT)


class RecordStatus(str, Enum):
    """回款记录状态

    pending   -> confirmed / rejected   （收款人确认或拒绝）
    confirmed -> approved               （财务复核通过）
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    APPROVED = "approved"


# 计入项目已回款的状态
COUNTED_STATUSES = (RecordStatus.CONFIRMED.value, RecordStatus.APPROVED.value)


class PaymentRecord(Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        # 财务复核标记只允许出现在已计入的记录上
        CheckConstraint(
            "finance_reviewed = 0 OR status IN ('confirmed', 'approved')",
            name="ck_payment_review_requires_counted",
        ),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # 关联项目（创建后不可修改）
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)

    amount = Column(DECIMAL(12, 2), nullable=False, comment="回款金额")
    received_at = Column(DateTime, nullable=False, comment="到账日期")
    method = Column(String(20), nullable=False, default=PaymentMethod.BANK.value, comment="回款方式")

    # 收款人（现金/支付宝/微信需填写）
    received_by = Column(Integer, ForeignKey("sys_user.id"), index=True, comment="收款人")
    reference = Column(String(100), comment="凭证号")
    invoice_number = Column(String(50), comment="关联发票号")
    note = Column(Text, comment="备注")

    status = Column(String(20), nullable=False, default=RecordStatus.PENDING.value, index=True, comment="状态")

    # 录入人（财务直接录入）/ 发起人（项目负责人发起）
    recorded_by = Column(Integer, ForeignKey("sys_user.id"))
    initiated_by = Column(Integer, ForeignKey("sys_user.id"))

    # 确认信息
    confirmed_by = Column(Integer, ForeignKey("sys_user.id"))
    confirmed_at = Column(DateTime)
    confirm_note = Column(Text)

    # 财务复核（与 status 正交，仅 confirmed/approved 可为 True）
    finance_reviewed = Column(Boolean, nullable=False, default=False)
    finance_reviewed_by = Column(Integer, ForeignKey("sys_user.id"))
    finance_reviewed_at = Column(DateTime)
    finance_review_note = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 关系
    project = relationship("Project", back_populates="payments")
    receiver = relationship("User", foreign_keys=[received_by])
    recorder = relationship("User", foreign_keys=[recorded_by])
    initiator = relationship("User", foreign_keys=[initiated_by])
    confirmer = relationship("User", foreign_keys=[confirmed_by])
    reviewer = relationship("User", foreign_keys=[finance_reviewed_by])

    def __repr__(self):
        return f"<PaymentRecord {self.id}: {self.status} ¥{self.amount}>"

    @validates("project_id")
    def validate_project_id(self, key, value):
        if self.project_id is not None and value != self.project_id:
            raise ValueError("回款记录创建后不能更换项目")
        return value

    @property
    def is_counted(self) -> bool:
        return self.status in COUNTED_STATUSES

    @property
    def method_display(self) -> str:
        method_map = {
            "bank": "对公转账",
            "cash": "现金",
            "alipay": "支付宝",
            "wechat": "微信",
            "other": "其他",
        }
        return method_map.get(self.method, self.method)

    @property
    def status_display(self) -> str:
        status_map = {
            "pending": "待确认",
            "confirmed": "已确认",
            "rejected": "已拒绝",
            "approved": "已复核",
        }
        return status_map.get(self.status, self.status)
