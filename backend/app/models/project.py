"""
项目模型 - 只保留回款引擎需要的字段

payment_* 字段是从回款记录推导出来的缓存，不允许直接手工修改，
由 services.payments 的原子更新或 services.repair 的全量重算维护。
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, DECIMAL, Boolean, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.services.money import PaymentAggregate, recompute


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    project_number = Column(String(50), unique=True, index=True, comment="项目编号")
    project_name = Column(String(200), nullable=False, comment="项目名称")

    customer_id = Column(Integer, ForeignKey("customers.id"), index=True)
    created_by = Column(Integer, ForeignKey("sys_user.id"), nullable=False, index=True)

    # pending / in_progress / completed / cancelled
    status = Column(String(20), default="pending", index=True, comment="项目状态")

    project_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="项目总金额")

    # 回款汇总（缓存）
    received_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="已回款")
    remaining_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="未回款")
    # unpaid / partially_paid / paid；旧数据可能为空，报表读取时自动补算
    payment_status = Column(String(20), index=True, comment="回款状态")
    is_fully_paid = Column(Boolean, nullable=False, default=False, comment="是否已结清")
    expected_at = Column(DateTime, comment="合同约定回款日期")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 关系
    customer = relationship("Customer", foreign_keys=[customer_id])
    creator = relationship("User", foreign_keys=[created_by])
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    payments = relationship("PaymentRecord", back_populates="project", cascade="all, delete-orphan")
    invoices = relationship("Invoice", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Project {self.project_number}: ¥{self.project_amount}>"

    def computed_aggregate(self) -> PaymentAggregate:
        """按当前已收金额重新推导汇总（不写回）"""
        return recompute(self.project_amount, self.received_amount)


class ProjectMember(Base):
    """项目成员"""
    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", "role", name="uq_project_member_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("sys_user.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, comment="项目中的角色")
    # pending: 待接受, accepted: 已接受, rejected: 已拒绝
    acceptance_status = Column(String(20), nullable=False, default="pending", comment="接受状态")
    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="members")
    user = relationship("User", foreign_keys=[user_id])
