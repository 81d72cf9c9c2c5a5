"""
操作日志模型 - 记录回款、发票的关键操作
用于审计追踪和问题排查
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import relationship
from app.db.base import Base


class AuditLog(Base):
    """操作日志 - 审计追踪"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # 操作人
    user_id = Column(Integer, ForeignKey("sys_user.id"), nullable=False, index=True)

    # 操作类型
    # create / initiate / confirm / reject / review / update / delete / repair
    action = Column(String(20), nullable=False, index=True, comment="操作类型")

    # 资源类型: payment / invoice / project
    resource_type = Column(String(50), nullable=False, index=True, comment="资源类型")
    resource_id = Column(Integer, index=True, comment="资源ID")
    resource_name = Column(String(100), comment="资源名称")

    description = Column(String(500), comment="操作描述")
    old_value = Column(JSON, comment="修改前")
    new_value = Column(JSON, comment="修改后")

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", foreign_keys=[user_id])

    def __repr__(self):
        return f"<AuditLog {self.action} {self.resource_type}:{self.resource_id}>"

