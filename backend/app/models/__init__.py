# models包初始化文件
# 导入全部模型，确保建表时都已注册到 Base.metadata

from app.models.user import User
from app.models.customer import Customer
from app.models.project import Project, ProjectMember
from app.models.payment_record import PaymentRecord
from app.models.invoice import Invoice
from app.models.notification import Notification
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "Customer",
    "Project",
    "ProjectMember",
    "PaymentRecord",
    "Invoice",
    "Notification",
    "AuditLog",
]
