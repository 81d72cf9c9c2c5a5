from datetime import datetime
from typing import List, Optional
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.dialects.sqlite import JSON

from app.db.base import Base
from app.core.permissions import Permission, Role, can, default_role, parse_role


class User(Base):
    __tablename__ = "sys_user"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(50), nullable=False, default="")
    # 角色编码列表，如 ["sales", "finance"]
    roles = Column(JSON, nullable=False, default=list)
    status = Column(Boolean, nullable=False, default=True)  # True: 启用, False: 禁用
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.username}: {self.roles}>"

    @property
    def is_active(self):
        return self.status

    @property
    def role_list(self) -> List[str]:
        return list(self.roles or [])

    def has_role(self, *codes: str) -> bool:
        return any(code in self.role_list for code in codes)

    @property
    def default_role(self) -> Optional[Role]:
        return default_role(self.role_list)

    def acting_role(self, requested: Optional[str]) -> Optional[Role]:
        """解析当前使用的角色；请求的角色必须是用户拥有的角色"""
        if not requested:
            return self.default_role
        if requested not in self.role_list:
            return None
        return parse_role(requested)

    def has_permission(self, permission: Permission) -> bool:
        """任一角色拥有该权限即可"""
        return any(can(parse_role(code), permission) for code in self.role_list)
