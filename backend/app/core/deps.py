"""
依赖注入

认证由外部网关完成，这里只根据请求头识别调用者：
- X-User-Id: 当前用户ID（必填）
- X-Role: 当前使用的角色（可选，缺省按优先级取用户的最高角色）
"""
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.permissions import Grant, Permission, Role, can, grant_for
from app.db.session import SessionLocal
from app.models.user import User
from app.services.notifications import DatabaseNotificationSink, NotificationSink


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话依赖
    """
    async with SessionLocal() as session:
        yield session


_default_sink = DatabaseNotificationSink(SessionLocal)


def get_notifier() -> NotificationSink:
    return _default_sink


@dataclass
class CurrentUser:
    user: User
    role: Role

    @property
    def id(self) -> int:
        return self.user.id

    def can(self, permission: Permission) -> bool:
        return can(self.role, permission)

    def grant(self, permission: Permission) -> Grant:
        return grant_for(self.role, permission)


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    x_user_id: Optional[int] = Header(None),
    x_role: Optional[str] = Header(None),
) -> CurrentUser:
    """解析当前用户和角色"""
    if x_user_id is None:
        raise AuthenticationError("未提供用户身份")

    user = await db.get(User, x_user_id)
    if not user or not user.is_active:
        raise AuthenticationError("用户不存在或已被禁用")

    role = user.acting_role(x_role)
    if role is None:
        raise AuthorizationError("当前用户没有该角色" if x_role else "当前用户没有可用角色")

    return CurrentUser(user=user, role=role)


def require_permission(permission: Permission) -> Callable:
    """要求当前角色拥有某权限"""

    async def checker(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not current.can(permission):
            raise AuthorizationError("权限不足")
        return current

    return checker


def finance_scope(current: CurrentUser) -> bool:
    """
    报表/列表的可见范围

    Returns:
        True 表示可见全部项目，False 表示只能看自己创建的项目
    """
    if current.can(Permission.FINANCE_VIEW):
        return True
    if current.grant(Permission.PROJECT_VIEW) is Grant.SALES:
        return False
    raise AuthorizationError("无权查看财务数据")
