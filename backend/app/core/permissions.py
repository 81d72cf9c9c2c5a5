"""
角色权限策略

每个角色对每个权限给出一个 Grant：
- DENY / ALLOW: 布尔型权限
- ALL / SALES / ASSIGNED / SELF: 范围型权限（可见全部 / 自己创建的 / 被分配的 / 仅自己）

未列出的组合一律视为 DENY。
"""

from enum import Enum
from typing import Dict, Iterable, Optional


class Role(str, Enum):
    ADMIN = "admin"
    FINANCE = "finance"
    PM = "pm"
    ADMIN_STAFF = "admin_staff"
    SALES = "sales"
    PART_TIME_SALES = "part_time_sales"
    REVIEWER = "reviewer"
    TRANSLATOR = "translator"
    LAYOUT = "layout"


class Permission(str, Enum):
    PROJECT_VIEW = "project.view"
    FINANCE_VIEW = "finance.view"
    FINANCE_EDIT = "finance.edit"


class Grant(str, Enum):
    DENY = "deny"
    ALLOW = "allow"
    ALL = "all"
    SALES = "sales"
    ASSIGNED = "assigned"
    SELF = "self"


ROLE_PRIORITY: Dict[Role, int] = {
    Role.ADMIN: 100,
    Role.FINANCE: 90,
    Role.PM: 80,
    Role.ADMIN_STAFF: 75,
    Role.SALES: 70,
    Role.PART_TIME_SALES: 65,
    Role.REVIEWER: 50,
    Role.TRANSLATOR: 40,
    Role.LAYOUT: 30,
}

_POLICY: Dict[Role, Dict[Permission, Grant]] = {
    Role.ADMIN: {
        Permission.PROJECT_VIEW: Grant.ALL,
        Permission.FINANCE_VIEW: Grant.ALLOW,
        Permission.FINANCE_EDIT: Grant.ALLOW,
    },
    Role.FINANCE: {
        Permission.PROJECT_VIEW: Grant.ALL,
        Permission.FINANCE_VIEW: Grant.ALLOW,
        Permission.FINANCE_EDIT: Grant.ALLOW,
    },
    Role.PM: {Permission.PROJECT_VIEW: Grant.ALL},
    Role.ADMIN_STAFF: {Permission.PROJECT_VIEW: Grant.ALL},
    Role.SALES: {Permission.PROJECT_VIEW: Grant.SALES},
    Role.PART_TIME_SALES: {Permission.PROJECT_VIEW: Grant.SALES},
    Role.REVIEWER: {Permission.PROJECT_VIEW: Grant.ASSIGNED},
    Role.TRANSLATOR: {Permission.PROJECT_VIEW: Grant.ASSIGNED},
    Role.LAYOUT: {Permission.PROJECT_VIEW: Grant.ASSIGNED},
}


def parse_role(value: Optional[str]) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


def grant_for(role: Optional[Role], permission: Permission) -> Grant:
    """角色对某权限的授予值"""
    if role is None:
        return Grant.DENY
    return _POLICY.get(role, {}).get(permission, Grant.DENY)


def can(role: Optional[Role], permission: Permission) -> bool:
    return grant_for(role, permission) is not Grant.DENY


def default_role(roles: Iterable[str]) -> Optional[Role]:
    """按优先级选出默认角色，忽略未知角色"""
    known = [r for r in (parse_role(code) for code in roles) if r is not None]
    if not known:
        return None
    return max(known, key=lambda r: ROLE_PRIORITY[r])
