"""
项目回款汇总计算

项目上的 received_amount / remaining_amount / payment_status / is_fully_paid
都是缓存值，只由两项输入决定：项目总金额、已确认回款合计。

两种调用方式结果一致：
- 增量：apply_delta(当前已收, 本笔金额)：确认/删除单笔时使用
- 全量：recompute(项目金额, sum(全部已确认金额))：修复工具使用
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union

from sqlalchemy import and_, case, literal

from app.core.config import settings

Number = Union[Decimal, int, float, str, None]

CENT = Decimal("0.01")


class PaymentStatus(str, Enum):
    """项目回款状态"""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


PAYMENT_STATUS_DISPLAY = {
    PaymentStatus.UNPAID.value: "未回款",
    PaymentStatus.PARTIALLY_PAID.value: "部分回款",
    PaymentStatus.PAID.value: "已回款",
}


def to_decimal(value: Number) -> Decimal:
    """统一转为 Decimal，float 先转字符串避免二进制误差"""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_cents(value: Number) -> bool:
    """金额最多两位小数（与 DECIMAL(12, 2) 存储精度一致）"""
    amount = to_decimal(value)
    return amount == amount.quantize(CENT)


def epsilon() -> Decimal:
    return to_decimal(settings.MONEY_EPSILON)


def amounts_equal(a: Number, b: Number) -> bool:
    """两笔金额在容差内视为相等"""
    return abs(to_decimal(a) - to_decimal(b)) < epsilon()


def covers(received: Number, total: Number) -> bool:
    """已收是否覆盖总额（容差内视为覆盖），总额为 0 时恒为 False"""
    total = to_decimal(total)
    if total <= 0:
        return False
    return total - to_decimal(received) < epsilon()


@dataclass(frozen=True)
class PaymentAggregate:
    received_amount: Decimal
    remaining_amount: Decimal
    payment_status: PaymentStatus
    is_fully_paid: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "received_amount": self.received_amount,
            "remaining_amount": self.remaining_amount,
            "payment_status": self.payment_status.value,
            "is_fully_paid": self.is_fully_paid,
        }


def recompute(project_amount: Number, confirmed_sum: Number) -> PaymentAggregate:
    """根据项目金额和已确认回款合计推导回款汇总"""
    total = to_decimal(project_amount)
    received = to_decimal(confirmed_sum)

    remaining = max(Decimal("0"), total - received)
    fully_paid = covers(received, total)

    if fully_paid:
        status = PaymentStatus.PAID
    elif total > 0 and received > 0:
        status = PaymentStatus.PARTIALLY_PAID
    else:
        # 项目金额为 0 时无论收多少都算未回款
        status = PaymentStatus.UNPAID

    return PaymentAggregate(
        received_amount=received,
        remaining_amount=remaining,
        payment_status=status,
        is_fully_paid=fully_paid,
    )


def apply_delta(project_amount: Number, current_received: Number, delta: Number) -> PaymentAggregate:
    """增量更新：在当前已收基础上加/减一笔"""
    return recompute(project_amount, to_decimal(current_received) + to_decimal(delta))


def resum(project_amount: Number, confirmed_amounts: Iterable[Number]) -> PaymentAggregate:
    """全量重算：对全部已确认金额求和"""
    total = sum((to_decimal(a) for a in confirmed_amounts), Decimal("0"))
    return recompute(project_amount, total)


def aggregate_update_values(project_table, delta: Number) -> Dict[str, Any]:
    """
    生成原子更新项目回款汇总的 SET 子句

    UPDATE 中所有右侧表达式读取的都是更新前的行，因此
    received_amount 的增量与派生字段在同一条语句内完成，
    不存在"读-改-写"竞争。判断规则与 recompute() 保持一致。
    """
    delta = to_decimal(delta)
    eps = epsilon()
    total = project_table.c.project_amount
    new_received = project_table.c.received_amount + literal(delta)
    remaining = total - new_received
    fully_paid = and_(total > 0, remaining < literal(eps))

    return {
        "received_amount": new_received,
        "remaining_amount": case((remaining > 0, remaining), else_=literal(Decimal("0"))),
        "payment_status": case(
            (fully_paid, PaymentStatus.PAID.value),
            (and_(total > 0, new_received > 0), PaymentStatus.PARTIALLY_PAID.value),
            else_=PaymentStatus.UNPAID.value,
        ),
        "is_fully_paid": case((fully_paid, True), else_=False),
    }


def payment_status_display(status: Optional[str]) -> str:
    return PAYMENT_STATUS_DISPLAY.get(status, status or "")
