"""
通知服务

通知是"发出即忘"的：业务提交之后再发送，发送失败只记日志，
不影响已经完成的回款操作。
"""

import logging
from typing import List, Optional

from app.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationTypes:
    PAYMENT_INITIATED = "payment_initiated"    # 待确认收款
    PAYMENT_CONFIRMED = "payment_confirmed"    # 收款已确认
    PAYMENT_REJECTED = "payment_rejected"      # 收款被拒绝


class NotificationSink:
    """通知发送接口"""

    async def send(self, user_id: int, type: str, message: str, link: Optional[str] = None) -> None:
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    """写入站内通知表，使用独立会话"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def send(self, user_id: int, type: str, message: str, link: Optional[str] = None) -> None:
        async with self.session_factory() as session:
            session.add(Notification(user_id=user_id, type=type, message=message, link=link, read=False))
            await session.commit()


class MemoryNotificationSink(NotificationSink):
    """内存通知（测试、本地调试用）"""

    def __init__(self):
        self.sent: List[dict] = []

    async def send(self, user_id: int, type: str, message: str, link: Optional[str] = None) -> None:
        self.sent.append({"user_id": user_id, "type": type, "message": message, "link": link})


async def notify(sink: Optional[NotificationSink], user_id: Optional[int], type: str,
                 message: str, link: Optional[str] = None) -> bool:
    """发送通知，失败时记录警告并返回 False"""
    if sink is None or user_id is None:
        return False
    try:
        await sink.send(user_id, type, message, link)
        return True
    except Exception as e:
        logger.warning(f"[Notification] 发送通知失败 user={user_id} type={type}: {e}")
        return False
