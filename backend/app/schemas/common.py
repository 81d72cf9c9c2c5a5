"""统一响应格式 {"success": true, "data": ...}"""

from typing import Optional


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body
