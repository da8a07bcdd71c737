"""确定性 ID 生成."""

import base64


def derive_id(value: str) -> str:
    """
    将上游标识编码为 URL 安全的 base64 ID.

    同一输入总是得到同一 ID，结果不含 ``+``、``/`` 和末尾的 ``=``。
    """
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii")
    return encoded.rstrip("=")
