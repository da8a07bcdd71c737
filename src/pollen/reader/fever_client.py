"""Fever API 客户端（FreshRSS 等服务端兼容）."""

import hashlib
import logging
from typing import Any

import httpx

from pollen.errors import AuthError, NetworkError

logger = logging.getLogger(__name__)

FeverParam = str | int | bool | None


def fever_api_key(username: str, password: str) -> str:
    """Fever 认证密钥：``md5("username:password")``."""
    return hashlib.md5(f"{username}:{password}".encode()).hexdigest()  # noqa: S324


def parse_ids(raw: str | None) -> set[str]:
    """解析逗号分隔的 ID 列表."""
    if not raw:
        return set()
    return {part.strip() for part in str(raw).split(",") if part.strip()}


def build_form(params: dict[str, FeverParam]) -> dict[str, str]:
    """构造表单：True 写作 ``"1"``，False 和 None 省略."""
    form: dict[str, str] = {}
    for key, value in params.items():
        if value is None or value is False:
            continue
        form[key] = "1" if value is True else str(value)
    return form


def ensure_auth(response: dict[str, Any]) -> dict[str, Any]:
    """响应中 ``auth`` 为 0 时抛出 AuthError."""
    if response.get("auth") == 0:
        msg = "Fever API 认证失败"
        raise AuthError(msg)
    return response


class FeverClient:
    """Fever API 客户端，所有命令都 POST 到同一个端点."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = f"{base_url.rstrip('/')}/api/fever.php"
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """关闭客户端."""
        if self._owns_client:
            await self._client.aclose()

    async def request(self, **params: FeverParam) -> dict[str, Any]:
        """
        发送一条 Fever 命令.

        Args:
            **params: 命令参数，如 ``items=True, since_id=100``

        Returns:
            dict: 解析后的 JSON 响应

        Raises:
            NetworkError: 网络错误或非 2xx 响应
        """
        form = build_form({"api_key": self.api_key, **params})
        try:
            response = await self._client.post(
                self.endpoint, params={"api": ""}, data=form
            )
        except httpx.HTTPError as e:
            msg = f"Fever 请求失败: {e}"
            raise NetworkError(msg) from e

        if not response.is_success:
            msg = f"Fever 请求失败 ({response.status_code})"
            raise NetworkError(msg)

        try:
            data = response.json()
        except ValueError as e:
            msg = "Fever 响应不是有效的 JSON"
            raise NetworkError(msg) from e
        if not isinstance(data, dict):
            msg = "Fever 响应格式错误"
            raise NetworkError(msg)
        return data

    async def mark_item(self, item_id: str, as_: str) -> dict[str, Any]:
        """标记单篇文章：read / unread / saved / unsaved."""
        return ensure_auth(await self.request(mark="item", **{"as": as_}, id=item_id))
