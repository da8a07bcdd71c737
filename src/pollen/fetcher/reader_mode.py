"""阅读模式正文提取."""

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor

import httpx
from pydantic import BaseModel
from trafilatura import extract

from pollen.config import Settings, get_settings

logger = logging.getLogger(__name__)

MAX_BYTES = 5 * 1024 * 1024


class ReaderResult(BaseModel):
    """阅读模式提取结果."""

    status: str  # ok | failed | timed_out
    html: str | None = None
    text: str | None = None
    error: str | None = None


class ReaderModeExtractor:
    """
    抓取文章页面并用 trafilatura 提取正文.

    整个过程受超时约束，超时返回 ``timed_out`` 而不是一直挂起。
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._timeout = settings.reader_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={
                "User-Agent": settings.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
            follow_redirects=True,
        )
        self._executor = ThreadPoolExecutor(max_workers=2)

    async def close(self) -> None:
        """关闭客户端."""
        if self._owns_client:
            await self._client.aclose()
        self._executor.shutdown(wait=False)

    async def fetch(self, url: str) -> ReaderResult:
        """抓取并提取正文."""
        try:
            return await asyncio.wait_for(self._fetch(url), timeout=self._timeout)
        except TimeoutError:
            logger.info(f"阅读模式请求超时: {url}")
            return ReaderResult(status="timed_out", error="阅读模式请求超时")
        except httpx.HTTPError as e:
            return ReaderResult(status="failed", error=f"无法加载页面: {e}")

    async def _fetch(self, url: str) -> ReaderResult:
        response = await self._client.get(url)

        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_BYTES:
            return ReaderResult(status="failed", error="页面过大")
        if response.status_code >= 400:
            return ReaderResult(status="failed", error=f"页面加载失败 ({response.status_code})")

        page = response.text
        if len(page) > MAX_BYTES:
            return ReaderResult(status="failed", error="页面过大")

        # trafilatura 是同步库，这里用线程池包装成异步
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._extract, page, str(response.url))

    def _extract(self, page: str, base_url: str) -> ReaderResult:
        html_content = extract(
            page,
            url=base_url,
            include_comments=False,
            include_tables=True,
            include_images=True,
            include_links=True,
            output_format="html",
        )
        text_content = extract(
            page,
            url=base_url,
            include_comments=False,
            include_tables=True,
            output_format="txt",
        )

        if not html_content and not text_content:
            return ReaderResult(status="failed", error="未找到可读正文")

        if text_content:
            text_content = re.sub(r"\n{3,}", "\n\n", text_content).strip()

        return ReaderResult(status="ok", html=html_content, text=text_content)
