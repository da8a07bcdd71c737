"""OPML 导入导出 API."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from pollen.api.deps import get_strategy
from pollen.core.opml import build_export_filename, build_opml
from pollen.errors import NotSupportedError
from pollen.reader.base import ReaderStrategy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/opml", tags=["opml"])


@router.post("/import")
async def import_opml(
    request: Request,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """导入 OPML（请求体为 OPML 文本）."""
    if not strategy.supports_opml_import:
        msg = f"{strategy.kind} 账户不支持导入 OPML"
        raise NotSupportedError(msg)

    body = await request.body()
    if not body.strip():
        raise HTTPException(status_code=400, detail="OPML 内容为空")

    def log_progress(current: int, total: int) -> None:
        logger.info(f"OPML 导入进度: {current}/{total}")

    feeds = await strategy.import_opml(body, on_progress=log_progress)
    return {
        "imported": len(feeds),
        "feeds": [{"id": f.id, "title": f.title, "url": f.url} for f in feeds],
    }


@router.get("/export")
async def export_opml(strategy: ReaderStrategy = Depends(get_strategy)) -> Response:
    """导出全部订阅为 OPML 文件."""
    feeds = await strategy.feeds.list()
    content = build_opml(feeds, title="Pollen subscriptions")
    filename = build_export_filename()
    return Response(
        content=content,
        media_type="text/x-opml",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
