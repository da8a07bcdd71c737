"""文章 API."""

from datetime import UTC, datetime, timedelta
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from pollen.api.deps import Services, get_services, get_strategy
from pollen.reader.base import ReaderStrategy
from pollen.store.articles import ArticlePage

router = APIRouter(prefix="/api/articles", tags=["articles"])


class ReadRequest(BaseModel):
    read: bool


class SavedRequest(BaseModel):
    saved: bool


class MarkManyRequest(BaseModel):
    ids: list[str]
    read: bool = True


class SaveUrlRequest(BaseModel):
    url: str


def _page_response(result: ArticlePage, page: int, limit: int) -> dict:
    return {
        "total": result.total,
        "page": page,
        "limit": limit,
        "items": [a.model_dump() for a in result.articles],
    }


@router.get("")
async def list_articles(
    filter: Literal["unread", "saved", "all"] = Query("all", description="筛选条件"),
    feed_id: str | None = Query(None, description="按订阅源筛选"),
    folder_id: str | None = Query(None, description="按文件夹筛选"),
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(20, ge=1, le=100, description="每页数量"),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """分页获取文章列表（按时间倒序）."""
    result = await strategy.articles.list_page(
        feed_id=feed_id,
        folder_id=folder_id,
        unread_only=filter == "unread",
        saved_only=filter == "saved",
        page=page,
        page_size=limit,
    )
    return _page_response(result, page, limit)


@router.get("/search")
async def search_articles(
    q: str = Query(..., min_length=1, description="搜索关键词"),
    feed_id: str | None = Query(None),
    folder_id: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """全文搜索文章."""
    result = await strategy.articles.search_page(
        query=q, feed_id=feed_id, folder_id=folder_id, page=page, page_size=limit
    )
    return _page_response(result, page, limit)


@router.get("/unread-counts")
async def unread_counts(
    feed_id: str | None = Query(None),
    folder_id: str | None = Query(None),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """未读数：总数和各订阅源."""
    return {
        "total": await strategy.articles.get_unread_count(feed_id, folder_id),
        "by_feed": await strategy.articles.get_unread_counts_by_feed(),
    }


@router.post("/mark-read")
async def mark_many_read(
    body: MarkManyRequest,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """批量标记已读/未读."""
    await strategy.articles.set_many_read(body.ids, body.read)
    return {"count": len(body.ids), "read": body.read}


@router.post("/mark-all-read")
async def mark_all_read(
    feed_id: str | None = Query(None),
    folder_id: str | None = Query(None),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """将范围内全部文章标记为已读."""
    await strategy.articles.set_all_read(feed_id, folder_id)
    return {"success": True}


@router.post("/save")
async def save_for_later(
    body: SaveUrlRequest,
    services: Services = Depends(get_services),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """保存任意网页为稍后阅读."""
    if not body.url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="只支持 http(s) 链接")
    result = await services.saver_for(strategy).save(body.url)
    return {"status": result.status, "id": result.id}


@router.delete("")
async def delete_old_articles(
    older_than_days: int = Query(30, ge=1, description="删除多少天之前的文章"),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """清理旧文章."""
    threshold = datetime.now(UTC) - timedelta(days=older_than_days)
    deleted = await strategy.articles.delete_older_than(int(threshold.timestamp() * 1000))
    return {"deleted": deleted}


@router.get("/{article_id}")
async def get_article(
    article_id: str,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """获取文章详情."""
    article = await strategy.articles.get(article_id)
    if article is None:
        raise HTTPException(status_code=404, detail="文章不存在")
    return article.model_dump()


@router.get("/{article_id}/reader")
async def get_reader_view(
    article_id: str,
    services: Services = Depends(get_services),
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """阅读模式：抓取原文并提取正文."""
    article = await strategy.articles.get(article_id)
    if article is None:
        raise HTTPException(status_code=404, detail="文章不存在")
    if not article.link:
        raise HTTPException(status_code=400, detail="文章没有原文链接")

    result = await services.reader_mode.fetch(article.link)
    return {"id": article_id, **result.model_dump()}


@router.patch("/{article_id}/read")
async def set_read(
    article_id: str,
    body: ReadRequest,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """标记已读/未读."""
    if await strategy.articles.get(article_id) is None:
        raise HTTPException(status_code=404, detail="文章不存在")
    await strategy.articles.set_read(article_id, body.read)
    return {"id": article_id, "read": body.read}


@router.patch("/{article_id}/saved")
async def set_saved(
    article_id: str,
    body: SavedRequest,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """收藏/取消收藏."""
    if await strategy.articles.get(article_id) is None:
        raise HTTPException(status_code=404, detail="文章不存在")
    await strategy.articles.set_saved(article_id, body.saved)
    return {"id": article_id, "saved": body.saved}
