"""订阅源与文件夹 API."""

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from pollen.api.deps import get_strategy
from pollen.reader.base import ReaderStrategy

router = APIRouter(prefix="/api", tags=["feeds"])


class FolderRequest(BaseModel):
    title: str


class AddFeedRequest(BaseModel):
    url: str


class FeedFolderRequest(BaseModel):
    folder_id: str | None = None


@router.get("/feeds")
async def list_feeds(strategy: ReaderStrategy = Depends(get_strategy)) -> dict:
    """获取订阅源和文件夹."""
    hydrated = await strategy.hydrate()
    counts = await strategy.articles.get_unread_counts_by_feed()
    return {
        "total": len(hydrated.feeds),
        "feeds": [
            {**f.model_dump(), "unread_count": counts.get(f.id, 0)} for f in hydrated.feeds
        ],
        "folders": [f.model_dump() for f in hydrated.folders],
    }


@router.post("/feeds")
async def add_feed(
    body: AddFeedRequest,
    response: Response,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """
    按地址添加订阅源.

    新增返回 201；已订阅返回 200 和已有订阅源；页面声明多个订阅源时
    返回 200 和候选列表，由调用方选择后再次提交。
    """
    result = await strategy.feeds.add(body.url)
    if result.status == "added":
        response.status_code = 201
    return {
        "status": result.status,
        "feed": result.feed.model_dump() if result.feed else None,
        "new_articles": result.new_articles_count,
        "candidates": [
            {"url": c.url, "title": c.title, "kind": c.kind} for c in result.candidates
        ],
    }


@router.get("/feeds/{feed_id}")
async def get_feed(feed_id: str, strategy: ReaderStrategy = Depends(get_strategy)) -> dict:
    """获取订阅源详情."""
    hydrated = await strategy.hydrate(feed_id)
    if not hydrated.feeds:
        raise HTTPException(status_code=404, detail="订阅源不存在")
    return hydrated.feeds[0].model_dump()


@router.delete("/feeds/{feed_id}")
async def remove_feed(feed_id: str, strategy: ReaderStrategy = Depends(get_strategy)) -> dict:
    """删除订阅源及其文章."""
    await strategy.feeds.remove(feed_id)
    return {"id": feed_id, "deleted": True}


@router.put("/feeds/{feed_id}/folder")
async def set_feed_folder(
    feed_id: str,
    body: FeedFolderRequest,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """移动订阅源到文件夹，folder_id 为空表示移出."""
    await strategy.folders.set_feed_folder(feed_id, body.folder_id)
    return {"id": feed_id, "folder_id": body.folder_id}


@router.get("/folders")
async def list_folders(strategy: ReaderStrategy = Depends(get_strategy)) -> dict:
    """获取文件夹列表."""
    folders = await strategy.folders.list()
    return {"items": [f.model_dump() for f in folders]}


@router.post("/folders", status_code=201)
async def create_folder(
    body: FolderRequest, strategy: ReaderStrategy = Depends(get_strategy)
) -> dict:
    """新建文件夹."""
    folder = await strategy.folders.create(body.title)
    return folder.model_dump()


@router.patch("/folders/{folder_id}")
async def rename_folder(
    folder_id: str,
    body: FolderRequest,
    strategy: ReaderStrategy = Depends(get_strategy),
) -> dict:
    """重命名文件夹."""
    await strategy.folders.rename(folder_id, body.title)
    return {"id": folder_id, "title": body.title.strip()}


@router.delete("/folders/{folder_id}")
async def delete_folder(
    folder_id: str, strategy: ReaderStrategy = Depends(get_strategy)
) -> dict:
    """删除文件夹（订阅源保留，变为未分组）."""
    await strategy.folders.delete(folder_id)
    return {"id": folder_id, "deleted": True}
