"""刷新与账户 API."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pollen.api.deps import Services, get_services
from pollen.core.coordinator import RefreshContext

router = APIRouter(prefix="/api/sync", tags=["sync"])


class RefreshRequest(BaseModel):
    reason: Literal["manual", "foreground", "background"] = "manual"
    feed_id: str | None = None


class ActiveAccountRequest(BaseModel):
    account_id: str


@router.post("")
async def trigger_refresh(
    body: RefreshRequest | None = None,
    services: Services = Depends(get_services),
) -> dict:
    """触发刷新；被节流或熔断跳过时 skipped 为真."""
    body = body or RefreshRequest()
    result = await services.coordinator.refresh(
        RefreshContext(reason=body.reason, selected_feed_id=body.feed_id)
    )
    if result is None:
        return {"skipped": True, "feeds_used": 0, "new_articles": 0}
    return {
        "skipped": False,
        "feeds_used": len(result.feeds_used),
        "new_articles": result.new_articles_count,
    }


@router.get("/status")
async def get_refresh_status(services: Services = Depends(get_services)) -> dict:
    """当前刷新状态."""
    coordinator = services.coordinator
    return {
        "status": coordinator.status,
        "in_flight": coordinator.in_flight,
        "last_refresh_at": coordinator.last_refresh_at,
        "last_error": coordinator.last_error,
        "blocked_until_manual": coordinator.blocked_until_manual,
        "active_account": services.registry.active_account_id,
    }


@router.post("/background")
async def run_background(services: Services = Depends(get_services)) -> dict:
    """立即执行一次后台刷新任务."""
    result = await services.background.run()
    return {"result": result.value}


@router.get("/marker")
async def consume_marker(services: Services = Depends(get_services)) -> dict:
    """读取并清除后台刷新的新文章标记."""
    marker = await services.background.consume_marker()
    return {"marker": marker.model_dump() if marker else None}


@router.get("/accounts")
async def list_accounts(services: Services = Depends(get_services)) -> dict:
    """账户列表（不返回密钥）."""
    return {
        "active": services.registry.active_account_id,
        "items": [
            {"id": a.id, "kind": a.kind} for a in services.registry.accounts
        ],
    }


@router.put("/accounts/active")
async def set_active_account(
    body: ActiveAccountRequest, services: Services = Depends(get_services)
) -> dict:
    """切换当前账户."""
    services.registry.set_active(body.account_id)
    return {"active": body.account_id}
