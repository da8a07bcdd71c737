"""Pollen 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pollen import __version__
from pollen.api import articles, feeds, opml, sync
from pollen.api.deps import build_services
from pollen.config import get_settings
from pollen.errors import (
    AuthError,
    NetworkError,
    NotSupportedError,
    ParseError,
    RefreshFailedError,
)
from pollen.models.database import dispose_databases
from pollen.scheduler import register

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    logger.info("正在初始化数据库和阅读账户...")
    services = await build_services(app_settings)
    app.state.services = services

    logger.info("正在启动后台刷新...")
    scheduler = AsyncIOScheduler()
    register(scheduler, services.background, app_settings)
    scheduler.start()

    logger.info("Pollen 启动完成！")
    yield

    logger.info("正在关闭...")
    scheduler.shutdown(wait=False)
    await services.close()
    await dispose_databases()
    logger.info("Pollen 已关闭")


app = FastAPI(
    title="Pollen",
    description="RSS/Atom 订阅源同步与对账引擎",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotSupportedError)
async def not_supported_handler(request: Request, exc: NotSupportedError) -> JSONResponse:
    return JSONResponse(status_code=405, content={"detail": str(exc)})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(ParseError)
async def parse_error_handler(request: Request, exc: ParseError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NetworkError)
async def network_error_handler(request: Request, exc: NetworkError) -> JSONResponse:
    logger.warning(f"上游请求失败: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(RefreshFailedError)
async def refresh_failed_handler(request: Request, exc: RefreshFailedError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# 注册路由
app.include_router(articles.router)
app.include_router(feeds.router)
app.include_router(sync.router)
app.include_router(opml.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "Pollen",
        "version": __version__,
        "description": "RSS/Atom 订阅源同步与对账引擎",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pollen.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
