"""
Insight Desk API - 主入口
商業智慧對話服務：檔案匯入、AI 分析與對話歷史
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from backend.middleware import register_exception_handlers
from backend.routers import auth_router, chat_router, file_router
from backend.utils.log_filters import add_log_filter
from backend.utils.logger import get_logger

logger = get_logger(__name__)

# 前端會輪詢這些路由，不寫入 access log
POLLING_ROUTES = ("/api/chat/history", "/api/chat/state", "/health")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Insight Desk API",
        description="商業智慧對話服務",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(auth_router.router, prefix="/api/auth", tags=["Auth - 帳號"])
    app.include_router(file_router.router, prefix="/api/files", tags=["Files - 檔案管理"])
    app.include_router(chat_router.router, prefix="/api/chat", tags=["Chat - 對話"])

    @app.on_event("startup")
    async def startup_event():
        for path in POLLING_ROUTES:
            add_log_filter("uvicorn.access", path)

        logger.info("=" * 60)
        logger.info("🚀 Insight Desk API 啟動成功")
        logger.info(f"🧠 LLM: {config.LLM_MODEL} @ {config.LLM_API_URL}")
        logger.info(f"💾 Store backend: {config.STORE_BACKEND}")
        logger.info(f"🌐 API 文件：http://localhost:{config.API_PORT}/docs")
        logger.info("=" * 60)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.API_PORT)
