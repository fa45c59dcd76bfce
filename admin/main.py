"""Admin API 서버 진입점"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config import load_config
from database.registry import DatabaseRegistry
from jobqueue import QueueRegistry
from admin.api.router.api import router

logger = logging.getLogger(__name__)


def create_app(config: dict[str, Any] | None = None, manage_resources: bool = True) -> FastAPI:
    """
    FastAPI 앱 생성

    Args:
        config: 전체 설정 (None이면 config/에서 로드)
        manage_resources: True면 lifespan에서 DB/큐 레지스트리를 초기화하고 종료 시 정리
                          (main.py에서 다른 컴포넌트와 함께 띄울 때는 False)
    """
    config = config if config is not None else load_config()
    admin_config = config.get('admin', {})

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """앱 생명주기 관리"""
        if manage_resources:
            # 지정된 DB만 초기화
            await DatabaseRegistry.init_from_config(config, [admin_config.get('database', 'default')])
            QueueRegistry.init_from_config(config)
            logger.info("Database and queues initialized")

        yield

        if manage_resources:
            await QueueRegistry.close_all()
            await DatabaseRegistry.close_all()
            logger.info("Database closed")

    app = FastAPI(
        title="MeetJob Admin API",
        description="백그라운드 잡 큐 조회 및 운영 API",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS 설정
    cors_config = admin_config.get('cors', {})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_config.get('origins', ['*']),
        allow_credentials=cors_config.get('allow_credentials', True),
        allow_methods=cors_config.get('allow_methods', ['*']),
        allow_headers=cors_config.get('allow_headers', ['*']),
    )

    # API 라우터 등록
    app.include_router(router)

    return app


if __name__ == "__main__":
    import uvicorn

    from common.logging import setup_logging_from_config

    config = load_config()
    setup_logging_from_config(config)
    admin_config = config.get('admin', {})

    uvicorn.run(
        create_app(config),
        host=admin_config.get('host', '0.0.0.0'),
        port=admin_config.get('port', 8080),
        log_config=None,
    )
