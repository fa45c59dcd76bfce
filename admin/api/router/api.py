"""Admin API 라우터 (모든 API 통합)"""

import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from admin.api.handler.queue import QueueHandler
from admin.api.model.queue import (
    JobListResponse,
    JobResponse,
    QueueListResponse,
    RecurringListResponse,
)
from admin.exception import InvalidStateFilterError, JobNotFoundError
from database import get_db
from jobqueue import JobStateError, QueueNotFoundError, QueueRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

# 핸들러 인스턴스
queue_handler = QueueHandler()


# ============================================
# QUEUE API
# ============================================

@router.get("/api/queues", response_model=QueueListResponse, tags=["Queue"])
async def get_queues():
    """큐별 상태 카운트"""
    return QueueListResponse(items=await queue_handler.get_queues())


@router.get("/api/queues/{queue_name}/jobs", response_model=JobListResponse, tags=["Queue"])
async def get_queue_jobs(
    queue_name: str,
    state: str | None = Query(default=None, description="상태 필터 (waiting, active, completed, failed, delayed)"),
    page: int = Query(default=1, ge=1, description="페이지 번호"),
    size: int = Query(default=20, ge=1, le=100, description="페이지 크기"),
):
    """큐의 잡 목록 조회"""
    try:
        items, total = await queue_handler.get_jobs(queue_name, state=state, page=page, size=size)
    except QueueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateFilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JobListResponse.create(items, total, page, size)


@router.get("/api/queues/{queue_name}/recurring", response_model=RecurringListResponse, tags=["Queue"])
async def get_queue_recurring(queue_name: str):
    """큐의 반복 등록 조회"""
    try:
        return RecurringListResponse(items=await queue_handler.get_recurring(queue_name))
    except QueueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ============================================
# JOB API
# ============================================

@router.get("/api/jobs/{job_id}", response_model=JobResponse, tags=["Job"])
async def get_job(job_id: int):
    """잡 상세 조회"""
    try:
        return await queue_handler.get_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/api/jobs/{job_id}/retry", response_model=JobResponse, tags=["Job"])
async def retry_job(job_id: int):
    """실패한 잡 재시도"""
    try:
        return await queue_handler.retry(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================
# Health Check
# ============================================

@router.get("/health", tags=["Health"])
async def health_check():
    """서버 상태 확인 (liveness 체크)"""
    try:
        db = get_db()
        db_status = "connected" if db.pool.available > 0 else "busy"
    except Exception:
        db_status = "disconnected"

    return {
        "status": "healthy",
        "database": db_status,
        "queues": len(QueueRegistry.get_all()),
        "version": "1.0.0",
    }


@router.get("/ready", tags=["Health"])
async def ready_check():
    """DB 연결 상태 확인 (readiness 체크)"""
    try:
        db = get_db()
        async with db.transaction(readonly=True) as ctx:
            await ctx.fetch_val("SELECT 1")
        return {"status": "ready", "database": "ok"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": str(e)}
        )
