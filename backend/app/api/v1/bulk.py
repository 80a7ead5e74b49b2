# bulk 标签操作 + 标签清理：预览 / 配额闸门 / 入队 / 回滚

from __future__ import annotations
import logging
from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.v1.deps import container, current_shop, plan_for
from app.core.container import AppContainer
from app.db.session import get_db
from app.integrations.shopify.errors import BulkOperationFailedError, BulkPollTimeoutError, ShopifyError
from app.orchestration.bulk_jobs import (
    BackupNotFoundError,
    dry_run_tag_operation,
    revert_job,
    start_bulk_job,
    start_cleanup_job,
)
from app.services import usage_service


logger = logging.getLogger(__name__)

router = APIRouter(tags=["bulk"])


# ---------- 请求体 ----------
class BulkTagRequest(BaseModel):
    resourceType: Literal["products", "customers", "orders"] = "products"
    operation: Literal["replace", "add", "remove"] = "replace"
    findTag: str = ""
    replaceTag: str = ""


class BulkExecuteRequest(BulkTagRequest):
    affectedCount: int = Field(default=0, ge=0, description="dry-run 返回的 count，用于配额预检")


class CleanerRequest(BaseModel):
    tagsToRemove: List[str] = Field(min_length=1)
    affectedCount: int = Field(default=0, ge=0)


def _quota_gate(db: Session, c: AppContainer, shop: str, count: int):
    check = usage_service.check_quota(db, shop, count, plan_for(c, shop))
    if check.allowed:
        return None
    return JSONResponse(
        status_code=429,
        content={
            "status": "quota_exceeded",
            "message": check.message,
            "current": check.current,
            "limit": check.limit,
        },
    )


@router.post("/bulk/dry-run")
def bulk_dry_run(body: BulkTagRequest, shop: str = Depends(current_shop), c: AppContainer = Depends(container)):
    try:
        result = dry_run_tag_operation(
            c.driver_for(shop),
            resource_type=body.resourceType,
            operation=body.operation,
            find_tag=body.findTag,
            replace_tag=body.replaceTag,
        )
    except BulkPollTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except (BulkOperationFailedError, ShopifyError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "status": "preview",
        "count": result["count"],
        "preview": result["preview"],
        "resourceType": body.resourceType,
        "operation": body.operation,
        "findTag": body.findTag,
        "replaceTag": body.replaceTag,
    }


@router.post("/bulk/jobs")
def bulk_execute(
    body: BulkExecuteRequest,
    shop: str = Depends(current_shop),
    db: Session = Depends(get_db),
    c: AppContainer = Depends(container),
):
    refused = _quota_gate(db, c, shop, body.affectedCount)
    if refused is not None:
        return refused
    try:
        job_id = start_bulk_job(
            shop=shop,
            resource_type=body.resourceType,
            operation=body.operation,
            find_tag=body.findTag,
            replace_tag=body.replaceTag,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"status": "queued", "jobId": job_id}


@router.post("/bulk/jobs/{job_id}/revert")
def bulk_revert(job_id: str, shop: str = Depends(current_shop)):
    try:
        return revert_job(shop, job_id)
    except BackupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ShopifyError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/cleaner/jobs")
def cleaner_execute(
    body: CleanerRequest,
    shop: str = Depends(current_shop),
    db: Session = Depends(get_db),
    c: AppContainer = Depends(container),
):
    refused = _quota_gate(db, c, shop, body.affectedCount)
    if refused is not None:
        return refused
    try:
        job_id = start_cleanup_job(shop=shop, tags_to_remove=body.tagsToRemove)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "status": "queued",
        "count": len(body.tagsToRemove),
        "jobId": job_id,
        "message": "Tag cleanup job queued successfully. Check Activity Logs for completion status.",
    }
