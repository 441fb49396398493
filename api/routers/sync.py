# WORKFLOW: Bulk TARIC sync endpoints.
# Used by: ERP administration screens and operators loading new TARIC exports
# Endpoints:
# 1. GET /sync/status, /sync/history, /sync/files - progress, past runs and local input files
# 2. POST /sync/trigger - import from the configured data directory
# 3. POST /sync/upload - save uploaded workbooks (or a ZIP) and import them
# 4. POST /sync/cancel - always 501, an in-flight sync cannot be cancelled
#
# Trigger flow: auth middleware -> conflict check (409, nothing written) -> sync log created
# -> background task runs the pipeline -> client polls /sync/status

import logging
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from api.schemas.request import SyncTriggerRequest
from api.schemas.response import FileInfo, SyncLogPage, SyncStarted, SyncState, SyncStatusOut
from core.exceptions import SyncConflictError, SyncNotSupported
from db.session import get_db
from etl.ingest_zip import (
    DUTIES,
    NOMENCLATURE,
    extract_zip_file,
    get_file_status,
    has_local_files,
    save_uploaded_file,
)
from etl.sync_pipeline import SyncInputs, SyncPipeline, get_sync_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def _created_by(request: Request) -> Optional[str]:
    user = getattr(request.state, "user", None) or {}
    return user.get("sub")


async def _run_in_background(pipeline: SyncPipeline, sync_id: str, inputs: Optional[SyncInputs],
                             enable_translation: bool) -> None:
    # The pipeline already marked the log failed; keep the error out of the server loop
    try:
        await pipeline.execute(sync_id, inputs, enable_translation)
    except Exception as e:
        logger.error(f"Background sync {sync_id} ended with error: {e}")


def _conflict(e: SyncConflictError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/status", response_model=SyncStatusOut)
async def get_status(db: Session = Depends(get_db), pipeline: SyncPipeline = Depends(get_sync_pipeline)):
    try:
        return pipeline.get_sync_status(db)
    except Exception as e:
        logger.error(f"Sync status failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Sync status failed: {e}")


@router.get("/history", response_model=SyncLogPage)
async def get_history(
    status_filter: Optional[SyncState] = Query(None, alias="status"),
    sync_type: Optional[str] = Query(None, pattern=r"^(full|incremental)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    pipeline: SyncPipeline = Depends(get_sync_pipeline),
):
    try:
        items, total = pipeline.get_sync_history(
            db, status=status_filter.value if status_filter else None,
            sync_type=sync_type, page=page, page_size=page_size,
        )
        return SyncLogPage(items=items, total=total, page=page, page_size=page_size)
    except Exception as e:
        logger.error(f"Sync history failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Sync history failed: {e}")


@router.get("/files", response_model=Dict[str, FileInfo])
async def get_files():
    return get_file_status()


@router.post("/trigger", response_model=SyncStarted, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[SyncTriggerRequest] = None,
    pipeline: SyncPipeline = Depends(get_sync_pipeline),
):
    """
    Start an import of the workbooks in the data directory.

    Returns 409 when another sync is running and 400 when there is nothing to import.
    """
    body = body or SyncTriggerRequest()
    if not has_local_files():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No TARIC data files available, upload files first",
        )
    try:
        sync_id = pipeline.start(sync_type=body.sync_type, data_source="excel", created_by=_created_by(request))
    except SyncConflictError as e:
        raise _conflict(e)
    except Exception as e:
        logger.error(f"Sync trigger failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Sync trigger failed: {e}")

    background_tasks.add_task(_run_in_background, pipeline, sync_id, None, body.enable_translation)
    return SyncStarted(sync_id=sync_id, message="Sync started, poll /sync/status for progress")


@router.post("/upload", response_model=SyncStarted, status_code=status.HTTP_202_ACCEPTED)
async def upload_and_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    nomenclature: Optional[UploadFile] = File(None),
    duties: Optional[UploadFile] = File(None),
    archive: Optional[UploadFile] = File(None, description="ZIP holding the nomenclature and duties workbooks"),
    enable_translation: bool = True,
    pipeline: SyncPipeline = Depends(get_sync_pipeline),
):
    """Save uploaded workbooks into the data directory, then import them in the background."""
    if pipeline.coordinator.current is not None:
        raise _conflict(SyncConflictError(pipeline.coordinator.current.sync_id))

    try:
        contents: Dict[str, bytes] = {}
        if archive is not None:
            contents.update(extract_zip_file(await archive.read()))
        if nomenclature is not None:
            contents[NOMENCLATURE] = await nomenclature.read()
        if duties is not None:
            contents[DUTIES] = await duties.read()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not contents:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload a nomenclature workbook, a duties workbook or a ZIP archive",
        )

    names = [f.filename for f in (archive, nomenclature, duties) if f is not None and f.filename]
    try:
        sync_id = pipeline.start(sync_type="full", data_source="upload",
                                 file_name=", ".join(names) or None, created_by=_created_by(request))
    except SyncConflictError as e:
        raise _conflict(e)

    try:
        for kind, content in contents.items():
            save_uploaded_file(kind, content)
    except OSError as e:
        # Storing failed after the slot was claimed; run the sync anyway from the in-memory buffers
        logger.warning(f"Upload for sync {sync_id} not stored locally: {e}")

    inputs = SyncInputs(nomenclature=contents.get(NOMENCLATURE), duties=contents.get(DUTIES))
    background_tasks.add_task(_run_in_background, pipeline, sync_id, inputs, enable_translation)
    return SyncStarted(
        sync_id=sync_id,
        message="Upload stored, sync started",
        files={kind: kind in contents for kind in (NOMENCLATURE, DUTIES)},
    )


@router.post("/cancel")
async def cancel_sync(pipeline: SyncPipeline = Depends(get_sync_pipeline)):
    try:
        pipeline.cancel_sync()
    except SyncNotSupported as e:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(e))
