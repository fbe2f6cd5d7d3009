"""REST API routes for Mergebox."""

import logging
import math
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from mergebox.core.errors import SubmissionError
from mergebox.services.category_store import ScanResult
from mergebox.services.job_manager import JobManager, job_manager
from mergebox.services.qbittorrent import ScanError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["media"])

SCAN_ERROR_STATUS = {
    ScanError.UNAVAILABLE: (503, "qBittorrent is unavailable"),
    ScanError.BAD_RESPONSE: (502, "qBittorrent returned an unexpected response"),
    ScanError.UNKNOWN_CATEGORY: (404, "Unknown category"),
}


def get_job_manager() -> JobManager:
    return job_manager


# Request/Response Models
class CategoryResponse(BaseModel):
    id: str
    name: str
    path: str


class CategoriesResponse(BaseModel):
    categories: list[CategoryResponse]


class MergeGroupResponse(BaseModel):
    """A torrent whose video parts can be concatenated."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    video_files: list[str]
    all_files: list[str]
    available: bool
    mergeable: bool
    warning: str | None
    output_path: str
    output_exists: bool


class AudioTrackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    path: str
    label: str


class RemuxItemResponse(BaseModel):
    """One video with the external audio tracks matched to it."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    video_file: str
    audio_files: list[str]
    audio_tracks: list[AudioTrackResponse]
    output_path: str
    available: bool
    remuxable: bool
    warning: str | None
    output_exists: bool


class RemuxGroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    path: str
    items: list[RemuxItemResponse]
    available: bool
    warning: str | None


class MediaListResponse(BaseModel):
    category: str
    groups: list[MergeGroupResponse]


class RemuxListResponse(BaseModel):
    category: str
    groups: list[RemuxGroupResponse]


class MergeRequest(BaseModel):
    """Request model for starting a merge. Missing fields are reported as ``missing-id``."""

    id: str | None = None
    category: str | None = None


class RemuxRequest(BaseModel):
    """Request model for starting a remux of one item or of a whole group."""

    id: str | None = None
    category: str | None = None
    mode: Literal["single", "all"] = "single"
    threads: float | None = None


class JobStartedResponse(BaseModel):
    status: str = "started"
    job_id: str
    channel: str


def _require_category(category: str | None) -> str:
    if not category:
        raise HTTPException(status_code=400, detail="Missing category")
    return category


def _raise_scan_error(category: str, result: ScanResult) -> None:
    status_code, detail = SCAN_ERROR_STATUS[result.error]
    logger.warning(f"Listing for category '{category}' failed: {result.error.value}")
    raise HTTPException(status_code=status_code, detail=detail)


def _rejected(error: SubmissionError) -> HTTPException:
    return HTTPException(
        status_code=400, detail={"reason": error.reason, "message": error.message}
    )


@router.get("/categories", response_model=CategoriesResponse)
async def list_categories(manager: JobManager = Depends(get_job_manager)) -> dict:
    """List qBittorrent categories."""
    categories = await manager.client.get_categories()
    if categories is None:
        raise HTTPException(status_code=503, detail="qBittorrent is unavailable")
    return {"categories": categories}


@router.get("/media", response_model=MediaListResponse)
async def list_media(
    category: str | None = None, manager: JobManager = Depends(get_job_manager)
) -> MediaListResponse:
    """Scan a category and list its merge groups."""
    category = _require_category(category)
    result = await manager.store.scan(category)
    if not result.ok:
        _raise_scan_error(category, result)
    groups = [MergeGroupResponse.model_validate(g) for g in result.snapshot.merge.values()]
    return MediaListResponse(category=category, groups=groups)


@router.get("/remux", response_model=RemuxListResponse)
async def list_remux(
    category: str | None = None, manager: JobManager = Depends(get_job_manager)
) -> RemuxListResponse:
    """Scan a category and list its remux groups."""
    category = _require_category(category)
    result = await manager.store.scan(category)
    if not result.ok:
        _raise_scan_error(category, result)
    groups = [RemuxGroupResponse.model_validate(g) for g in result.snapshot.remux.values()]
    return RemuxListResponse(category=category, groups=groups)


@router.post("/merge", response_model=JobStartedResponse)
async def start_merge(
    request: MergeRequest, manager: JobManager = Depends(get_job_manager)
) -> JobStartedResponse:
    """Start merging a group's video parts."""
    try:
        channel = manager.submit_merge(request.category, request.id)
    except SubmissionError as e:
        raise _rejected(e) from e
    return JobStartedResponse(job_id=channel, channel=channel)


@router.post("/remux", response_model=JobStartedResponse)
async def start_remux(
    request: RemuxRequest, manager: JobManager = Depends(get_job_manager)
) -> JobStartedResponse:
    """Start remuxing one item, or every eligible item of a group with ``mode=all``."""
    concurrency = None
    if request.threads is not None and math.isfinite(request.threads):
        concurrency = int(request.threads)
    try:
        channel = manager.submit_remux(request.category, request.id, request.mode, concurrency)
    except SubmissionError as e:
        raise _rejected(e) from e
    return JobStartedResponse(job_id=channel, channel=channel)
