from __future__ import annotations

from typing import List, Optional
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status

from ...domain.errors import PersistenceError
from ...domain.models import LikeRequest, ProjectStats, ProjectSummary
from ...infrastructure.content_repository import ContentRepository, get_content_repository
from ...services.project_interactions import (
    DownloadsDisabled,
    ProjectInteractions,
    ProjectNotFound,
    device_fingerprint,
    get_project_interactions,
)

LOG = logging.getLogger("portfolio.projects")

router = APIRouter(prefix="/projects", tags=["projects"])


def _not_found(project_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {project_id} not found")


def _storage_failure(exc: PersistenceError) -> HTTPException:
    LOG.warning("project_storage_failed: %s", exc.details)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.details)


def _request_device(request: Request) -> str:
    return device_fingerprint(
        request.headers.get("user-agent", ""),
        request.headers.get("accept-language", ""),
    )


@router.get("", response_model=List[ProjectSummary])
def list_projects(content: ContentRepository = Depends(get_content_repository)):
    try:
        return content.list_active_projects()
    except PersistenceError as exc:
        raise _storage_failure(exc)


@router.get("/{project_id}/stats", response_model=ProjectStats)
def project_stats(
    project_id: str,
    device_id: Optional[str] = Query(None),
    interactions: ProjectInteractions = Depends(get_project_interactions),
):
    try:
        return interactions.stats(project_id, device_id)
    except ProjectNotFound:
        raise _not_found(project_id)
    except PersistenceError as exc:
        raise _storage_failure(exc)


@router.post("/{project_id}/download", response_model=ProjectStats)
def download_project(
    project_id: str,
    interactions: ProjectInteractions = Depends(get_project_interactions),
):
    try:
        return interactions.register_download(project_id)
    except ProjectNotFound:
        raise _not_found(project_id)
    except DownloadsDisabled:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Downloads are disabled for this project")
    except PersistenceError as exc:
        raise _storage_failure(exc)


@router.post("/{project_id}/like", response_model=ProjectStats)
def like_project(
    project_id: str,
    request: Request,
    payload: Optional[LikeRequest] = Body(None),
    interactions: ProjectInteractions = Depends(get_project_interactions),
):
    device_id = (payload.device_id if payload else None) or _request_device(request)
    try:
        return interactions.register_like(project_id, device_id)
    except ProjectNotFound:
        raise _not_found(project_id)
    except PersistenceError as exc:
        raise _storage_failure(exc)
