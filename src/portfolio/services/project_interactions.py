from __future__ import annotations

import base64
import logging
from typing import Optional

from ..domain.errors import ConflictError
from ..domain.models import ProjectStats, parse_bool
from ..infrastructure.events import publish_event
from ..infrastructure.gateway import PersistenceGateway, get_gateway

LOG = logging.getLogger("portfolio.projects")

LIKES_TABLE = "project_likes"


class ProjectNotFound(KeyError):
    pass


class DownloadsDisabled(Exception):
    pass


def device_fingerprint(*parts: object) -> str:
    """Stable short device id: base64 of the ``|``-joined parts, first 32 chars."""
    joined = "|".join("" if p is None else str(p) for p in parts)
    return base64.b64encode(joined.encode("utf-8")).decode("ascii")[:32]


class ProjectInteractions:
    """Download and like counters for published projects."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    def _project(self, project_id: str) -> dict:
        rows = self._gateway.select("projects", filters={"id": project_id}, limit=1)
        if not rows:
            raise ProjectNotFound(project_id)
        return rows[0]

    def _has_liked(self, project_id: str, device_id: Optional[str]) -> bool:
        if not device_id:
            return False
        rows = self._gateway.select(
            LIKES_TABLE,
            filters={"project_id": project_id, "device_id": device_id},
            limit=1,
        )
        return bool(rows)

    def stats(self, project_id: str, device_id: Optional[str] = None) -> ProjectStats:
        row = self._project(project_id)
        return ProjectStats(
            id=project_id,
            download_count=int(row.get("download_count") or 0),
            like_count=int(row.get("like_count") or 0),
            user_liked=self._has_liked(project_id, device_id),
            download_enabled=parse_bool(row.get("download_enabled"), True),
        )

    def register_download(self, project_id: str) -> ProjectStats:
        row = self._project(project_id)
        if not parse_bool(row.get("download_enabled"), True):
            raise DownloadsDisabled(project_id)
        self._gateway.increment("projects", project_id, "download_count")
        return self.stats(project_id)

    def register_like(self, project_id: str, device_id: str) -> ProjectStats:
        """Count one like per device; repeated likes leave the counter alone."""
        self._project(project_id)
        if not self._has_liked(project_id, device_id):
            try:
                self._gateway.insert(
                    LIKES_TABLE,
                    {"project_id": project_id, "device_id": device_id, "ip_address": ""},
                )
            except ConflictError:
                LOG.info("project_like_duplicate", extra={"project_id": project_id})
            else:
                self._gateway.increment("projects", project_id, "like_count")
                publish_event("project.liked", {"project_id": project_id})
        return self.stats(project_id, device_id)


_interactions: ProjectInteractions | None = None


def get_project_interactions() -> ProjectInteractions:
    global _interactions
    if _interactions is None:
        _interactions = ProjectInteractions(get_gateway())
    return _interactions
