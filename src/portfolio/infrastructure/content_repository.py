from __future__ import annotations

from typing import Any, List

from ..domain.models import AssistantInstructions, ProjectSummary, SiteSettings
from .gateway import PersistenceGateway, get_gateway

ACTIVE_STATUS = "active"


def _technologies(raw: Any) -> List[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(t).strip() for t in raw if t is not None and str(t).strip()]


class ContentRepository:
    """Read-only access to site content consumed by the chat assistant."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    def list_active_projects(self) -> List[ProjectSummary]:
        rows = self._gateway.select(
            "projects",
            filters={"project_status": ACTIVE_STATUS},
            order_by="display_order",
        )
        return [
            ProjectSummary(
                id=row.get("id"),
                title=str(row.get("title") or ""),
                description=str(row.get("description") or ""),
                technologies=_technologies(row.get("technologies")),
                display_order=row.get("display_order"),
            )
            for row in rows
        ]

    def load_instructions(self) -> AssistantInstructions:
        return AssistantInstructions.from_rows(self._gateway.select("ai_instructions"))

    def load_settings(self) -> SiteSettings:
        return SiteSettings.from_rows(self._gateway.select("advanced_settings", order_by="setting_key"))


_repo: ContentRepository | None = None


def get_content_repository() -> ContentRepository:
    global _repo
    if _repo is None:
        _repo = ContentRepository(get_gateway())
    return _repo
