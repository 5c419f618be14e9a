from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel, Field


class ProjectSummary(BaseModel):
    id: Optional[str] = None
    title: str
    description: str = ""
    technologies: List[str] = Field(default_factory=list)
    display_order: Optional[int] = None


class ProjectStats(BaseModel):
    id: str
    download_count: int = 0
    like_count: int = 0
    user_liked: bool = False
    download_enabled: bool = True


class LikeRequest(BaseModel):
    device_id: Optional[str] = None


_TRUTHY = {"1", "true", "yes", "on"}


def parse_bool(raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return default
    text = str(raw).strip().lower()
    if not text:
        return default
    return text in _TRUTHY


# Every recognised ai_instructions key and its one default.
INSTRUCTION_DEFAULTS: Dict[str, str] = {
    "assistant_name": "مساعد موسى الذكي",
    "system_prompt": (
        "أنت مساعد ذكاء اصطناعي ودود ومتعاون، مهمتك الأساسية هي التفاعل مع زوار الموقع "
        "وتقديم المساعدة والإجابة على استفساراتهم بخصوص المشاريع والخدمات التي يقدمها صاحب الموقع. "
        "شخصيتك ودودة، متعاونة، صبورة، وموجهة نحو الحلول."
    ),
    "contact_info": "للتواصل المباشر مع صاحب الموقع استخدم رابط الواتساب الموجود في الموقع.",
    "site_description": "موقع لعرض مشاريع الويب التي يطورها صاحب الموقع ونشرها للطلاب.",
    "separate_code_blocks": "true",
}


@dataclass(frozen=True)
class AssistantInstructions:
    """Typed view over the ``ai_instructions`` key/value rows."""

    assistant_name: str = INSTRUCTION_DEFAULTS["assistant_name"]
    system_prompt: str = INSTRUCTION_DEFAULTS["system_prompt"]
    contact_info: str = INSTRUCTION_DEFAULTS["contact_info"]
    site_description: str = INSTRUCTION_DEFAULTS["site_description"]
    separate_code_blocks: bool = True

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "AssistantInstructions":
        values: Dict[str, str] = {}
        for row in rows:
            key = str(row.get("instruction_key") or "").strip()
            if key not in INSTRUCTION_DEFAULTS:
                continue
            value = row.get("instruction_value")
            if value is None or not str(value).strip():
                continue
            values[key] = str(value).strip()
        return cls(
            assistant_name=values.get("assistant_name", INSTRUCTION_DEFAULTS["assistant_name"]),
            system_prompt=values.get("system_prompt", INSTRUCTION_DEFAULTS["system_prompt"]),
            contact_info=values.get("contact_info", INSTRUCTION_DEFAULTS["contact_info"]),
            site_description=values.get("site_description", INSTRUCTION_DEFAULTS["site_description"]),
            separate_code_blocks=parse_bool(
                values.get("separate_code_blocks"),
                parse_bool(INSTRUCTION_DEFAULTS["separate_code_blocks"], True),
            ),
        )


@dataclass(frozen=True)
class SiteSettings:
    """Generic ``advanced_settings`` bag, ordered by key."""

    entries: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "SiteSettings":
        collected: Dict[str, str] = {}
        for row in rows:
            key = str(row.get("setting_key") or "").strip()
            if not key:
                continue
            value = row.get("setting_value")
            collected[key] = "" if value is None else str(value)
        return cls(entries=tuple(sorted(collected.items())))
