"""Pure rendering of the instruction text sent to the completion service.

Nothing in this module performs I/O: identical inputs always produce a
byte-identical prompt.
"""

from __future__ import annotations

from typing import List, Sequence

from ..domain.chat_models import ChatMessage
from ..domain.models import AssistantInstructions, ProjectSummary, SiteSettings

CONTEXT_WINDOW = 10

ROLE_LABELS = {
    "user": "المستخدم",
    "assistant": "المساعد",
}

NO_PROJECTS_LINE = "لا توجد مشاريع متاحة حالياً."
NO_SETTINGS_LINE = "لا توجد إعدادات إضافية."
UNSPECIFIED_TECHNOLOGIES = "غير محددة"

RESPONSE_STYLE_RULES = (
    "استخدم اللغة العربية الفصحى بشكل أساسي، ولكن حاول التكيف مع اللهجة الليبية في ردودك قدر الإمكان",
    "كن دائماً ودوداً، مهذباً، ومحترماً",
    "قدم إجابات واضحة، موجزة، ودقيقة",
    "هدفك هو مساعدة المستخدم وتقديم حلول عملية",
    "إذا استفسر المستخدم عن كيفية طلب مشروع أو تكلفته، وجهه للتواصل مع صاحب الموقع مباشرة",
    "لا تطلب أي معلومات شخصية حساسة من المستخدمين",
    "إذا كان السؤال خارج نطاق معرفتك، وجه المستخدم إلى التواصل مع صاحب الموقع مباشرة",
)
CODE_BLOCK_RULE = "عند كتابة أي كود برمجي ضعه داخل كتلة كود منفصلة (```) بعيداً عن النص العادي"

CLOSING_INSTRUCTION = (
    "أجب بطريقة ودودة ومفيدة باللغة العربية. "
    "إذا سأل أحد عن خدمات التطوير، وجهه للتواصل مع صاحب الموقع مباشرة."
)


def render_context(messages: Sequence[ChatMessage], limit: int = CONTEXT_WINDOW) -> str:
    """Render the newest ``limit`` messages as ``<label>: <content>`` lines, oldest first."""
    window = list(messages)[-limit:] if limit > 0 else []
    return "\n".join(f"{ROLE_LABELS.get(m.role, m.role)}: {m.content}" for m in window)


def render_projects(projects: Sequence[ProjectSummary]) -> str:
    if not projects:
        return NO_PROJECTS_LINE
    lines: List[str] = []
    for project in projects:
        techs = ", ".join(project.technologies) if project.technologies else UNSPECIFIED_TECHNOLOGIES
        lines.append(f"- {project.title}: {project.description} (التقنيات: {techs})")
    return "\n".join(lines)


def render_settings(settings: SiteSettings) -> str:
    if not settings.entries:
        return NO_SETTINGS_LINE
    return "\n".join(f"- {key}: {value}" for key, value in settings.entries)


def render_rules(separate_code_blocks: bool) -> str:
    rules = list(RESPONSE_STYLE_RULES)
    if separate_code_blocks:
        rules.append(CODE_BLOCK_RULE)
    return "\n".join(f"{idx}. {rule}" for idx, rule in enumerate(rules, start=1))


def assemble_prompt(
    instructions: AssistantInstructions,
    projects: Sequence[ProjectSummary],
    settings: SiteSettings,
    context: str,
    user_message: str,
) -> str:
    sections = [
        instructions.system_prompt,
        "**معلومات عنك (الذكاء الاصطناعي):**\n"
        f"- اسمك: {instructions.assistant_name}\n"
        "- دورك: مساعد افتراضي لزوار الموقع",
        f"**التواصل مع صاحب الموقع:**\n{instructions.contact_info}",
        f"**معلومات عن الموقع:**\n{instructions.site_description}",
        f"**المشاريع المتاحة حالياً:**\n{render_projects(projects)}",
        f"**إعدادات الموقع:**\n{render_settings(settings)}",
        f"**تعليمات وسلوكيات التواصل:**\n{render_rules(instructions.separate_code_blocks)}",
        f"سياق المحادثة السابقة:\n{context}",
        f"الرسالة الحالية: {user_message}",
        CLOSING_INSTRUCTION,
    ]
    return "\n\n".join(sections)
