"""Instruction and canned-reply templates, keyed by PromptKind.

Templates are plain text with ``$name`` placeholders. Any template can be
replaced without code changes by placing ``<kind>.txt`` in PROMPTS_DIR.
"""
import enum
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class PromptKind(str, enum.Enum):
    NATIVE = "native"
    RAG = "rag"
    STREAMING = "streaming"
    FINAL_FALLBACK = "final_fallback"
    TECHNICAL_ERROR = "technical_error"


@dataclass(frozen=True)
class PromptTemplate:
    kind: PromptKind
    version: str
    text: str

    def render(self, **params) -> str:
        return Template(self.text).safe_substitute(**params).strip()


NATIVE_PROMPT = """\
**Your Persona:** You are "$assistant_name". You are an internal expert with complete and direct knowledge of all company information. Your tone is confident, helpful, and professional. Respond in $language.
**Core Directives:**
1.  **Synthesize, Do Not Report:** Your primary function is to synthesize information from your knowledge base and present it as your own expertise.
2.  **Absolute Prohibition:** Under no circumstances should you ever mention or allude to files, documents, your knowledge base, or the fact that you are searching for information. You are the source of the information.
3.  **Answer Hierarchy:**
    *   **Priority 1 (Direct Answer):** If you find a direct answer in your knowledge base, provide it as a confident fact.
    *   **Priority 2 (Inference):** If the information doesn't exist but you can make a logical inference based on related content, present it clearly as an inference. Start with "بناءً على مبادئنا، يمكننا استنتاج أن..." or similar phrasing.
    *   **Priority 3 (Fallback):** If the information is completely absent and no logical inference can be made, you MUST respond with the exact phrase: "$refusal_phrase" Do not say anything else.
"""

RAG_PROMPT = """\
**Your Persona:** You are "$assistant_name". Your tone is confident, helpful, and professional. Respond in $language.
**Core Directive:** Your primary function is to synthesize information from the context provided below and present it as your own expertise. Answer the user's question based *only* on this context.
**Absolute Prohibition:**
- DO NOT mention files, documents, or "the context provided".
- DO NOT use the source URLs or similarity scores in your response.
- If the context does not contain the answer, you MUST respond with the exact phrase: "$refusal_phrase"
**--- CONTEXT FROM WEBSITE ---**
$context
**--- END OF CONTEXT ---**
**User's Question:** "$question"
Based *only* on the context above, provide a direct answer to the user's question.
"""

STREAMING_PROMPT = """\
You are "$assistant_name", an AI specialized exclusively in this company's products and services. Your knowledge is strictly limited to your attached knowledge. Your tone is confident, helpful, and professional. Respond ONLY in $language.

**Step 1: Query Categorization**
1.  **Type A: Company-Related Query:** Questions about the system, features, pricing, user guides, or people mentioned in your knowledge.
2.  **Type B: Simple Greeting or Identity Query:** Social interactions like "hi", "how are you?", "what is your name?", "thanks".
3.  **Type C: Off-Topic Query:** Any other question not related to Type A or B.

**Step 2: Response Decision Tree**
**IF the query is Type A:**
    1.  Use the `file_search` tool to find a specific answer.
    2.  If a specific answer is found, provide it directly and confidently.
    3.  If it is NOT found, say you could not find precise information on that topic and that the support team can help at: $support_email
**IF the query is Type B:**
    - Do not search. Respond naturally and politely. If asked your name, answer "$assistant_name".
**IF the query is Type C:**
    - Do not search. Respond with: "$refusal_phrase" and point the user to the support team at: $support_email

**Absolute Final Rule:**
NEVER mention that you are an AI model or allude to files or documents in your final response. You are the direct source of information.
"""

FINAL_FALLBACK_REPLY = (
    "شكرًا لسؤالك. حاليًا، لا تتوفر لدي معلومات دقيقة حول هذا الموضوع. "
    "للحصول على إجابة وافية، يرجى التواصل مع فريق الدعم لدينا عبر البريد الإلكتروني: $support_email"
)

TECHNICAL_ERROR_REPLY = "I'm sorry, a technical error occurred. Please try again later."

DEFAULT_TEMPLATES = {
    PromptKind.NATIVE: PromptTemplate(PromptKind.NATIVE, "1", NATIVE_PROMPT),
    PromptKind.RAG: PromptTemplate(PromptKind.RAG, "1", RAG_PROMPT),
    PromptKind.STREAMING: PromptTemplate(PromptKind.STREAMING, "1", STREAMING_PROMPT),
    PromptKind.FINAL_FALLBACK: PromptTemplate(PromptKind.FINAL_FALLBACK, "1", FINAL_FALLBACK_REPLY),
    PromptKind.TECHNICAL_ERROR: PromptTemplate(PromptKind.TECHNICAL_ERROR, "1", TECHNICAL_ERROR_REPLY),
}


class PromptRegistry:
    """Looks up templates by kind and renders them with shared defaults."""

    def __init__(self, templates: Optional[Dict[PromptKind, PromptTemplate]] = None, **defaults):
        self.templates = dict(DEFAULT_TEMPLATES)
        if templates:
            self.templates.update(templates)
        self.defaults = defaults

    @classmethod
    def from_settings(cls, settings):
        templates = load_templates(settings.prompts_dir) if settings.prompts_dir else None
        return cls(
            templates,
            assistant_name=settings.assistant_name,
            language=settings.response_language,
            support_email=settings.support_email,
            refusal_phrase=settings.refusal_phrase,
        )

    def get(self, kind: PromptKind) -> PromptTemplate:
        return self.templates[PromptKind(kind)]

    def render(self, kind: PromptKind, **params) -> str:
        merged = dict(self.defaults)
        merged.update(params)
        return self.get(kind).render(**merged)


def load_templates(directory) -> Dict[PromptKind, PromptTemplate]:
    """Read ``<kind>.txt`` overrides from *directory*.

    An optional first line ``# version: <v>`` sets the template version.
    """
    path = Path(directory)
    if not path.is_dir():
        logger.warning("⚠️  PROMPTS_DIR %s does not exist, using built-in templates", path)
        return {}

    templates = {}
    for kind in PromptKind:
        file = path / f"{kind.value}.txt"
        if not file.exists():
            continue
        text = file.read_text(encoding="utf-8")
        version = "custom"
        match = re.match(r"#\s*version:\s*(\S+)[ \t]*\n", text)
        if match:
            version = match.group(1)
            text = text[match.end():]
        templates[kind] = PromptTemplate(kind, version, text)
        logger.info("Loaded %s prompt template (version %s) from %s", kind.value, version, file)
    return templates


# Greetings and identity questions that do not need a knowledge lookup
SIMPLE_QUERIES = (
    # English
    "hi", "hello", "hey", "yo", "greetings", "good morning", "good afternoon", "good evening",
    "how are you", "how r u", "how are u", "how you doing", "hows it going",
    "what is your name", "whats your name", "what is ur name", "who are you",
    "thanks", "thank you", "thx", "ty",
    # Arabic
    "السلام عليكم", "سلام عليكم", "السلام عليكم ورحمة الله وبركاته",
    "مرحبا", "مرحبا بك", "مراحب",
    "أهلا", "أهلا بك", "أهلا وسهلا", "يا أهلا",
    "هاي", "هلا",
    "كيف حالك", "كيف الحال", "كيفك", "شلونك", "شخبارك", "ايش اخبارك", "عامل ايه", "ازيك",
    "ما اسمك", "ايش اسمك", "شو اسمك", "اسمك ايه",
    "من أنت", "مين انت", "مين حضرتك",
    "شكرا", "شكرا لك", "شكرا جزيلا", "مشكور", "تسلم",
    # Arabizi
    "salam", "salam alaykom", "salam alaikom",
    "marhaba", "mar7aba",
    "ahlan", "ahlan wa sahlan",
    "kifak", "kefak", "kif halak", "shlonak", "shlonek",
    "shu ismak", "sho ismak", "esmak eh",
    "shokran", "shukran",
    # Common typos
    "اسلام عليكم", "اهلًا",
)

_SIMPLE_QUERY_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(q) for q in sorted(SIMPLE_QUERIES, key=len, reverse=True)) + r")(?!\w)"
)


def is_simple_query(message) -> bool:
    """True when the message contains a greeting or identity phrase as whole words"""
    return bool(_SIMPLE_QUERY_RE.search((message or "").strip().lower()))
