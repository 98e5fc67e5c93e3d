import re
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import LegalDocument, DocumentInstance
from agent_dispatch.domain.errors import NotFoundError, AgentError

# clause type -> phrase stems that indicate the clause is present
CLAUSE_PATTERNS: dict[str, tuple[str, ...]] = {
    "release_of_liability": ("release", "hold harmless", "discharge"),
    "assumption_of_risk": ("assumption of risk", "assume all risk", "assumes the risk", "inherent risk"),
    "indemnification": ("indemnif",),
    "limitation_of_liability": ("limitation of liability", "liable for", "liability"),
    "termination": ("terminat",),
    "payment_terms": ("payment", "fee", "invoice"),
    "confidentiality": ("confidential", "non-disclosure"),
    "governing_law": ("governing law", "governed by", "jurisdiction of"),
    "dispute_resolution": ("arbitration", "dispute", "mediation"),
    "term": ("term of", "effective date", "duration"),
    "medical_authorization": ("medical treatment", "emergency medical"),
    "media_release": ("photograph", "video", "likeness"),
    "data_protection": ("personal data", "data protection", "privacy"),
    "signature": ("signature", "signed", "sign below"),
}

REQUIRED_BY_CATEGORY: dict[str, tuple[str, ...]] = {
    "waiver": ("release_of_liability", "assumption_of_risk", "indemnification", "governing_law", "signature"),
    "contract": ("term", "payment_terms", "termination", "governing_law", "signature"),
    "service_agreement": ("term", "payment_terms", "termination", "limitation_of_liability", "governing_law"),
    "nda": ("confidentiality", "term", "governing_law", "signature"),
    "release": ("media_release", "signature"),
}
DEFAULT_REQUIRED = ("governing_law", "signature")

RISK_TERMS: dict[str, str] = {
    "unlimited liability": "Unlimited liability exposure",
    "perpetual": "Perpetual obligations with no end date",
    "irrevocable": "Irrevocable grant of rights",
    "waive all": "Blanket waiver of all rights",
    "sole discretion": "Terms changeable at one party's sole discretion",
    "without notice": "Changes or termination without notice",
    "non-refundable": "Non-refundable payments",
    "automatically renew": "Automatic renewal",
    "gross negligence": "Attempts to waive gross negligence (often unenforceable)",
}

_VARIABLE = re.compile(r"\{\{([^}]+)\}\}")


def detect_clauses(text: str) -> list[str]:
    lowered = text.lower()
    return [
        clause_type
        for clause_type, stems in CLAUSE_PATTERNS.items()
        if any(stem in lowered for stem in stems)
    ]


def required_clauses(category: Optional[str]) -> tuple[str, ...]:
    if not category:
        return DEFAULT_REQUIRED
    return REQUIRED_BY_CATEGORY.get(category.lower().replace("-", "_"), DEFAULT_REQUIRED)


def find_risk_flags(text: str) -> list[str]:
    lowered = text.lower()
    return [label for term, label in RISK_TERMS.items() if term in lowered]


def find_variables(text: str) -> list[str]:
    seen: list[str] = []
    for name in _VARIABLE.findall(text):
        name = name.strip()
        if name not in seen:
            seen.append(name)
    return seen


async def resolve_content(
    session: AsyncSession,
    document_id: Optional[int] = None,
    instance_id: Optional[int] = None,
    content: Optional[str] = None,
) -> tuple[str, Optional[str]]:
    """Returns (text, template category) from whichever source the caller gave."""
    if content:
        return content, None

    if instance_id:
        instance = await session.get(DocumentInstance, instance_id)
        if not instance:
            raise NotFoundError(f"Document instance {instance_id} not found")
        category = None
        if instance.document_id:
            template = await session.get(LegalDocument, instance.document_id)
            category = template.category if template else None
        return instance.content, category

    if document_id:
        template = await session.get(LegalDocument, document_id)
        if not template:
            raise NotFoundError(f"Template {document_id} not found")
        return template.template_content, template.category

    raise AgentError("Must provide documentId, instanceId, or content")
