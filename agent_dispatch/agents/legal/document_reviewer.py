import logging
import re
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.agents.llm import LLMClient, extract_json
from agent_dispatch.agents.legal.clauses import (
    detect_clauses,
    find_risk_flags,
    find_variables,
    required_clauses,
    resolve_content,
)
from agent_dispatch.db.models import DocumentReview, DocumentAuditLog, LegalDocument
from agent_dispatch.domain.errors import NotFoundError
from agent_dispatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT = re.compile(r"[.!?]+\s")

# Sentences longer than this read as legalese
_CLARITY_TARGET_WORDS = 25


def _clarity_score(text: str, unfilled: int) -> int:
    sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if not sentences:
        return 0
    avg_words = sum(len(s.split()) for s in sentences) / len(sentences)
    score = 100.0
    if avg_words > _CLARITY_TARGET_WORDS:
        score -= min(50.0, (avg_words - _CLARITY_TARGET_WORDS) * 2)
    score -= min(30, unfilled * 5)
    return max(0, round(score))


async def review_document(
    session: AsyncSession,
    llm: LLMClient,
    document_id: Optional[int] = None,
    instance_id: Optional[int] = None,
    content: Optional[str] = None,
    category: Optional[str] = None,
    jurisdiction: Optional[str] = None,
    industry: Optional[str] = None,
) -> dict[str, Any]:
    """
    Scores a legal document for completeness, clarity and risk.

    The scores are deterministic; the model only contributes the narrative
    summary and extra recommendations, and falls back to a computed default.
    """
    text, template_category = await resolve_content(session, document_id, instance_id, content)
    category = category or template_category

    present = detect_clauses(text)
    required = required_clauses(category)
    missing = [c for c in required if c not in present]
    risk_flags = find_risk_flags(text)
    unfilled = find_variables(text)

    completeness = round(100 * (len(required) - len(missing)) / len(required)) if required else 100
    clarity = _clarity_score(text, len(unfilled))
    risk = min(100, 15 * len(risk_flags) + 10 * len(missing) + 5 * len(unfilled))
    overall = round(0.5 * completeness + 0.3 * clarity + 0.2 * (100 - risk))

    recommendations = [f"Add a {c.replace('_', ' ')} clause" for c in missing]
    if unfilled:
        recommendations.append(f"Fill in {len(unfilled)} template variable(s) before signing")
    recommendations.extend(f"Review: {flag}" for flag in risk_flags)

    default = {
        "summary": f"{len(present)} clause type(s) detected, {len(missing)} required clause(s) missing, "
                   f"{len(risk_flags)} risk flag(s).",
        "recommendations": [],
    }
    prompt = (
        f"Review this {category or 'legal'} document for {jurisdiction or 'general'} jurisdiction "
        f"in the {industry or 'general'} industry.\n\nDocument:\n{text[:4000]}\n\n"
        'Return JSON: {"summary": "string", "recommendations": ["string"]}'
    )
    parsed = extract_json(
        await llm.complete(prompt, system_prompt="You are a legal document review expert."),
        default,
        context="document review",
    )

    return {
        "overallScore": overall,
        "riskScore": risk,
        "completenessScore": completeness,
        "clarityScore": clarity,
        "category": category,
        "jurisdiction": jurisdiction,
        "industry": industry,
        "clausesFound": present,
        "missingClauses": missing,
        "riskFlags": risk_flags,
        "unfilledVariables": unfilled,
        "recommendations": recommendations + list(parsed.get("recommendations") or []),
        "summary": parsed.get("summary") or default["summary"],
        "reviewedAt": utcnow().isoformat(),
    }


async def record_audit(
    session: AsyncSession,
    action: str,
    document_id: Optional[int] = None,
    instance_id: Optional[int] = None,
    user_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Best-effort audit insert; a failure is logged, never raised."""
    try:
        async with session.begin_nested():
            session.add(DocumentAuditLog(
                document_id=document_id,
                instance_id=instance_id,
                user_id=user_id,
                action=action,
                details=details or {},
            ))
    except SQLAlchemyError as e:
        logger.error("Audit log insert failed for %s (document=%s): %s", action, document_id, e)


async def review_and_save_document(
    session: AsyncSession,
    llm: LLMClient,
    user_id: Optional[int] = None,
    **params: Any,
) -> dict[str, Any]:
    """Reviews a document and appends the review plus an audit entry."""
    review = await review_document(session, llm, **params)

    session.add(DocumentReview(
        document_id=params.get("document_id"),
        instance_id=params.get("instance_id"),
        reviewed_by=user_id,
        overall_score=review["overallScore"],
        risk_score=review["riskScore"],
        review=review,
    ))
    await record_audit(
        session,
        "document_reviewed",
        document_id=params.get("document_id"),
        instance_id=params.get("instance_id"),
        user_id=user_id,
        details={"overallScore": review["overallScore"], "riskScore": review["riskScore"]},
    )
    await session.commit()
    return review


async def score_template_quality(
    session: AsyncSession,
    llm: LLMClient,
    template_id: int,
    user_id: Optional[int] = None,
) -> dict[str, Any]:
    template = await session.get(LegalDocument, template_id)
    if not template:
        raise NotFoundError(f"Template {template_id} not found")

    review = await review_document(session, llm, document_id=template_id)

    # Idempotent: re-scoring overwrites the same column
    template.quality_score = review["overallScore"]
    await record_audit(
        session,
        "template_scored",
        document_id=template_id,
        user_id=user_id,
        details={"qualityScore": review["overallScore"]},
    )
    await session.commit()

    return {"qualityScore": review["overallScore"], "review": review}
