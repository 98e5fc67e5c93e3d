import difflib
import re
from typing import Any, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.agents.llm import LLMClient, extract_json
from agent_dispatch.agents.legal.clauses import (
    detect_clauses,
    find_risk_flags,
    find_variables,
    required_clauses,
    resolve_content,
)
from agent_dispatch.db.models import LegalClause, LegalDocument, User, Event
from agent_dispatch.domain.errors import NotFoundError
from agent_dispatch.utils.timeutil import utcnow, as_utc

# Above this ratio two templates are reported as near-identical
NEAR_IDENTICAL_RATIO = 0.95


async def suggest_clauses(
    session: AsyncSession,
    llm: LLMClient,
    category: str,
    jurisdiction: Optional[str] = None,
    industry: Optional[str] = None,
    context: Optional[str] = None,
    existing_clauses: Optional[list[str]] = None,
) -> list[dict[str, Any]]:
    existing = set(existing_clauses or [])

    stmt = select(LegalClause).where(LegalClause.category == category)
    if jurisdiction:
        stmt = stmt.where(or_(LegalClause.jurisdiction == jurisdiction, LegalClause.jurisdiction.is_(None)))
    if industry:
        stmt = stmt.where(or_(LegalClause.industry == industry, LegalClause.industry.is_(None)))
    db_clauses = (await session.execute(stmt.order_by(LegalClause.id))).scalars().all()

    required = set(required_clauses(category))
    suggestions: dict[str, dict[str, Any]] = {}

    for clause in db_clauses:
        if clause.clause_type in existing or clause.clause_type in suggestions:
            continue
        is_required = clause.required or clause.clause_type in required
        suggestions[clause.clause_type] = {
            "clauseType": clause.clause_type,
            "title": clause.title,
            "content": clause.content,
            "reason": "Standard for this category" if is_required else "Commonly included",
            "priority": "required" if is_required else "recommended",
            "jurisdiction": jurisdiction or clause.jurisdiction,
            "industry": industry or clause.industry,
            "alternatives": [],
        }

    # Required clauses with no library text still get suggested
    for clause_type in sorted(required - existing - set(suggestions)):
        suggestions[clause_type] = {
            "clauseType": clause_type,
            "title": clause_type.replace("_", " ").title(),
            "content": "",
            "reason": f"Required for {category} documents",
            "priority": "required",
            "jurisdiction": jurisdiction,
            "industry": industry,
            "alternatives": [],
        }

    prompt = (
        f"Suggest extra clauses for a {category} document.\nJurisdiction: {jurisdiction or 'General'}\n"
        f"Industry: {industry or 'General'}\nContext: {context or 'Standard contract'}\n"
        f"Already present: {', '.join(sorted(existing | set(suggestions)))}\n"
        'Return JSON: {"recommendations": [{"clauseType": "string", "title": "string", '
        '"reason": "string", "priority": "required|recommended|optional", "alternativeOptions": ["string"]}]}'
    )
    parsed = extract_json(
        await llm.complete(prompt, system_prompt="You are a legal contract expert specializing in clause recommendations."),
        {"recommendations": []},
        context="clause suggestions",
    )
    for rec in parsed.get("recommendations") or []:
        clause_type = rec.get("clauseType")
        if not clause_type or clause_type in existing or clause_type in suggestions:
            continue
        suggestions[clause_type] = {
            "clauseType": clause_type,
            "title": rec.get("title") or clause_type,
            "content": "",
            "reason": rec.get("reason") or "",
            "priority": rec.get("priority") or "optional",
            "jurisdiction": jurisdiction,
            "industry": industry,
            "alternatives": rec.get("alternativeOptions") or [],
        }

    return list(suggestions.values())


async def auto_fill_variables(
    session: AsyncSession,
    content: str,
    user_id: Optional[int] = None,
    event_id: Optional[int] = None,
    provided_values: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """Fills `{{variable}}` placeholders from provided values, the user profile and event data."""
    variables: dict[str, str] = dict(provided_values or {})
    missing: list[str] = []
    suggestions: list[dict[str, str]] = []

    user = await session.get(User, user_id) if user_id else None
    event = await session.get(Event, event_id) if event_id else None

    def suggest(variable: str, value: Optional[str], source: str) -> bool:
        if not value:
            return False
        variables[variable] = value
        suggestions.append({"variable": variable, "suggestedValue": value, "source": source})
        return True

    for variable in find_variables(content):
        if variables.get(variable):
            continue
        key = variable.lower()

        if user:
            if "email" in key and suggest(variable, user.email, "user_profile"):
                continue
            if "name" in key and "event" not in key and suggest(variable, user.name, "user_profile"):
                continue
            if ("city" in key or "location" in key) and user.city:
                if suggest(variable, ", ".join(p for p in (user.city, user.country) if p), "user_profile"):
                    continue

        if event:
            if "event_name" in key and suggest(variable, event.title, "event_data"):
                continue
            if "event_date" in key and suggest(variable, as_utc(event.start_date).date().isoformat(), "event_data"):
                continue
            if "venue" in key and suggest(variable, event.venue_name or event.location, "event_data"):
                continue

        if ("today" in key or "current_date" in key) and suggest(variable, utcnow().date().isoformat(), "calculated"):
            continue

        missing.append(variable)

    filled = content
    for key, value in variables.items():
        filled = re.sub(r"\{\{\s*" + re.escape(key) + r"\s*\}\}", lambda _m, v=value: v, filled)

    return {
        "variables": variables,
        "filledContent": filled,
        "missingVariables": missing,
        "suggestions": suggestions,
    }


async def negotiation_advice(
    llm: LLMClient,
    document_content: str,
    party_role: str,
) -> dict[str, Any]:
    risk_flags = find_risk_flags(document_content)
    default = {
        "negotiableTerms": [],
        "oneSidedClauses": [
            {"clause": flag, "favoredParty": "provider" if party_role == "recipient" else "recipient",
             "recommendation": "Negotiate narrower language or a mutual obligation"}
            for flag in risk_flags
        ],
        "fairCompromises": ["Make indemnification mutual", "Cap liability at fees paid"] if risk_flags else [],
    }
    prompt = (
        f"Analyze this contract from the perspective of the {party_role} and provide negotiation advice:\n\n"
        f"{document_content[:4000]}\n\n"
        'Return JSON: {"negotiableTerms": [{"clause": "string", "currentTerm": "string", '
        '"suggestedAlternatives": ["string"], "rationale": "string"}], '
        '"oneSidedClauses": [{"clause": "string", "favoredParty": "provider|recipient", "recommendation": "string"}], '
        '"fairCompromises": ["string"]}'
    )
    parsed = extract_json(
        await llm.complete(prompt, system_prompt="You are a legal contract negotiation expert. Provide balanced, fair advice."),
        default,
        context="negotiation advice",
    )
    return {
        "partyRole": party_role,
        "negotiableTerms": parsed.get("negotiableTerms") or [],
        "oneSidedClauses": parsed.get("oneSidedClauses") or [],
        "fairCompromises": parsed.get("fairCompromises") or [],
    }


async def compare_templates(
    session: AsyncSession,
    llm: LLMClient,
    template_id_a: int,
    template_id_b: int,
) -> dict[str, Any]:
    template_a = await session.get(LegalDocument, template_id_a)
    template_b = await session.get(LegalDocument, template_id_b)
    if not template_a or not template_b:
        raise NotFoundError("One or both templates not found")

    clauses_a = detect_clauses(template_a.template_content)
    clauses_b = detect_clauses(template_b.template_content)
    similarity = difflib.SequenceMatcher(
        None, template_a.template_content, template_b.template_content
    ).ratio()

    comparison = {
        "templateA": {"id": template_a.id, "title": template_a.title, "clauses": clauses_a},
        "templateB": {"id": template_b.id, "title": template_b.title, "clauses": clauses_b},
        "similarity": round(similarity, 3),
    }

    if template_id_a == template_id_b or similarity >= NEAR_IDENTICAL_RATIO:
        comparison.update({
            "differences": [],
            "strengths": {"templateA": [], "templateB": []},
            "weaknesses": {"templateA": [], "templateB": []},
            "recommendation": f"The templates are near-identical ({round(similarity * 100)}% similar); "
                              "either can be used interchangeably.",
        })
        return comparison

    differences = []
    for clause_type in sorted(set(clauses_a) ^ set(clauses_b)):
        in_a = clause_type in clauses_a
        differences.append({
            "clauseType": clause_type,
            "inA": in_a,
            "inB": not in_a,
            "recommendation": f"Consider adding {clause_type.replace('_', ' ')} to template {'B' if in_a else 'A'}",
        })

    only_a = [c for c in clauses_a if c not in clauses_b]
    only_b = [c for c in clauses_b if c not in clauses_a]
    if len(clauses_a) == len(clauses_b):
        verdict = "Both templates cover the same number of clause types; choose by category fit."
    else:
        better = "A" if len(clauses_a) > len(clauses_b) else "B"
        verdict = f"Template {better} is more comprehensive."

    default = {
        "strengths": {"templateA": only_a, "templateB": only_b},
        "weaknesses": {
            "templateA": find_risk_flags(template_a.template_content),
            "templateB": find_risk_flags(template_b.template_content),
        },
        "recommendation": verdict,
    }
    prompt = (
        f"Compare these two legal contract templates.\n\nTemplate A: {template_a.title}\n"
        f"{template_a.template_content[:2000]}\n\nTemplate B: {template_b.title}\n"
        f"{template_b.template_content[:2000]}\n\n"
        'Return JSON: {"strengths": {"templateA": ["string"], "templateB": ["string"]}, '
        '"weaknesses": {"templateA": ["string"], "templateB": ["string"]}, "recommendation": "string"}'
    )
    parsed = extract_json(
        await llm.complete(prompt, system_prompt="You are a legal contract comparison expert. Provide objective, detailed analysis."),
        default,
        context="template comparison",
    )

    comparison.update({
        "differences": differences,
        "strengths": parsed.get("strengths") or default["strengths"],
        "weaknesses": parsed.get("weaknesses") or default["weaknesses"],
        "recommendation": parsed.get("recommendation") or verdict,
    })
    return comparison


# Signing order when a workflow is sequential: lower goes first
_ROLE_ORDER = {"participant": 0, "recipient": 0, "guardian": 1, "provider": 3, "organizer": 3, "admin": 4, "witness": 5}

_COMPLETION_ESTIMATE = {"high": "Same day", "medium": "1-2 business days", "low": "3-5 business days"}


async def optimize_signature_workflow(
    llm: LLMClient,
    signers: list[dict[str, Any]],
    document_type: str,
    urgency: str = "medium",
) -> dict[str, Any]:
    ordered = sorted(enumerate(signers), key=lambda pair: (_ROLE_ORDER.get(pair[1]["role"].lower(), 2), pair[0]))
    roles = {s["role"].lower() for s in signers}
    if len(signers) <= 1 or urgency == "high" and "witness" not in roles:
        flow = "parallel"
    elif "witness" in roles or "guardian" in roles:
        flow = "sequential"
    else:
        flow = "hybrid"

    default = {
        "recommendedFlow": flow,
        "signers": [
            {"order": i + 1 if flow != "parallel" else 1, "role": s["role"],
             "reasonForOrder": "Signs after the parties they attest to" if s["role"].lower() == "witness"
             else "Standard signing order"}
            for i, (_, s) in enumerate(ordered)
        ],
        "estimatedCompletionTime": _COMPLETION_ESTIMATE.get(urgency, "1-2 business days"),
        "instructions": ["Send signing invitations", "Follow up on pending signatures"],
    }
    prompt = (
        f"Optimize the signature workflow for a {document_type} with urgency {urgency}. "
        f"Signers: {', '.join(s['role'] for s in signers)}.\n"
        'Return JSON: {"recommendedFlow": "sequential|parallel|hybrid", "signers": '
        '[{"order": 1, "role": "string", "reasonForOrder": "string"}], '
        '"estimatedCompletionTime": "string", "instructions": ["string"]}'
    )
    parsed = extract_json(
        await llm.complete(prompt, system_prompt="You are a document signing workflow optimization expert."),
        default,
        context="signature workflow",
    )

    emails = {s["role"]: s.get("email") for s in signers}
    return {
        "documentType": document_type,
        "recommendedFlow": parsed.get("recommendedFlow") or flow,
        "signers": [
            {
                "order": s.get("order") or i + 1,
                "role": s.get("role"),
                "email": emails.get(s.get("role")),
                "reasonForOrder": s.get("reasonForOrder") or "Standard order",
            }
            for i, s in enumerate(parsed.get("signers") or default["signers"])
        ],
        "estimatedCompletionTime": parsed.get("estimatedCompletionTime") or default["estimatedCompletionTime"],
        "instructions": parsed.get("instructions") or [],
    }


async def assist_with_contract(
    session: AsyncSession,
    llm: LLMClient,
    category: str,
    document_id: Optional[int] = None,
    instance_id: Optional[int] = None,
    jurisdiction: Optional[str] = None,
    industry: Optional[str] = None,
    user_id: Optional[int] = None,
    event_id: Optional[int] = None,
    provided_values: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Clause suggestions for the category, plus variable auto-fill when a document is given."""
    existing: list[str] = []
    auto_fill = None
    if document_id or instance_id:
        text, _ = await resolve_content(session, document_id, instance_id)
        existing = detect_clauses(text)
        auto_fill = await auto_fill_variables(
            session,
            text,
            user_id=user_id,
            event_id=event_id,
            provided_values={k: str(v) for k, v in (provided_values or {}).items()},
        )

    suggestions = await suggest_clauses(
        session,
        llm,
        category=category,
        jurisdiction=jurisdiction,
        industry=industry,
        existing_clauses=existing,
    )
    return {
        "category": category,
        "existingClauses": existing,
        "clauseSuggestions": suggestions,
        "autoFill": auto_fill,
    }
