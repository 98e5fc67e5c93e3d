from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.agents.llm import LLMClient, extract_json
from agent_dispatch.agents.legal.clauses import detect_clauses, find_risk_flags, resolve_content

# jurisdiction -> (rule id, description, phrase stems any of which satisfies it)
JURISDICTION_RULES: dict[str, list[tuple[str, str, tuple[str, ...]]]] = {
    "general": [
        ("governing-law", "Names the governing law", ("governing law", "governed by")),
        ("signature-block", "Includes a signature block", ("signature", "signed")),
    ],
    "eu": [
        ("gdpr-basis", "States a lawful basis for processing personal data", ("gdpr", "lawful basis", "personal data")),
        ("withdrawal-right", "Explains the right to withdraw consent", ("withdraw",)),
    ],
    "us-ca": [
        ("ccpa-notice", "Includes a CCPA privacy notice", ("ccpa", "california consumer privacy")),
    ],
    "uk": [
        ("uk-gdpr", "References UK GDPR / Data Protection Act", ("uk gdpr", "data protection act")),
    ],
}

# A waiver that tries to release gross negligence is unenforceable in most places
UNENFORCEABLE_TERMS = ("gross negligence", "intentional misconduct")


async def check_compliance(
    session: AsyncSession,
    llm: LLMClient,
    document_id: Optional[int] = None,
    instance_id: Optional[int] = None,
    content: Optional[str] = None,
    jurisdiction: Optional[str] = None,
) -> dict[str, Any]:
    text, _ = await resolve_content(session, document_id, instance_id, content)
    lowered = text.lower()

    key = (jurisdiction or "general").lower()
    rules = JURISDICTION_RULES["general"] + (JURISDICTION_RULES.get(key, []) if key != "general" else [])

    checks = []
    issues = []
    for rule_id, description, stems in rules:
        passed = any(stem in lowered for stem in stems)
        checks.append({"rule": rule_id, "description": description, "passed": passed})
        if not passed:
            issues.append({"rule": rule_id, "severity": "high", "message": f"Missing: {description}"})

    for term in UNENFORCEABLE_TERMS:
        if f"waive {term}" in lowered or f"including {term}" in lowered:
            issues.append({
                "rule": "unenforceable-waiver",
                "severity": "critical",
                "message": f"Waiver of {term} is unenforceable in most jurisdictions",
            })

    passed_count = sum(1 for c in checks if c["passed"])
    score = round(100 * passed_count / len(checks)) if checks else 100

    parsed = extract_json(
        await llm.complete(
            f"List compliance concerns for this document under {jurisdiction or 'general'} law:\n{text[:4000]}\n"
            'Return JSON: {"notes": ["string"]}',
            system_prompt="You are a legal compliance expert.",
        ),
        {"notes": []},
        context="compliance check",
    )

    return {
        "compliant": not issues,
        "jurisdiction": jurisdiction or "general",
        "score": score,
        "checks": checks,
        "issues": issues,
        "riskFlags": find_risk_flags(text),
        "clausesFound": detect_clauses(text),
        "notes": list(parsed.get("notes") or []),
    }
