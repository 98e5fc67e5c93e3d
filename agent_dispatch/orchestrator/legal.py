from typing import Any

from agent_dispatch.agents.legal import compliance, contract_assistant, document_reviewer
from agent_dispatch.agents.legal.clauses import resolve_content
from agent_dispatch.domain.states import LegalTaskType
from agent_dispatch.orchestrator.base import BaseOrchestrator, Handler, require


class LegalOrchestrator(BaseOrchestrator):
    domain = "legal"

    def dispatch_table(self) -> dict[str, Handler]:
        return {
            LegalTaskType.REVIEW_DOCUMENT: self.review_document,
            LegalTaskType.ASSIST_CONTRACT: self.assist_contract,
            LegalTaskType.CHECK_COMPLIANCE: self.check_compliance,
            LegalTaskType.COMPARE_TEMPLATES: self.compare_templates,
            LegalTaskType.SCORE_TEMPLATE: self.score_template,
            LegalTaskType.SUGGEST_CLAUSES: self.suggest_clauses,
            LegalTaskType.AUTO_FILL: self.auto_fill,
            LegalTaskType.NEGOTIATE: self.negotiate,
            LegalTaskType.OPTIMIZE_WORKFLOW: self.optimize_workflow,
        }

    async def review_document(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.call(
            document_reviewer.review_and_save_document,
            self.llm,
            user_id=data.get("userId"),
            document_id=data.get("documentId"),
            instance_id=data.get("instanceId"),
            content=data.get("content"),
            category=data.get("category"),
            jurisdiction=data.get("jurisdiction"),
            industry=data.get("industry"),
        )

    async def assist_contract(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "category")
        return await self.call(
            contract_assistant.assist_with_contract,
            self.llm,
            category=data["category"],
            document_id=data.get("documentId"),
            instance_id=data.get("instanceId"),
            jurisdiction=data.get("jurisdiction"),
            industry=data.get("industry"),
            user_id=data.get("userId"),
            event_id=data.get("eventId"),
            provided_values=data.get("providedValues"),
        )

    async def check_compliance(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.call(
            compliance.check_compliance,
            self.llm,
            document_id=data.get("documentId"),
            instance_id=data.get("instanceId"),
            content=data.get("content"),
            jurisdiction=data.get("jurisdiction"),
        )

    async def compare_templates(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "templateIdA", "templateIdB")
        return await self.call(
            contract_assistant.compare_templates,
            self.llm,
            int(data["templateIdA"]),
            int(data["templateIdB"]),
        )

    async def score_template(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "templateId")
        return await self.call(
            document_reviewer.score_template_quality,
            self.llm,
            int(data["templateId"]),
            user_id=data.get("userId"),
        )

    async def suggest_clauses(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        require(data, "category")
        return await self.call(
            contract_assistant.suggest_clauses,
            self.llm,
            category=data["category"],
            jurisdiction=data.get("jurisdiction"),
            industry=data.get("industry"),
            context=data.get("context"),
            existing_clauses=data.get("existingClauses"),
        )

    async def auto_fill(self, data: dict[str, Any]) -> dict[str, Any]:
        async def fill(session):
            text, _ = await resolve_content(session, data.get("documentId"), data.get("instanceId"), data.get("content"))
            return await contract_assistant.auto_fill_variables(
                session,
                text,
                user_id=data.get("userId"),
                event_id=data.get("eventId"),
                provided_values={k: str(v) for k, v in (data.get("providedValues") or {}).items()},
            )

        return await self.call(fill)

    async def negotiate(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "partyRole")

        async def advise(session):
            text, _ = await resolve_content(session, data.get("documentId"), data.get("instanceId"), data.get("documentContent"))
            return await contract_assistant.negotiation_advice(self.llm, text, data["partyRole"])

        return await self.call(advise)

    async def optimize_workflow(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "signers", "documentType")
        return await contract_assistant.optimize_signature_workflow(
            self.llm,
            signers=data["signers"],
            document_type=data["documentType"],
            urgency=data.get("urgency") or "medium",
        )
