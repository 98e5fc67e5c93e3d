from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class AgentRequest(BaseModel):
    """Request bodies are camelCase on the wire; `async` picks the execution mode."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_async: bool = Field(default=False, alias="async")

    def payload(self, **extra: Any) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude={"run_async"}, exclude_none=True)
        data.update({k: v for k, v in extra.items() if v is not None})
        return data


class DocumentSourceRequest(AgentRequest):
    document_id: Optional[int] = None
    instance_id: Optional[int] = None
    content: Optional[str] = None

    @model_validator(mode="after")
    def check_source(self):
        if not (self.document_id or self.instance_id or self.content):
            raise ValueError("Must provide documentId, instanceId, or content")
        return self


# ---------- Legal ----------

class ReviewDocumentRequest(DocumentSourceRequest):
    category: Optional[str] = None
    jurisdiction: Optional[str] = None
    industry: Optional[str] = None


class AssistContractRequest(AgentRequest):
    category: str
    document_id: Optional[int] = None
    instance_id: Optional[int] = None
    jurisdiction: Optional[str] = None
    industry: Optional[str] = None
    event_id: Optional[int] = None
    provided_values: Optional[dict[str, Any]] = None


class CheckComplianceRequest(DocumentSourceRequest):
    jurisdiction: Optional[str] = None


class CompareDocumentsRequest(AgentRequest):
    template_id_a: int
    template_id_b: int


class SuggestClausesRequest(AgentRequest):
    category: str
    jurisdiction: Optional[str] = None
    industry: Optional[str] = None
    context: Optional[str] = None
    existing_clauses: Optional[list[str]] = None


class AutoFillRequest(DocumentSourceRequest):
    event_id: Optional[int] = None
    provided_values: Optional[dict[str, Any]] = None


class NegotiateRequest(AgentRequest):
    party_role: str
    document_id: Optional[int] = None
    instance_id: Optional[int] = None
    document_content: Optional[str] = None

    @model_validator(mode="after")
    def check_source(self):
        if not (self.document_id or self.instance_id or self.document_content):
            raise ValueError("Must provide documentId, instanceId, or documentContent")
        return self


class Signer(BaseModel):
    role: str
    email: Optional[str] = None


class OptimizeWorkflowRequest(AgentRequest):
    document_type: str
    signers: list[Signer] = Field(min_length=1)
    urgency: Literal["low", "medium", "high"] = "medium"


# ---------- Marketplace ----------

class FraudCheckRequest(AgentRequest):
    product_id: int
    amount: float = Field(gt=0)
    ip_address: Optional[str] = None


class OptimizePriceRequest(AgentRequest):
    product_id: int
    consider_competitors: bool = True
    consider_demand: bool = True
    consider_inventory: bool = True
    target_margin: Optional[float] = Field(default=None, ge=0)


class AnalyzeReviewsRequest(AgentRequest):
    review_text: Optional[str] = None


class AnalyzeReviewTextRequest(AgentRequest):
    review_text: str = Field(min_length=1)


class QAReviewRequest(AgentRequest):
    auto_approve: bool = False


class ProcessRefundRequest(AgentRequest):
    purchase_id: int
    reason: str = Field(min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)


# ---------- Admin ----------

class PurgeRequest(BaseModel):
    keep_completed: Optional[int] = Field(default=None, ge=0)
    keep_failed: Optional[int] = Field(default=None, ge=0)
