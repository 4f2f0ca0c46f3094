# agents/central_context_agent.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Set

from agents.term_calculator_agent import CalculatedTerms, compute_emi

logger = logging.getLogger(__name__)

STAGE_INITIAL = "initial"
STAGE_PERSONAL_INFO = "personal_info"
STAGE_LOAN_DETAILS = "loan_details"
STAGE_FINANCIAL_INFO = "financial_info"
STAGE_TERMS_REVIEW = "terms_review"
STAGE_COMPLETE = "complete"

STAGES = (
    STAGE_INITIAL,
    STAGE_PERSONAL_INFO,
    STAGE_LOAN_DETAILS,
    STAGE_FINANCIAL_INFO,
    STAGE_TERMS_REVIEW,
    STAGE_COMPLETE,
)

# Order in which missing information is asked for.
REQUIRED_FIELDS = (
    "loan_type",
    "applicant_name",
    "monthly_income",
    "loan_amount",
    "employment_status",
    "credit_score",
)

FIELD_STAGES = {
    "loan_type": STAGE_LOAN_DETAILS,
    "applicant_name": STAGE_PERSONAL_INFO,
    "monthly_income": STAGE_FINANCIAL_INFO,
    "loan_amount": STAGE_LOAN_DETAILS,
    "employment_status": STAGE_FINANCIAL_INFO,
    "credit_score": STAGE_FINANCIAL_INFO,
}

TRANSIENT_FIELDS = ("terms_accepted", "terms_rejected")
DEFAULT_LOAN_PURPOSE = "General purpose"


@dataclass
class LoanFieldSet:
    applicant_name: Optional[str] = None
    loan_type: Optional[str] = None
    monthly_income: Optional[str] = None
    loan_amount: Optional[str] = None
    employment_status: Optional[str] = None
    credit_score: Optional[int] = None
    loan_purpose: Optional[str] = None
    terms_accepted: Optional[bool] = None
    terms_rejected: Optional[bool] = None

    @classmethod
    def field_names(cls) -> Set[str]:
        return {f.name for f in fields(cls)}

    def get(self, name: str) -> Any:
        return getattr(self, name, None)

    def set(self, name: str, value: Any) -> None:
        if name not in self.field_names():
            raise ValueError(f"Unknown loan application field: {name}")
        setattr(self, name, value)

    def as_dict(self, *, include_transient: bool = False) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            if not include_transient and f.name in TRANSIENT_FIELDS:
                continue
            value = getattr(self, f.name)
            if value not in (None, ""):
                out[f.name] = value
        return out

    def missing_fields(self):
        return [name for name in REQUIRED_FIELDS if self.get(name) in (None, "")]

    def is_complete(self) -> bool:
        return not self.missing_fields()


@dataclass
class ApplicationFlow:
    conversation_id: str
    stage: str = STAGE_INITIAL
    data: LoanFieldSet = field(default_factory=LoanFieldSet)
    manually_edited_fields: Set[str] = field(default_factory=set)
    calculated_terms: Optional[CalculatedTerms] = None
    application_id: Optional[str] = None
    is_complete: bool = False
    next_question: Optional[str] = None
    # Set when data changes after terms were presented, so they are re-derived.
    terms_stale: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "stage": self.stage,
            "data": self.data.as_dict(),
            "manuallyEditedFields": sorted(self.manually_edited_fields),
            "calculatedTerms": self.calculated_terms.to_dict() if self.calculated_terms else None,
            "applicationId": self.application_id,
            "isComplete": self.is_complete,
            "nextQuestion": self.next_question,
        }


class CentralContextAgent:
    """Registry of active application flows, keyed by conversation id.

    Flows live in memory only; one instance is created by the host and passed to
    every component that needs flows. Clearing a flow also clears the
    conversation history kept by the conversation agent.
    """

    def __init__(self, *, conversation_agent=None, application_store=None):
        self.conversation_agent = conversation_agent
        self.application_store = application_store
        self._flows: Dict[str, ApplicationFlow] = {}

    def get(self, conversation_id: str) -> Optional[ApplicationFlow]:
        return self._flows.get(conversation_id)

    def create(self, conversation_id: str, *, clear_history: bool = False) -> ApplicationFlow:
        if clear_history and self.conversation_agent is not None:
            self.conversation_agent.clear_conversation(conversation_id)
        flow = ApplicationFlow(conversation_id=conversation_id)
        self._flows[conversation_id] = flow
        return flow

    def get_or_create(self, conversation_id: str) -> ApplicationFlow:
        flow = self.get(conversation_id)
        if flow is None:
            logger.info("Creating new flow for conversation %s", conversation_id)
            flow = self.create(conversation_id)
        return flow

    def clear(self, conversation_id: str) -> bool:
        removed = self._flows.pop(conversation_id, None) is not None
        if self.conversation_agent is not None:
            self.conversation_agent.clear_conversation(conversation_id)
        logger.info("Cleared flow for conversation %s (existed: %s)", conversation_id, removed)
        return removed

    def clear_all(self) -> int:
        count = len(self._flows)
        self._flows.clear()
        if self.conversation_agent is not None:
            self.conversation_agent.clear_all_conversations()
        logger.info("Cleared all flows (%d)", count)
        return count

    def continue_application(self, conversation_id: str, application_id: str) -> Optional[ApplicationFlow]:
        """Rehydrate a read-only flow from a previously stored application."""
        if self.application_store is None:
            return None
        try:
            record = self.application_store.get_application(application_id)
        except Exception:
            logger.exception("Failed to load application %s", application_id)
            return None
        if not record:
            return None

        data = LoanFieldSet()
        for name in ("applicant_name", "loan_type", "employment_status", "loan_purpose"):
            if record.get(name):
                data.set(name, str(record[name]))
        for name in ("monthly_income", "loan_amount"):
            if record.get(name) not in (None, ""):
                data.set(name, str(record[name]))
        score = record.get("credit_score")
        if score not in (None, ""):
            try:
                data.credit_score = int(score)
            except (TypeError, ValueError):
                data.credit_score = None

        flow = ApplicationFlow(
            conversation_id=conversation_id,
            stage=STAGE_COMPLETE,
            data=data,
            calculated_terms=_stored_terms(record),
            application_id=record.get("id") or application_id,
            is_complete=True,
        )
        self._flows[conversation_id] = flow
        return flow

    def __len__(self) -> int:
        return len(self._flows)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._flows


def _stored_terms(record: Dict[str, Any]) -> Optional[CalculatedTerms]:
    """Rebuild the payment schedule from the rate and term saved with a record."""
    try:
        rate = float(record.get("interest_rate"))
        years = int(record.get("loan_term"))
        principal = float(record.get("loan_amount"))
    except (TypeError, ValueError):
        return None
    payment = compute_emi(principal, rate, years * 12)
    return CalculatedTerms(
        interest_rate=round(rate, 2),
        loan_term_years=years,
        monthly_payment=int(round(payment)),
        total_amount=int(round(payment * years * 12)),
    )
