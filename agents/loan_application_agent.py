# agents/loan_application_agent.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from agents.central_context_agent import (
    DEFAULT_LOAN_PURPOSE,
    FIELD_STAGES,
    REQUIRED_FIELDS,
    STAGE_COMPLETE,
    STAGE_INITIAL,
    STAGE_LOAN_DETAILS,
    STAGE_TERMS_REVIEW,
    TRANSIENT_FIELDS,
    ApplicationFlow,
    CentralContextAgent,
)
from agents.conversation_agent import ConversationAgent
from agents.field_extraction_agent import (
    MAX_CREDIT_SCORE,
    MIN_CREDIT_SCORE,
    canonical_loan_type,
    format_amount,
    parse_amount,
)
from agents.risk_assessment_agent import RiskAssessmentAgent
from agents.term_calculator_agent import CalculatedTerms, TermCalculatorAgent, format_inr
from utils.database import JsonApplicationStore
from utils.notifications import APPLICATION_CREATED, APPLICATION_UPDATED, EventNotifier

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = REQUIRED_FIELDS + ("loan_purpose",)

WELCOME_MESSAGE = (
    "I'd be happy to help you explore loan options! What would you like to know about our "
    "loans, or are you ready to start an application?"
)
TERMS_REJECTED_MESSAGE = (
    "I understand. You can modify your loan amount or other details if you'd like different "
    "terms, or we can discuss other loan options that might work better for you."
)
TERMS_REMINDER_MESSAGE = (
    "Your personalized terms are ready above. Just say \"yes\" to accept them or \"no\" if "
    "you'd like to modify anything."
)
ADJUST_DETAILS_MESSAGE = (
    "No problem. Tell me what you'd like to change, for example the loan amount, and I'll "
    "recalculate your terms."
)
PROCESSING_ERROR_MESSAGE = "Sorry, I'm having trouble processing that. Could you try rephrasing?"
SUBMISSION_FAILED_MESSAGE = (
    "There was an issue submitting your application. Please try again or contact our support team."
)


def normalize_field_value(field_name: str, value: Any) -> Any:
    """Validate and normalize a value entered directly by the user."""
    if field_name not in EDITABLE_FIELDS:
        raise ValueError(f"Field cannot be edited: {field_name}")

    if field_name in ("monthly_income", "loan_amount"):
        amount = parse_amount(value)
        if amount is None:
            raise ValueError(f"Invalid amount for {field_name}: {value!r}")
        return format_amount(amount)

    if field_name == "credit_score":
        try:
            score = int(str(value).strip())
        except (TypeError, ValueError):
            raise ValueError(f"Invalid credit score: {value!r}") from None
        if not MIN_CREDIT_SCORE <= score <= MAX_CREDIT_SCORE:
            raise ValueError(f"Credit score must be between {MIN_CREDIT_SCORE} and {MAX_CREDIT_SCORE}")
        return score

    text = str(value or "").strip()
    if not text:
        raise ValueError(f"{field_name} cannot be empty")
    if field_name == "loan_type":
        return canonical_loan_type(text) or text.title()
    return text


class LoanApplicationAgent:
    """Owns the lifecycle of one loan application per conversation.

    Extraction -> merge (respecting manual edits) -> completeness check ->
    terms review -> acceptance -> submission. Every public method returns
    or mutates flows held by the registry; nothing here is fatal.
    """

    def __init__(
        self,
        *,
        application_store=None,
        conversation_agent: Optional[ConversationAgent] = None,
        registry: Optional[CentralContextAgent] = None,
        calculator: Optional[TermCalculatorAgent] = None,
        notifier: Optional[EventNotifier] = None,
        risk_assessment_agent: Optional[RiskAssessmentAgent] = None,
    ):
        self.application_store = application_store if application_store is not None else JsonApplicationStore()
        self.conversation_agent = conversation_agent or ConversationAgent()
        self.registry = registry or CentralContextAgent(
            conversation_agent=self.conversation_agent,
            application_store=self.application_store,
        )
        self.calculator = calculator or TermCalculatorAgent()
        self.notifier = notifier or EventNotifier()
        self.risk_assessment_agent = risk_assessment_agent or RiskAssessmentAgent(self.calculator)

    # --- lifecycle ---

    def start_application(self, user_id: str, conversation_id: str, clear_history: bool = False) -> ApplicationFlow:
        flow = self.registry.create(conversation_id, clear_history=clear_history)
        flow.next_question = WELCOME_MESSAGE
        logger.info("Started application flow for user %s in conversation %s", user_id, conversation_id)
        return flow

    def get_current_flow(self, conversation_id: str) -> Optional[ApplicationFlow]:
        return self.registry.get(conversation_id)

    def clear_flow(self, conversation_id: str) -> bool:
        return self.registry.clear(conversation_id)

    def clear_all_flows(self) -> int:
        return self.registry.clear_all()

    def continue_application(self, conversation_id: str, application_id: str) -> Optional[ApplicationFlow]:
        return self.registry.continue_application(conversation_id, application_id)

    # --- conversation turns ---

    def process_user_input(self, conversation_id: str, user_input: str, user_id: str) -> Dict[str, Any]:
        flow = self.registry.get_or_create(conversation_id)

        if flow.stage == STAGE_COMPLETE:
            return self._result(flow, self._already_submitted_message(flow))

        try:
            ai = self.conversation_agent.chat(conversation_id, user_input, flow)
        except Exception:
            logger.exception("Conversation agent failed for %s", conversation_id)
            return self._result(flow, PROCESSING_ERROR_MESSAGE)

        extracted = ai.get("extracted_info") or {}

        if flow.stage == STAGE_TERMS_REVIEW:
            if extracted.get("terms_accepted"):
                flow.data.terms_accepted = True
                flow.data.terms_rejected = None
                if flow.terms_stale:
                    return self._result(flow, self._present_terms(flow))
                return self.submit_application(flow, user_id)
            if extracted.get("terms_rejected"):
                flow.data.terms_rejected = True
                flow.data.terms_accepted = None
                flow.stage = STAGE_LOAN_DETAILS
                flow.next_question = TERMS_REJECTED_MESSAGE
                logger.info("Terms rejected in %s; back to data collection", conversation_id)
                return self._result(flow, TERMS_REJECTED_MESSAGE)

        changed = self.merge_extracted(flow, extracted)

        if not flow.data.is_complete():
            flow.stage = self._collection_stage(flow)
            flow.next_question = ai["response"]
            return self._result(flow, ai["response"], should_start_application=ai.get("should_start_application"))

        if flow.stage == STAGE_TERMS_REVIEW:
            response = self._present_terms(flow) if changed else TERMS_REMINDER_MESSAGE
        elif flow.calculated_terms is None or flow.terms_stale:
            response = self._present_terms(flow)
        elif extracted.get("terms_accepted"):
            # Unchanged terms declined earlier can still be accepted.
            flow.stage = STAGE_TERMS_REVIEW
            flow.data.terms_accepted = True
            flow.data.terms_rejected = None
            return self.submit_application(flow, user_id)
        else:
            response = ADJUST_DETAILS_MESSAGE
        flow.next_question = response
        return self._result(flow, response)

    def merge_extracted(self, flow: ApplicationFlow, extracted: Dict[str, Any]) -> List[str]:
        """Apply extracted values to the flow; returns the names of fields that changed."""
        if flow.stage == STAGE_COMPLETE:
            return []

        changed = []
        for key, value in extracted.items():
            if key in TRANSIENT_FIELDS or value in (None, ""):
                continue
            if key in flow.manually_edited_fields:
                logger.info("Preserving manually edited field %s = %r", key, flow.data.get(key))
                continue
            if flow.data.get(key) == value:
                continue
            flow.data.set(key, value)
            changed.append(key)

        if changed and flow.calculated_terms is not None:
            flow.terms_stale = True
        return changed

    def mark_field_edited(self, conversation_id: str, field_name: str, value: Any) -> Optional[ApplicationFlow]:
        """Set a field from an explicit user edit and lock it against extraction."""
        flow = self.registry.get(conversation_id)
        if flow is None:
            return None
        if flow.stage == STAGE_COMPLETE:
            raise ValueError("This application has already been submitted and can no longer be edited")

        normalized = normalize_field_value(field_name, value)
        if flow.data.get(field_name) != normalized and flow.calculated_terms is not None:
            flow.terms_stale = True
        flow.data.set(field_name, normalized)
        flow.manually_edited_fields.add(field_name)
        logger.info("Marked field as manually edited: %s for conversation %s", field_name, conversation_id)
        return flow

    # --- terms & submission ---

    def _present_terms(self, flow: ApplicationFlow) -> str:
        terms = self.calculator.calculate(flow.data.as_dict())
        flow.calculated_terms = terms
        flow.terms_stale = False
        flow.stage = STAGE_TERMS_REVIEW
        flow.data.terms_accepted = None
        flow.data.terms_rejected = None
        return self._terms_summary(flow, terms)

    @staticmethod
    def _terms_summary(flow: ApplicationFlow, terms: CalculatedTerms) -> str:
        data = flow.data
        shown = terms.display()
        return (
            "Excellent! I have all your information. Here are your personalized loan terms:\n\n"
            f"📋 **Your {data.loan_type} Details:**\n"
            f"• Loan Amount: {format_inr(data.loan_amount)}\n"
            f"• Interest Rate: {shown['interest_rate']}\n"
            f"• Loan Term: {shown['loan_term']}\n"
            f"• Monthly Payment: {shown['monthly_payment']}\n"
            f"• Total Amount: {shown['total_amount']}\n\n"
            f"💡 **Why this rate?** Based on your credit score of {data.credit_score}, monthly income "
            f"of {format_inr(data.monthly_income)}, and loan type.\n\n"
            "Would you like to **accept these terms** and proceed with your application? "
            "Just say \"yes\" to accept or \"no\" if you'd like to modify anything."
        )

    def build_record(self, flow: ApplicationFlow, user_id: str) -> Dict[str, Any]:
        terms = flow.calculated_terms or self.calculator.calculate(flow.data.as_dict())
        data = flow.data
        return {
            "applicant_name": data.applicant_name,
            "loan_amount": data.loan_amount,
            "loan_type": data.loan_type,
            "credit_score": data.credit_score,
            "monthly_income": data.monthly_income,
            "employment_status": data.employment_status,
            "loan_purpose": data.loan_purpose or DEFAULT_LOAN_PURPOSE,
            "interest_rate": f"{terms.interest_rate:.2f}",
            "loan_term": terms.loan_term_years,
            "status": "pending",
            "user_id": user_id,
        }

    def submit_application(self, flow: ApplicationFlow, user_id: str) -> Dict[str, Any]:
        record = self.build_record(flow, user_id)
        try:
            created = self.application_store.create_application(record)
        except Exception as e:
            logger.exception("Error creating loan application for %s", flow.conversation_id)
            return self._result(
                flow,
                f"Something went wrong while submitting: {e}. Please contact support or try again.",
            )

        if not created or not created.get("id"):
            logger.warning("Application store returned no id for %s", flow.conversation_id)
            return self._result(flow, SUBMISSION_FAILED_MESSAGE)

        flow.application_id = str(created["id"])
        flow.stage = STAGE_COMPLETE
        flow.is_complete = True
        flow.next_question = None
        logger.info("Application %s submitted for conversation %s", flow.application_id, flow.conversation_id)

        self.notifier.emit(
            APPLICATION_CREATED,
            {"application_id": flow.application_id, "user_id": user_id, "conversation_id": flow.conversation_id},
        )

        shown = flow.calculated_terms.display() if flow.calculated_terms else {}
        response = (
            "🎉 **Application Submitted Successfully!**\n\n"
            f"Your {flow.data.loan_type} application has been submitted with the following terms:\n"
            f"• Monthly Payment: {shown.get('monthly_payment')}\n"
            f"• Interest Rate: {shown.get('interest_rate')}\n"
            f"• Loan Term: {shown.get('loan_term')}\n\n"
            f"**Application ID:** {flow.application_id[:8]}\n\n"
            "You can track your application status in the Loan Applications section. Our team will "
            "review your application and get back to you within 24-48 hours.\n\n"
            "Thanks for choosing LoanWise! 🏦"
        )
        return self._result(flow, response, should_create_application=True)

    # --- stored applications ---

    def get_user_applications(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            return self.application_store.list_applications(user_id)
        except Exception:
            logger.exception("Error fetching applications for user %s", user_id)
            return []

    def withdraw_application(self, application_id: str) -> bool:
        try:
            updated = self.application_store.update_application_status(application_id, "withdrawn")
        except Exception:
            logger.exception("Error withdrawing application %s", application_id)
            return False
        if updated:
            self.notifier.emit(APPLICATION_UPDATED, {"application_id": application_id, "status": "withdrawn"})
        return bool(updated)

    def analyze_application(self, application_id: str) -> Optional[Dict[str, Any]]:
        try:
            record = self.application_store.get_application(application_id)
        except Exception:
            logger.exception("Error loading application %s", application_id)
            return None
        if not record:
            return None
        return self.risk_assessment_agent.analyze_loan_decision(record)

    # --- helpers ---

    @staticmethod
    def _collection_stage(flow: ApplicationFlow) -> str:
        missing = flow.data.missing_fields()
        if len(missing) == len(REQUIRED_FIELDS):
            return STAGE_INITIAL
        return FIELD_STAGES[missing[0]]

    @staticmethod
    def _already_submitted_message(flow: ApplicationFlow) -> str:
        short_id = (flow.application_id or "")[:8]
        return (
            f"Your {flow.data.loan_type or 'loan'} application ({short_id}) has already been submitted. "
            "You can track its status in the Loan Applications section, or start a new conversation "
            "for another application."
        )

    @staticmethod
    def _result(flow: ApplicationFlow, response: str, **flags: Any) -> Dict[str, Any]:
        return {
            "flow": flow,
            "response": response,
            "should_start_application": bool(flags.get("should_start_application")),
            "should_create_application": bool(flags.get("should_create_application")),
            "should_update_application": bool(flags.get("should_update_application")),
        }


__all__ = ["LoanApplicationAgent", "normalize_field_value", "EDITABLE_FIELDS"]
