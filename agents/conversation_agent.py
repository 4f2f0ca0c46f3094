# agents/conversation_agent.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from agents.central_context_agent import REQUIRED_FIELDS, TRANSIENT_FIELDS, ApplicationFlow
from agents.field_extraction_agent import FieldExtractionAgent, is_loan_domain
from agents.gemini_conversation_agent import GeminiConversationAgent, ResponderError
from utils.env import env_int

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are LoanWise AI, a professional loan advisor. Collect the loan type, full name, "
    "monthly income, loan amount, employment status and credit score, one question at a "
    "time, and never ask for something the user already provided."
)

ALL_INFORMATION_COLLECTED = (
    "Perfect! I have all the information needed. Let me calculate your personalized loan terms!"
)


def next_missing_field(data: Mapping[str, Any]) -> Optional[str]:
    for name in REQUIRED_FIELDS:
        if data.get(name) in (None, ""):
            return name
    return None


def question_for(field_name: Optional[str], data: Mapping[str, Any]) -> str:
    """The single follow-up question for `field_name` (None means nothing is missing)."""
    if field_name is None:
        return ALL_INFORMATION_COLLECTED
    if field_name == "loan_type":
        return "What type of loan are you looking for? (Personal, Education, Business, Home, Vehicle, etc.)"
    if field_name == "applicant_name":
        loan_type = data.get("loan_type")
        if loan_type:
            article = "An" if str(loan_type)[:1].lower() in "aeiou" else "A"
            return f"Great! {article} {loan_type} is an excellent choice. Could you please tell me your full name?"
        return "Could you please tell me your full name?"
    if field_name == "monthly_income":
        return "Thank you! Now, what's your monthly income in rupees? (e.g., 45000 or 1.5 lakh)"
    if field_name == "loan_amount":
        return "Perfect! How much loan amount are you looking for? (e.g., 5 lakh or 500000)"
    if field_name == "employment_status":
        return "Excellent! Are you currently employed, self-employed, or a student?"
    if field_name == "credit_score":
        return "Great! What's your credit score? If you don't know, you can check it through CIBIL or your bank app."
    raise ValueError(f"No question defined for field: {field_name}")


class ConversationAgent:
    """Dialogue policy for one loan application per conversation.

    Keeps a bounded transcript per conversation id, proposes extracted
    values and decides the single next question. It never mutates a flow;
    merging is the application agent's job.
    """

    def __init__(
        self,
        *,
        extractor: Optional[FieldExtractionAgent] = None,
        responder: Optional[GeminiConversationAgent] = None,
        history_limit: Optional[int] = None,
    ):
        self.extractor = extractor or FieldExtractionAgent()
        self.responder = responder or GeminiConversationAgent()
        self.history_limit = history_limit or env_int("CONVERSATION_HISTORY_LIMIT", 20)
        self._histories: Dict[str, List[Dict[str, str]]] = {}

    def chat(
        self,
        conversation_id: str,
        user_message: str,
        flow: Optional[ApplicationFlow] = None,
    ) -> Dict[str, Any]:
        history = self._history(conversation_id)
        history.append({"role": "user", "content": user_message})

        current = flow.data.as_dict() if flow else {}
        locked = flow.manually_edited_fields if flow else set()

        extracted = self.extractor.extract(user_message, current)
        small_talk = None
        if not extracted:
            if is_loan_domain(user_message):
                extracted = self._extract_with_ai(conversation_id, user_message, current)
            else:
                small_talk = self._small_talk(conversation_id, user_message)

        merged = dict(current)
        for key, value in extracted.items():
            if key in TRANSIENT_FIELDS or key in locked:
                continue
            merged[key] = value

        next_field = next_missing_field(merged)
        response = question_for(next_field, merged)
        if small_talk:
            response = f"{small_talk}\n\n{response}"

        history.append({"role": "assistant", "content": response})
        self._trim(conversation_id)

        return {
            "response": response,
            "extracted_info": extracted,
            "should_start_application": bool(extracted.get("loan_type") or extracted.get("applicant_name")),
            "application_complete": next_field is None,
            "next_field": next_field,
        }

    def _extract_with_ai(self, conversation_id: str, message: str, current: Dict[str, Any]) -> Dict[str, Any]:
        if not self.responder.is_configured():
            return {}
        raw = self.responder.extract_fields(message, current, self._histories.get(conversation_id))
        extracted = self.extractor.post_process(raw, message)
        if extracted:
            logger.info("AI extraction for %s: %s", conversation_id, extracted)
        return extracted

    def _small_talk(self, conversation_id: str, message: str) -> Optional[str]:
        if not self.responder.is_configured():
            return None
        try:
            return self.responder.complete(message, self._histories.get(conversation_id, [])[:-1])
        except ResponderError as e:
            logger.warning("Small-talk reply failed for %s: %s", conversation_id, e)
            return None

    def _history(self, conversation_id: str) -> List[Dict[str, str]]:
        if conversation_id not in self._histories:
            self._histories[conversation_id] = [{"role": "system", "content": SYSTEM_PROMPT}]
        return self._histories[conversation_id]

    def _trim(self, conversation_id: str) -> None:
        history = self._histories[conversation_id]
        if len(history) > self.history_limit + 1:
            self._histories[conversation_id] = [history[0]] + history[-self.history_limit:]

    def get_conversation_context(self, conversation_id: str) -> List[Dict[str, str]]:
        return list(self._histories.get(conversation_id, []))

    def clear_conversation(self, conversation_id: str) -> None:
        had_history = self._histories.pop(conversation_id, None) is not None
        logger.debug("Cleared history for %s (had history: %s)", conversation_id, had_history)

    def clear_all_conversations(self) -> None:
        count = len(self._histories)
        self._histories.clear()
        logger.debug("Cleared all conversation histories (%d)", count)
