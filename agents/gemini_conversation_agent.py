# agents/gemini_conversation_agent.py

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from utils.env import env_float, env_str

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SMALL_TALK_INSTRUCTION = (
    "You are LoanWise, a friendly loan advisor for an Indian lender. "
    "The user said something outside the loan application. Reply warmly in one or two "
    "short sentences. Do NOT ask any question and do NOT invent loan terms, rates or "
    "approvals; the application assistant will ask the next question itself. "
    "Return ONLY the message text."
)

EXTRACTION_INSTRUCTION = (
    "You are a conservative information extractor with expertise in Indian currency.\n"
    "Extract ONLY information explicitly stated in the latest user message.\n\n"
    "FIELDS: applicant_name, loan_type, monthly_income, loan_amount, employment_status, "
    "credit_score, loan_purpose.\n\n"
    "CURRENCY RULES:\n"
    "- 1 lakh = 100000, 1 crore = 10000000; convert to absolute rupees\n"
    "- '30 lakhs' => loan_amount \"3000000\"; '2.5 lakh' => \"250000\"; '1.5 crore' => \"15000000\"\n"
    "- '45000 per month' => monthly_income \"45000\"\n"
    "- A 1-3 digit income ('income is 2') means lakhs => \"200000\"\n"
    "- Never put the same number in both monthly_income and loan_amount\n\n"
    "LOAN TYPE RULES:\n"
    "- Only when a type is named: 'car loan' => \"Vehicle Loan\", 'education loan' => \"Education Loan\"\n"
    "- 'I want a loan' or 'need money' => no loan_type\n\n"
    "credit_score is an integer between 300 and 850.\n"
    "When in doubt, extract nothing. Return ONLY a JSON object, e.g. {} or "
    "{\"loan_amount\": \"500000\"}."
)


class ResponderError(Exception):
    """The external completion service could not produce a reply."""


class GeminiConversationAgent:
    """Gemini-backed free-text responder.

    Used only as a fallback: for AI-assisted extraction when the pattern
    extractor finds nothing, and for small talk outside the loan domain.
    Talks to the Gemini REST API via `requests`.

    Env vars:
    - GEMINI_API_KEY (required for any call)
    - GEMINI_MODEL (optional, default: gemini-2.5-flash)
    - GEMINI_TIMEOUT_SECONDS (optional, default: 10)
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else env_str("GEMINI_API_KEY")
        self.model = model or env_str("GEMINI_MODEL", "gemini-2.5-flash")
        self.timeout_seconds = timeout_seconds or env_float("GEMINI_TIMEOUT_SECONDS", 10.0)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def complete(self, prompt: str, context: Optional[List[Dict[str, str]]] = None) -> str:
        """Free-text reply for `prompt`; raises ResponderError on any failure."""
        parts = [SMALL_TALK_INSTRUCTION]
        transcript = _format_history(context)
        if transcript:
            parts.append(f"Conversation so far:\n{transcript}")
        parts.append(f"User: {prompt}")

        text = self._generate(parts, temperature=0.7).strip()
        if not text:
            raise ResponderError("empty response from Gemini")
        return text

    def extract_fields(
        self,
        message: str,
        current_fields: Optional[Dict[str, Any]] = None,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """Ask Gemini for a JSON extraction; malformed output or errors yield {}."""
        if not self.is_configured():
            return {}

        parts = [
            EXTRACTION_INSTRUCTION,
            f"Current data already collected: {json.dumps(current_fields or {})}",
        ]
        transcript = _format_history((history or [])[-8:])
        if transcript:
            parts.append(f"Conversation history (for context):\n{transcript}")
        parts.append(f"Latest user message: {message}")

        try:
            text = self._generate(parts, temperature=0.1)
        except ResponderError as e:
            logger.warning("AI extraction failed: %s", e)
            return {}

        parsed = _extract_json_object(text)
        if not isinstance(parsed, dict):
            logger.info("Unparseable extraction output: %r", text[:200])
            return {}
        return parsed

    def _generate(self, parts: List[str], *, temperature: float) -> str:
        if not self.api_key:
            raise ResponderError("GEMINI_API_KEY is not configured")

        payload = {
            "contents": [{"role": "user", "parts": [{"text": p} for p in parts]}],
            "generationConfig": {"temperature": temperature},
        }
        try:
            res = requests.post(
                GEMINI_URL.format(model=self.model),
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout_seconds,
            )
            res.raise_for_status()
            data = res.json()
        except (requests.RequestException, ValueError) as e:
            raise ResponderError(str(e)) from e

        try:
            return (
                data.get("candidates", [{}])[0]
                .get("content", {})
                .get("parts", [{}])[0]
                .get("text")
            ) or ""
        except (AttributeError, IndexError) as e:
            raise ResponderError(f"unexpected response shape: {e}") from e


def _format_history(history: Optional[List[Dict[str, str]]]) -> str:
    lines = []
    for turn in history or []:
        if turn.get("role") == "system":
            continue
        lines.append(f"{turn.get('role')}: {turn.get('content')}")
    return "\n".join(lines)


def _extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None

    # Common failure mode: model wraps JSON in markdown or adds extra text.
    # Pull the first {...} block.
    m = re.search(r"\{[\s\S]*\}", text)
    if not m:
        return None

    try:
        return json.loads(m.group(0))
    except ValueError:
        return None
