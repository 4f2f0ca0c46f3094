# agents/field_extraction_agent.py

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

LAKH = 100_000
CRORE = 10_000_000
MIN_CREDIT_SCORE = 300
MAX_CREDIT_SCORE = 850

# Checked in order; the first canonical type with a matching keyword wins.
LOAN_TYPE_VOCABULARY: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Business Loan", ("business", "shop", "enterprise")),
    ("Education Loan", ("education", "college", "study", "studies")),
    ("Vehicle Loan", ("vehicle", "car", "bike", "auto")),
    ("Home Loan", ("home", "house", "property")),
    ("Agriculture Loan", ("agriculture", "agricultural", "farming", "farm")),
    ("Gold Loan", ("gold", "jewelry", "jewellery")),
    ("Travel Loan", ("travel",)),
    ("Medical Loan", ("medical",)),
    ("Wedding Loan", ("wedding", "marriage")),
    ("Personal Loan", ("personal",)),
)

AI_EXTRACTABLE_FIELDS = (
    "applicant_name",
    "loan_type",
    "monthly_income",
    "loan_amount",
    "employment_status",
    "credit_score",
    "loan_purpose",
)

_NAME_STOP_WORDS = {
    "looking", "for", "loan", "personal", "business", "education", "vehicle",
    "home", "employed", "unemployed", "working", "seeking", "applying",
    "interested", "student", "income", "salary", "need", "want", "planning",
    "fine", "good", "great", "ready", "sure", "okay", "ok", "well", "happy", "not",
    "indian", "american", "british", "nri", "married", "single", "new", "sorry", "retired",
    "engineer", "doctor", "teacher", "developer", "farmer", "freelancer", "salaried",
}
_NAME_BREAK_WORDS = {"and", "i", "im", "i'm", "my", "from", "but", "with", "here", "so", "who"}
_BARE_NAME_REJECT = {
    "hello", "hi", "hey", "thanks", "thank", "yes", "no", "what", "why", "how", "help",
    "sorry", "please", "nothing", "bye", "hmm", "cool", "nice", "later", "wait", "again",
    "self", "business", "owner", "retired", "salaried", "freelancer", "accept", "reject",
} | {kw for _, keywords in LOAN_TYPE_VOCABULARY for kw in keywords}

_NAME_TOKEN = r"[A-Za-z][A-Za-z.'-]*"
_NAME_PATTERNS = (
    re.compile(r"\bmy\s+(?:full\s+)?name\s+is\s+(" + _NAME_TOKEN + r"(?:\s+" + _NAME_TOKEN + r")*)", re.I),
    # Capitalised token required so "I am looking for..." is never a name.
    re.compile(r"(?:^|\b)(?:[Ii]\s+am|[Ii]['’]m|[Cc]all\s+me)\s+([A-Z][A-Za-z.'-]*(?:\s+[A-Z][A-Za-z.'-]*)*)"),
    re.compile(r"\bname\s*:\s*(" + _NAME_TOKEN + r"(?:\s+" + _NAME_TOKEN + r")*)", re.I),
)

_BARE_NAME_RE = re.compile(r"^\s*[A-Za-z][A-Za-z.'-]*(?:\s+[A-Za-z][A-Za-z.'-]*){0,3}\s*[.!]?\s*$")

_NUM = r"(\d+(?:\.\d+)?)"
_UNIT = r"(lakhs?|lacs?|crores?|cr|k|thousand)"
_UNIT_AMOUNT_RE = re.compile(_NUM + r"\s*" + _UNIT + r"\b", re.I)

_INCOME_CONTEXT_RE = re.compile(r"\b(?:income|salary|earn\w*|per\s*month|monthly)\b", re.I)
_LOAN_CONTEXT_RE = re.compile(r"\b(?:loan|amount|borrow|need|want|looking\s+for|fund|funding)\b", re.I)

_INCOME_VALUE_RE = re.compile(
    r"\b(?:income|salary|earnings?|earn)"
    r"(?:\s+(?:is|of|was))?(?:\s+(?:about|around|approximately|roughly|nearly))?"
    r"\s*:?\s*" + _NUM + r"(?:\s*" + _UNIT + r"\b)?",
    re.I,
)
_PER_MONTH_RE = re.compile(
    _NUM + r"(?:\s*" + _UNIT + r")?\s*(?:per\s*month|a\s+month|/\s*month|monthly)\b",
    re.I,
)
_BARE_AMOUNT_RE = re.compile(
    r"^\s*(?:(?:yes|yeah|yep|it'?s|it\s+is|about|around|approximately)\s+)?"
    + _NUM + r"(?:\s*" + _UNIT + r")?\s*(?:rupees|rs)?\s*[.!]?\s*$",
    re.I,
)
_LOAN_AMOUNT_PATTERNS = (
    re.compile(
        r"\b(?:loan|amount|need|want|looking\s+for|borrow)(?:\s+(?:amount|of))?(?:\s+is)?"
        r"(?:\s+(?:around|about|approximately))?(?:\s+rupees)?(?:\s+of)?\s+(\d{4,}(?:\.\d+)?)",
        re.I,
    ),
    re.compile(r"\b(?:for|about|around|approximately)\s+(\d{4,}(?:\.\d+)?)", re.I),
    re.compile(r"(\d{4,}(?:\.\d+)?)\s+(?:of\s+)?(?:loan|amount|rupees)\b", re.I),
)

_CREDIT_RE = re.compile(
    r"\b(?:credit\s+score|cibil(?:\s+score)?|score)(?:\s+(?:is|of|was))?"
    r"(?:\s+(?:around|about|approximately))?\s*:?\s*(\d{3})\b",
    re.I,
)
_CREDIT_BARE_RE = re.compile(r"^\s*(?:it'?s\s+|it\s+is\s+)?(\d{3})\s*[.!]?\s*$", re.I)

# Acceptance is a whole-utterance match: every word must come from the
# vocabulary and at least one must be a core word.
_ACCEPT_CORE = {"yes", "yeah", "yep", "yup", "sure", "ok", "okay", "accept", "approve", "proceed", "agree", "good"}
_ACCEPT_FILLER = {"i", "please", "the", "terms", "these", "them", "it", "go", "ahead", "sounds", "looks", "lets", "let's"}
_REJECT_CORE = {"no", "nope", "nah", "reject", "decline", "cancel", "not_interested"}
_REJECT_FILLER = {"i", "please", "the", "terms", "these", "them", "it", "thanks", "thank", "you"}

_LOAN_DOMAIN_RE = re.compile(
    r"\b(?:loans?|emi|interest|rate|credit|cibil|income|salary|amount|borrow|lakhs?|lacs?|"
    r"crores?|rupees|bank|apply|application|tenure|repay\w*|employ\w*)\b",
    re.I,
)


def format_amount(value: float) -> str:
    """Render an absolute currency value as a plain decimal string."""
    rounded = round(float(value), 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:.2f}".rstrip("0").rstrip(".")


def unit_multiplier(unit: Optional[str]) -> int:
    unit = (unit or "").lower()
    if unit.startswith(("lakh", "lac")):
        return LAKH
    if unit.startswith("cr"):
        return CRORE
    if unit in {"k", "thousand"}:
        return 1_000
    return 1


def normalize_text(text: str) -> str:
    """Strip rupee markers and Indian digit grouping ("5,00,000" -> "500000")."""
    cleaned = (text or "").replace("₹", " ")
    cleaned = re.sub(r"(?<=\d),(?=\d)", "", cleaned)
    cleaned = re.sub(r"\b(?:rs\.?|inr)\s*(?=\d)", "", cleaned, flags=re.I)
    return re.sub(r"\s+", " ", cleaned).strip()


def parse_amount(raw: Any) -> Optional[float]:
    """Parse "5 lakh", "2.5 crore", "45000" or a number into absolute units."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if raw > 0 else None
    text = normalize_text(str(raw or "")).lower()
    if not text:
        return None
    m = _UNIT_AMOUNT_RE.search(text)
    if m:
        return float(m.group(1)) * unit_multiplier(m.group(2))
    m = re.search(_NUM, text)
    if not m:
        return None
    value = float(m.group(1))
    return value if value > 0 else None


def has_income_context(text: str) -> bool:
    return bool(_INCOME_CONTEXT_RE.search(text or ""))


def has_loan_context(text: str) -> bool:
    return bool(_LOAN_CONTEXT_RE.search(text or ""))


def is_loan_domain(text: str) -> bool:
    """True when the utterance mentions anything loan related at all."""
    if _LOAN_DOMAIN_RE.search(text or ""):
        return True
    return bool(re.search(r"\d", text or ""))


def canonical_loan_type(value: str) -> Optional[str]:
    """Map free text such as "car" or "House Loan" onto the fixed vocabulary."""
    lower = (value or "").lower()
    for loan_type, keywords in LOAN_TYPE_VOCABULARY:
        for keyword in keywords:
            if re.search(r"\b" + re.escape(keyword) + r"\b", lower):
                return loan_type
    return None


def _overlaps(span: Tuple[int, int], taken: List[Tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in taken)


class FieldExtractionAgent:
    """Deterministic, pattern-first extractor for loan application fields.

    `extract` never raises and only reports fields it is confident about.
    `current_fields` is consulted solely to decide where a bare amount
    answer belongs (monthly income first, then loan amount).
    """

    def extract(self, message: str, current_fields: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        try:
            return self._extract(message or "", dict(current_fields or {}))
        except Exception:
            logger.exception("Pattern extraction failed for %r", message)
            return {}

    def _extract(self, message: str, current: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        text = normalize_text(message)
        lower = text.lower()
        if not lower:
            return result

        loan_type = self._extract_loan_type(lower)
        if loan_type:
            result["loan_type"] = loan_type

        name = self._extract_name(text)
        if name:
            result["applicant_name"] = name

        income_span = self._extract_income(text, result)
        self._extract_bare_amount(text, current, result)
        self._extract_loan_amount(text, result, income_span)

        employment = self._extract_employment(lower)
        if employment:
            result["employment_status"] = employment

        credit_score = self._extract_credit_score(text)
        if credit_score is not None:
            result["credit_score"] = credit_score

        signal = self._extract_acceptance(lower)
        if signal is not None:
            result["terms_accepted" if signal else "terms_rejected"] = True

        if not result and current.get("loan_type") and not current.get("applicant_name"):
            name = self._extract_bare_name(text)
            if name:
                result["applicant_name"] = name

        return apply_disambiguation(result, text)

    def post_process(self, raw: Any, message: str) -> Dict[str, Any]:
        """Clean an AI extraction so it obeys the same rules as the patterns."""
        if not isinstance(raw, dict):
            return {}

        text = normalize_text(message)
        lower = text.lower()
        processed: Dict[str, Any] = {}

        for key in AI_EXTRACTABLE_FIELDS:
            value = raw.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            processed[key] = value.strip() if isinstance(value, str) else value

        # A loan type is kept only when the user actually named it.
        loan_type = processed.pop("loan_type", None)
        if isinstance(loan_type, str):
            from_message = self._extract_loan_type(lower)
            words = [w for w in re.findall(r"[a-z]+", loan_type.lower()) if w != "loan"]
            if from_message:
                processed["loan_type"] = from_message
            elif words and all(re.search(r"\b" + re.escape(w) + r"\b", lower) for w in words):
                canonical = canonical_loan_type(loan_type) or loan_type.title()
                if not canonical.endswith("Loan"):
                    canonical += " Loan"
                processed["loan_type"] = canonical

        name = processed.pop("applicant_name", None)
        if isinstance(name, str):
            cleaned = _clean_name(name)
            if cleaned:
                processed["applicant_name"] = cleaned

        for key in ("monthly_income", "loan_amount"):
            if key not in processed:
                continue
            value = parse_amount(processed.pop(key))
            if value is None:
                continue
            if key == "monthly_income" and value < 10:
                value *= LAKH
            elif key == "loan_amount" and value < 100 and re.fullmatch(r"\d+", lower):
                value *= LAKH
            processed[key] = format_amount(value)

        unit_match = _UNIT_AMOUNT_RE.search(lower)
        if unit_match and unit_multiplier(unit_match.group(2)) >= LAKH:
            value = format_amount(float(unit_match.group(1)) * unit_multiplier(unit_match.group(2)))
            if has_income_context(lower):
                processed["monthly_income"] = value
            else:
                processed["loan_amount"] = value

        score = processed.pop("credit_score", None)
        if score is not None:
            try:
                score = int(float(score))
            except (TypeError, ValueError):
                score = None
            if score is not None and MIN_CREDIT_SCORE <= score <= MAX_CREDIT_SCORE:
                processed["credit_score"] = score

        for key in ("employment_status", "loan_purpose"):
            if key in processed and not isinstance(processed[key], str):
                processed.pop(key)

        return apply_disambiguation(processed, text)

    # --- individual fields ---

    @staticmethod
    def _extract_loan_type(lower: str) -> Optional[str]:
        whole = re.sub(r"[^\w\s]", "", lower).strip()
        for loan_type, keywords in LOAN_TYPE_VOCABULARY:
            for keyword in keywords:
                kw = re.escape(keyword)
                if re.search(r"\b" + kw + r"\s+loans?\b", lower):
                    return loan_type
                if re.search(r"\bloans?\s+(?:for|against)\s+(?:(?:a|an|my|the|new|our)\s+)*" + kw + r"\b", lower):
                    return loan_type
                if whole == keyword:
                    return loan_type
        return None

    @staticmethod
    def _extract_name(text: str) -> Optional[str]:
        for pattern in _NAME_PATTERNS:
            m = pattern.search(text)
            if not m:
                continue
            name = _clean_name(m.group(1))
            if name:
                return name
        return None

    @staticmethod
    def _extract_bare_name(text: str) -> Optional[str]:
        """A reply that is nothing but a name, e.g. "Asha Verma"."""
        if not _BARE_NAME_RE.match(text):
            return None
        words = {w.lower() for w in re.findall(r"[A-Za-z]+", text)}
        if words & (_BARE_NAME_REJECT | _NAME_STOP_WORDS | _NAME_BREAK_WORDS):
            return None
        return _clean_name(text)

    @staticmethod
    def _extract_income(text: str, result: Dict[str, Any]) -> Optional[Tuple[int, int]]:
        m = _INCOME_VALUE_RE.search(text)
        if m:
            value = float(m.group(1))
            unit = m.group(2)
            if unit:
                value *= unit_multiplier(unit)
            elif value < 1000:
                # "income is 5" means 5 lakhs.
                value *= LAKH
            result["monthly_income"] = format_amount(value)
            return m.span()

        m = _PER_MONTH_RE.search(text)
        if m:
            value = float(m.group(1))
            unit = m.group(2)
            if unit:
                value *= unit_multiplier(unit)
            elif value < 1000:
                value *= LAKH
            result["monthly_income"] = format_amount(value)
            return m.span()
        return None

    @staticmethod
    def _extract_loan_amount(
        text: str,
        result: Dict[str, Any],
        income_span: Optional[Tuple[int, int]],
    ) -> None:
        if "loan_amount" in result:
            return
        loan_context = has_loan_context(text)
        income_context = has_income_context(text)
        if not (loan_context or (not income_context and "monthly_income" not in result)):
            return

        taken = [income_span] if income_span else []

        for m in _UNIT_AMOUNT_RE.finditer(text):
            if _overlaps(m.span(), taken):
                continue
            result["loan_amount"] = format_amount(float(m.group(1)) * unit_multiplier(m.group(2)))
            return

        for pattern in _LOAN_AMOUNT_PATTERNS:
            for m in pattern.finditer(text):
                if _overlaps(m.span(1), taken):
                    continue
                result["loan_amount"] = format_amount(float(m.group(1)))
                return

    @staticmethod
    def _extract_bare_amount(text: str, current: Dict[str, Any], result: Dict[str, Any]) -> None:
        """Whole-utterance answers like "45000" or "5 lakh"."""
        if "monthly_income" in result or "loan_amount" in result:
            return
        m = _BARE_AMOUNT_RE.match(text)
        if not m:
            return
        digits, unit = m.group(1), m.group(2)
        if not unit and len(digits.split(".")[0]) < 4:
            # Three digits on their own are a credit score, not money.
            return
        value = format_amount(float(digits) * unit_multiplier(unit))
        if not current.get("monthly_income"):
            result["monthly_income"] = value
        elif not current.get("loan_amount") and (unit or len(digits.split(".")[0]) >= 5):
            result["loan_amount"] = value

    @staticmethod
    def _extract_employment(lower: str) -> Optional[str]:
        if re.search(r"\bself[\s-]?employed\b|\bbusiness\s+owner\b|\bfreelanc\w*", lower):
            return "Self-employed"
        if re.search(r"\bunemployed\b|\bnot\s+employed\b|\bjobless\b", lower):
            return "Unemployed"
        if re.search(r"\bemployed\b|\bsalaried\b", lower):
            return "Employed"
        if re.search(r"\bstudent\b", lower) and not re.search(r"\bnot\s+(?:a\s+)?student\b", lower):
            return "Student"
        if re.search(r"\bretired\b", lower):
            return "Retired"
        return None

    @staticmethod
    def _extract_acceptance(lower: str) -> Optional[bool]:
        signal = re.sub(r"[^\w\s']", " ", lower)
        signal = re.sub(r"\bnot\s+interested\b", "not_interested", signal)
        words = signal.split()
        if not words:
            return None
        if all(w in _ACCEPT_CORE | _ACCEPT_FILLER for w in words) and any(w in _ACCEPT_CORE for w in words):
            return True
        if all(w in _REJECT_CORE | _REJECT_FILLER for w in words) and any(w in _REJECT_CORE for w in words):
            return False
        return None

    @staticmethod
    def _extract_credit_score(text: str) -> Optional[int]:
        m = _CREDIT_RE.search(text) or _CREDIT_BARE_RE.match(text)
        if not m:
            return None
        score = int(m.group(1))
        if MIN_CREDIT_SCORE <= score <= MAX_CREDIT_SCORE:
            return score
        return None


def _clean_name(candidate: str) -> Optional[str]:
    tokens: List[str] = []
    for raw in (candidate or "").split():
        token = raw.strip(".,!?;:")
        if not token or token.lower() in _NAME_BREAK_WORDS:
            break
        tokens.append(token)
        if len(tokens) == 4 or raw[-1] in ".,!?;:":
            break

    for token in tokens:
        parts = re.split(r"[-']", token.lower())
        if any(part in _NAME_STOP_WORDS for part in parts):
            return None

    name = " ".join(tokens)
    if len(name) <= 1:
        return None
    return name.title() if name.islower() else name


def apply_disambiguation(result: Dict[str, Any], text: str) -> Dict[str, Any]:
    """Never let one income-context utterance write both income and loan amount."""
    if "monthly_income" in result and "loan_amount" in result:
        loan_context = has_loan_context(text)
        if has_income_context(text) and not loan_context:
            logger.debug("Dropping loan_amount %s: income context only", result["loan_amount"])
            result.pop("loan_amount")
        elif result["loan_amount"] == result["monthly_income"] and not loan_context:
            result.pop("loan_amount")
    return result
