# agents/term_calculator_agent.py

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

MIN_RATE = 6.0
MAX_RATE = 18.0

BASE_RATES = {
    "home": 7.5,
    "vehicle": 9.5,
    "personal": 12.0,
    "business": 11.0,
    "education": 10.25,
}
DEFAULT_BASE_RATE = 10.0
DEFAULT_TERM_YEARS = 5

REQUIRED_FOR_TERMS = ("loan_type", "loan_amount", "credit_score", "monthly_income")


@dataclass(frozen=True)
class CalculatedTerms:
    interest_rate: float
    loan_term_years: int
    monthly_payment: int
    total_amount: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def display(self) -> Dict[str, str]:
        return {
            "interest_rate": f"{self.interest_rate:.2f}%",
            "loan_term": f"{self.loan_term_years} years",
            "monthly_payment": format_inr(self.monthly_payment),
            "total_amount": format_inr(self.total_amount),
        }


def format_inr(amount: Any) -> str:
    """Format whole rupees with Indian digit grouping, e.g. 300000 -> ₹3,00,000."""
    value = int(round(float(amount or 0)))
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])
    return f"{sign}₹{digits}"


def loan_category(loan_type: Optional[str]) -> str:
    """Reduce "Vehicle Loan", "car loan", "Auto" etc. to a rate-table key."""
    lower = (loan_type or "").lower().replace("loan", "").strip()
    if lower in {"car", "auto", "bike", "vehicle"}:
        return "vehicle"
    if lower in {"home", "house", "housing"}:
        return "home"
    return lower


def compute_emi(principal: float, annual_rate_percent: float, tenure_months: int) -> float:
    """Monthly payment by the standard amortization formula (unrounded)."""
    if principal <= 0 or tenure_months <= 0:
        return 0.0

    monthly_rate = annual_rate_percent / 100.0 / 12.0
    if monthly_rate <= 0:
        return principal / tenure_months

    factor = (1 + monthly_rate) ** tenure_months
    return principal * monthly_rate * factor / (factor - 1)


class TermCalculatorAgent:
    """Derives interest rate, term and monthly payment from a complete field set."""

    def calculate_interest_rate(self, fields: Mapping[str, Any]) -> float:
        rate = BASE_RATES.get(loan_category(fields.get("loan_type")), DEFAULT_BASE_RATE)

        credit_score = int(fields.get("credit_score") or 0)
        if credit_score >= 750:
            rate -= 1.5
        elif credit_score >= 700:
            rate -= 1.0
        elif credit_score >= 650:
            rate -= 0.5
        elif credit_score < 600:
            rate += 2.0

        income = float(fields.get("monthly_income") or 0)
        if income >= 100_000:
            rate -= 0.5
        elif income >= 75_000:
            rate -= 0.25
        elif income < 25_000:
            rate += 1.0

        if float(fields.get("loan_amount") or 0) >= 5_000_000:
            rate += 0.5

        return round(max(MIN_RATE, min(MAX_RATE, rate)), 2)

    def calculate_loan_term(self, loan_type: Optional[str], loan_amount: Any) -> int:
        amount = float(loan_amount or 0)
        category = loan_category(loan_type)
        if category == "home":
            return 30 if amount > 5_000_000 else 25 if amount > 2_000_000 else 20
        if category == "vehicle":
            return 7 if amount > 1_500_000 else 5
        if category == "personal":
            return 5 if amount > 500_000 else 3
        if category == "business":
            return 10 if amount > 2_000_000 else 7
        return DEFAULT_TERM_YEARS

    def calculate(self, fields: Mapping[str, Any]) -> CalculatedTerms:
        missing = [key for key in REQUIRED_FOR_TERMS if not fields.get(key)]
        if missing:
            raise ValueError(f"Cannot calculate terms without: {', '.join(missing)}")

        interest_rate = self.calculate_interest_rate(fields)
        loan_term_years = self.calculate_loan_term(fields.get("loan_type"), fields.get("loan_amount"))
        months = loan_term_years * 12
        payment = compute_emi(float(fields["loan_amount"]), interest_rate, months)

        return CalculatedTerms(
            interest_rate=interest_rate,
            loan_term_years=loan_term_years,
            monthly_payment=int(round(payment)),
            total_amount=int(round(payment * months)),
        )
