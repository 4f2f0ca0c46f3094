# agents/risk_assessment_agent.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from agents.term_calculator_agent import TermCalculatorAgent, format_inr


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _to_score(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _income_impact(income: float) -> str:
    if income > 50_000:
        return "positive"
    return "neutral" if income > 25_000 else "negative"


class RiskAssessmentAgent:
    """Explains a lending decision for a stored application.

    Advisory only: the decision is never written back to the record.
    The debt ratio is loan amount over monthly income.
    """

    def __init__(self, calculator: Optional[TermCalculatorAgent] = None):
        self.calculator = calculator or TermCalculatorAgent()

    def analyze_loan_decision(self, application: Dict[str, Any]) -> Dict[str, Any]:
        income = _to_float(application.get("monthly_income"))
        loan_amount = _to_float(application.get("loan_amount"))
        credit_score = _to_score(application.get("credit_score"))
        employment = str(application.get("employment_status") or "").strip().lower()

        if credit_score is None:
            ratio_text = f"{loan_amount / income:.1f}%" if income > 0 else "N/A"
            ratio_ok = income > 0 and loan_amount / income < 40
            return {
                "decision": "incomplete",
                "reason": "Credit score not provided - cannot make lending decision",
                "interest_rate": "N/A",
                "confidence": 0,
                "overall_score": 0,
                "approval_reasons": [],
                "rejection_risks": ["Credit score not provided"],
                "conditions": ["Please provide your credit score to proceed with the application"],
                "factors": [
                    {"name": "Credit Score", "value": "Not provided", "impact": "negative"},
                    {"name": "Monthly Income", "value": format_inr(income), "impact": _income_impact(income)},
                    {"name": "Debt Ratio", "value": ratio_text, "impact": "positive" if ratio_ok else "negative"},
                ],
            }

        debt_ratio = loan_amount / income if income > 0 else 0.0
        approved = income > 25_000 and credit_score > 600 and debt_ratio < 50

        return {
            "decision": "approved" if approved else "rejected",
            "reason": "Good income and credit profile" if approved else "Income or credit score below requirements",
            "interest_rate": self._interest_rate(application) if approved else "N/A",
            "confidence": 85 if approved else 65,
            "overall_score": self._overall_score(credit_score, income, debt_ratio, employment),
            "approval_reasons": self._approval_reasons(credit_score, income, debt_ratio, employment),
            "rejection_risks": self._rejection_risks(credit_score, income, loan_amount, debt_ratio, employment),
            "conditions": self._conditions(approved, credit_score, income, loan_amount, debt_ratio),
            "factors": [
                {
                    "name": "Credit Score",
                    "value": credit_score,
                    "impact": "positive" if credit_score > 700 else "neutral" if credit_score > 600 else "negative",
                },
                {"name": "Monthly Income", "value": format_inr(income), "impact": _income_impact(income)},
                {
                    "name": "Debt Ratio",
                    "value": f"{debt_ratio:.1f}%",
                    "impact": "positive" if debt_ratio < 40 else "neutral" if debt_ratio < 50 else "negative",
                },
            ],
        }

    def _interest_rate(self, application: Dict[str, Any]) -> str:
        stored = application.get("interest_rate")
        if stored not in (None, ""):
            return str(stored)
        return f"{self.calculator.calculate_interest_rate(application):.2f}"

    @staticmethod
    def _overall_score(credit_score: int, income: float, debt_ratio: float, employment: str) -> int:
        score = 0
        if credit_score > 750:
            score += 30
        elif credit_score > 650:
            score += 20
        elif credit_score > 600:
            score += 10

        if income > 75_000:
            score += 25
        elif income > 50_000:
            score += 20
        elif income > 25_000:
            score += 15

        if debt_ratio < 30:
            score += 25
        elif debt_ratio < 40:
            score += 15
        elif debt_ratio < 50:
            score += 10

        if employment == "employed":
            score += 20
        elif employment == "self-employed":
            score += 15

        return min(100, score)

    @staticmethod
    def _approval_reasons(credit_score: int, income: float, debt_ratio: float, employment: str) -> List[str]:
        reasons = []
        if credit_score > 700:
            reasons.append(f"Excellent credit score ({credit_score})")
        if income > 50_000:
            reasons.append(f"Strong monthly income ({format_inr(income)})")
        if debt_ratio < 40:
            reasons.append(f"Low debt-to-income ratio ({debt_ratio:.1f}%)")
        if employment == "employed":
            reasons.append("Stable employment status")
        return reasons

    @staticmethod
    def _rejection_risks(
        credit_score: int, income: float, loan_amount: float, debt_ratio: float, employment: str
    ) -> List[str]:
        risks = []
        if credit_score < 650:
            risks.append(f"Low credit score ({credit_score}) - below minimum threshold")
        if income < 30_000:
            risks.append(f"Limited monthly income ({format_inr(income)}) - insufficient for loan repayment")
        if debt_ratio > 45:
            risks.append(f"High debt-to-income ratio ({debt_ratio:.1f}%) - may struggle with repayments")
        if not employment or employment == "unemployed":
            risks.append("Unstable employment status - no regular income source")
        if loan_amount > income * 60:
            risks.append("Loan amount too high relative to income - high default risk")
        return risks

    @staticmethod
    def _conditions(
        approved: bool, credit_score: int, income: float, loan_amount: float, debt_ratio: float
    ) -> List[str]:
        conditions = []
        if not approved:
            if credit_score >= 600 and income >= 25_000:
                conditions.append("Consider applying for a smaller loan amount")
            if 550 <= credit_score < 650:
                conditions.append("Improve credit score and reapply after 6 months")
            return conditions

        if 650 <= credit_score < 700:
            conditions.append("Provide additional income verification documents")
        if 35 < debt_ratio < 45:
            conditions.append("Submit detailed monthly expense breakdown")
        if loan_amount > 1_000_000:
            conditions.append("Collateral security required for high-value loans")
        return conditions
