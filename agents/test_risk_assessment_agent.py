# test_risk_assessment_agent.py

import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from agents.risk_assessment_agent import RiskAssessmentAgent


def test_missing_credit_score_is_incomplete():
    analysis = RiskAssessmentAgent().analyze_loan_decision({"monthly_income": "40000", "loan_amount": "400000"})

    assert analysis["decision"] == "incomplete"
    assert analysis["overall_score"] == 0
    assert analysis["factors"][0] == {"name": "Credit Score", "value": "Not provided", "impact": "negative"}


def test_strong_profile_is_approved():
    analysis = RiskAssessmentAgent().analyze_loan_decision(
        {
            "loan_type": "Home Loan",
            "monthly_income": "80000",
            "loan_amount": "500000",
            "credit_score": 760,
            "employment_status": "Employed",
        }
    )

    assert analysis["decision"] == "approved"
    assert analysis["confidence"] == 85
    assert analysis["overall_score"] == 100
    assert "Stable employment status" in analysis["approval_reasons"]
    assert analysis["rejection_risks"] == []
    # 7.5 base, -1.5 credit, -0.25 income band, clamped to the 6% floor.
    assert analysis["interest_rate"] == "6.00"


def test_weak_profile_is_rejected_with_conditions():
    analysis = RiskAssessmentAgent().analyze_loan_decision(
        {
            "monthly_income": "20000",
            "loan_amount": "1500000",
            "credit_score": 580,
            "employment_status": "Unemployed",
        }
    )

    assert analysis["decision"] == "rejected"
    assert analysis["interest_rate"] == "N/A"
    assert "Unstable employment status - no regular income source" in analysis["rejection_risks"]
    assert "Loan amount too high relative to income - high default risk" in analysis["rejection_risks"]
    assert analysis["conditions"] == ["Improve credit score and reapply after 6 months"]


def test_stored_rate_is_reported():
    analysis = RiskAssessmentAgent().analyze_loan_decision(
        {"monthly_income": "50000", "loan_amount": "300000", "credit_score": 720, "interest_rate": "11.00"}
    )
    assert analysis["interest_rate"] == "11.00"
