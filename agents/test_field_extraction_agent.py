# test_field_extraction_agent.py

import os
import sys

# Allow running this test directly (e.g. `python agents/test_field_extraction_agent.py`)
# by ensuring the project root is on sys.path.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest

from agents.field_extraction_agent import (
    FieldExtractionAgent,
    canonical_loan_type,
    format_amount,
    is_loan_domain,
    parse_amount,
)

KNOWN_TYPE_AND_NAME = {"loan_type": "Personal Loan", "applicant_name": "Asha"}


@pytest.fixture
def extractor():
    return FieldExtractionAgent()


def test_loan_type_from_named_loan(extractor):
    assert extractor.extract("I need a vehicle loan") == {"loan_type": "Vehicle Loan"}


def test_loan_type_from_loan_for_phrase(extractor):
    assert extractor.extract("I need a loan for my car")["loan_type"] == "Vehicle Loan"


def test_word_loan_alone_is_not_a_type(extractor):
    assert extractor.extract("I want a loan") == {}


def test_business_owner_is_employment_not_loan_type(extractor):
    result = extractor.extract("I am a business owner")
    assert result == {"employment_status": "Self-employed"}


def test_name_with_loan_and_amount(extractor):
    result = extractor.extract("I'm Rahul and I need a home loan of 30 lakhs")
    assert result == {
        "loan_type": "Home Loan",
        "applicant_name": "Rahul",
        "loan_amount": "3000000",
    }


def test_my_name_is(extractor):
    assert extractor.extract("My name is Asha Verma") == {"applicant_name": "Asha Verma"}


def test_i_am_looking_is_not_a_name(extractor):
    result = extractor.extract("I'm looking for a personal loan")
    assert result == {"loan_type": "Personal Loan"}


def test_nationality_or_profession_is_not_a_name(extractor):
    assert extractor.extract("I am Indian") == {}
    assert extractor.extract("I'm Engineer") == {}


def test_small_income_number_means_lakhs(extractor):
    assert extractor.extract("My monthly income is 5") == {"monthly_income": "500000"}


def test_income_context_never_sets_loan_amount(extractor):
    result = extractor.extract("my salary is 45000 per month")
    assert result == {"monthly_income": "45000"}


def test_income_and_loan_amount_in_one_sentence(extractor):
    result = extractor.extract("I earn 50000 and need a loan of 5 lakh")
    assert result == {"monthly_income": "50000", "loan_amount": "500000"}


def test_indian_digit_grouping_and_rupee_sign(extractor):
    assert extractor.extract("I need a loan of ₹5,00,000") == {"loan_amount": "500000"}


def test_crore_amount(extractor):
    assert extractor.extract("loan amount 1.5 crore") == {"loan_amount": "15000000"}


def test_bare_amount_goes_to_income_first(extractor):
    assert extractor.extract("45000", KNOWN_TYPE_AND_NAME) == {"monthly_income": "45000"}


def test_bare_amount_goes_to_loan_amount_once_income_known(extractor):
    current = dict(KNOWN_TYPE_AND_NAME, monthly_income="50000")
    assert extractor.extract("5 lakh", current) == {"loan_amount": "500000"}


def test_bare_three_digits_is_credit_score(extractor):
    current = dict(KNOWN_TYPE_AND_NAME, monthly_income="50000", loan_amount="300000")
    assert extractor.extract("720", current) == {"credit_score": 720}


def test_credit_score_out_of_range_is_ignored(extractor):
    assert extractor.extract("my credit score is 900") == {}


def test_credit_score_phrase(extractor):
    assert extractor.extract("my cibil score is 760") == {"credit_score": 760}


@pytest.mark.parametrize(
    "message, expected",
    [
        ("I am self-employed", "Self-employed"),
        ("I'm unemployed right now", "Unemployed"),
        ("I am employed", "Employed"),
        ("I'm a student", "Student"),
        ("I am a salaried professional", "Employed"),
        ("I am not a student", None),
        ("I'm not student anymore", None),
    ],
)
def test_employment_status(extractor, message, expected):
    assert extractor.extract(message).get("employment_status") == expected


def test_acceptance_and_rejection(extractor):
    assert extractor.extract("Yes, I accept") == {"terms_accepted": True}
    assert extractor.extract("sounds good") == {"terms_accepted": True}
    assert extractor.extract("no") == {"terms_rejected": True}
    assert extractor.extract("not interested, thanks") == {"terms_rejected": True}


def test_yes_inside_longer_sentence_is_not_acceptance(extractor):
    result = extractor.extract("yes I want a home loan")
    assert "terms_accepted" not in result
    assert result["loan_type"] == "Home Loan"


def test_bare_name_only_when_name_is_next(extractor):
    assert extractor.extract("Asha Verma", {"loan_type": "Personal Loan"}) == {"applicant_name": "Asha Verma"}
    assert extractor.extract("Asha Verma") == {}
    assert extractor.extract("hello", {"loan_type": "Personal Loan"}) == {}


def test_extract_never_raises(extractor):
    assert extractor.extract(None) == {}
    assert extractor.extract("") == {}


def test_post_process_drops_unnamed_loan_type(extractor):
    assert extractor.post_process({"loan_type": "Personal Loan"}, "I want some money") == {}


def test_post_process_normalizes_amounts(extractor):
    assert extractor.post_process({"monthly_income": "2"}, "my income is 2") == {"monthly_income": "200000"}
    assert extractor.post_process({"loan_amount": "3000000"}, "around 30 lakhs") == {"loan_amount": "3000000"}


def test_post_process_rejects_bad_values(extractor):
    assert extractor.post_process({"credit_score": "950"}, "950") == {}
    assert extractor.post_process("not a dict", "anything") == {}


def test_amount_helpers():
    assert parse_amount("2.5 lakh") == 250000.0
    assert parse_amount("5,00,000") == 500000.0
    assert parse_amount("abc") is None
    assert format_amount(250000.0) == "250000"
    assert canonical_loan_type("car") == "Vehicle Loan"
    assert canonical_loan_type("spaceship") is None


def test_loan_domain_detection():
    assert is_loan_domain("what is the interest rate")
    assert not is_loan_domain("what's the weather like")
