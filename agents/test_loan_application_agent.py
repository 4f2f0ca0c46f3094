# test_loan_application_agent.py

import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest

from agents.central_context_agent import (
    STAGE_COMPLETE,
    STAGE_INITIAL,
    STAGE_LOAN_DETAILS,
    STAGE_PERSONAL_INFO,
    STAGE_TERMS_REVIEW,
)
from agents.conversation_agent import ConversationAgent
from agents.loan_application_agent import TERMS_REMINDER_MESSAGE, LoanApplicationAgent, normalize_field_value
from utils.database import JsonApplicationStore
from utils.notifications import APPLICATION_CREATED, APPLICATION_UPDATED


class OfflineResponder:
    def is_configured(self):
        return False


class FailingStore(JsonApplicationStore):
    def create_application(self, record):
        raise RuntimeError("database unavailable")


class RejectingStore(JsonApplicationStore):
    def create_application(self, record):
        return None


def make_agent(store=None):
    return LoanApplicationAgent(
        application_store=store if store is not None else JsonApplicationStore(),
        conversation_agent=ConversationAgent(responder=OfflineResponder()),
    )


def reach_terms_review(agent, conversation_id="c1"):
    flow = agent.registry.get_or_create(conversation_id)
    flow.data.loan_type = "Personal Loan"
    flow.data.applicant_name = "Asha"
    flow.data.monthly_income = "50000"
    flow.data.loan_amount = "300000"
    flow.data.employment_status = "Employed"
    result = agent.process_user_input(conversation_id, "720", "u1")
    assert result["flow"].stage == STAGE_TERMS_REVIEW
    return result


def test_full_conversation_to_submission():
    store = JsonApplicationStore()
    agent = make_agent(store)

    result = agent.process_user_input("c1", "I need a personal loan", "u1")
    assert result["flow"].stage == STAGE_PERSONAL_INFO
    assert "full name" in result["response"]

    agent.process_user_input("c1", "My name is Asha", "u1")
    agent.process_user_input("c1", "45000", "u1")
    agent.process_user_input("c1", "3 lakh", "u1")
    agent.process_user_input("c1", "I am employed", "u1")
    result = agent.process_user_input("c1", "720", "u1")

    flow = result["flow"]
    assert flow.data.as_dict() == {
        "loan_type": "Personal Loan",
        "applicant_name": "Asha",
        "monthly_income": "45000",
        "loan_amount": "300000",
        "employment_status": "Employed",
        "credit_score": 720,
    }
    assert flow.stage == STAGE_TERMS_REVIEW
    assert flow.calculated_terms.interest_rate == 11.0
    assert "₹3,00,000" in result["response"]
    assert "11.00%" in result["response"]

    result = agent.process_user_input("c1", "yes", "u1")
    assert result["should_create_application"] is True
    assert flow.stage == STAGE_COMPLETE
    assert flow.is_complete is True
    assert flow.application_id[:8] in result["response"]

    [record] = store.list_applications("u1")
    assert record["interest_rate"] == "11.00"
    assert record["loan_term"] == 3
    assert record["status"] == "pending"
    assert record["loan_purpose"] == "General purpose"


def test_completed_flow_is_read_only():
    agent = make_agent()
    reach_terms_review(agent)
    agent.process_user_input("c1", "yes", "u1")

    result = agent.process_user_input("c1", "I need a loan of 9 lakh", "u1")

    assert "already been submitted" in result["response"]
    assert result["flow"].data.loan_amount == "300000"
    with pytest.raises(ValueError):
        agent.mark_field_edited("c1", "loan_amount", "5 lakh")


def test_rejection_returns_to_collection_and_keeps_fields():
    agent = make_agent()
    reach_terms_review(agent)
    before = agent.get_current_flow("c1").data.as_dict()

    result = agent.process_user_input("c1", "no", "u1")

    flow = result["flow"]
    assert flow.stage == STAGE_LOAN_DETAILS
    assert flow.data.as_dict() == before
    assert flow.data.terms_rejected is True
    assert flow.application_id is None


def test_unrelated_turns_keep_application_complete():
    agent = make_agent()
    reach_terms_review(agent)

    for message in ["what is EMI?", "hello"]:
        result = agent.process_user_input("c1", message, "u1")
        flow = result["flow"]
        assert flow.data.is_complete()
        assert len(flow.data.as_dict()) == 6
        assert flow.stage == STAGE_TERMS_REVIEW
        assert result["response"] == TERMS_REMINDER_MESSAGE


def test_accepting_after_rejection_submits_unchanged_terms():
    store = JsonApplicationStore()
    agent = make_agent(store)
    terms = reach_terms_review(agent)["flow"].calculated_terms
    agent.process_user_input("c1", "no", "u1")

    result = agent.process_user_input("c1", "yes", "u1")

    flow = result["flow"]
    assert result["should_create_application"] is True
    assert flow.stage == STAGE_COMPLETE
    assert flow.calculated_terms == terms
    assert len(store.list_applications("u1")) == 1


def test_changed_amount_after_rejection_represents_terms():
    agent = make_agent()
    first = reach_terms_review(agent)["flow"].calculated_terms
    agent.process_user_input("c1", "no", "u1")

    result = agent.process_user_input("c1", "no", "u1")
    assert result["flow"].stage == STAGE_LOAN_DETAILS
    assert result["flow"].calculated_terms == first

    result = agent.process_user_input("c1", "I need a loan of 4 lakh", "u1")
    flow = result["flow"]
    assert flow.stage == STAGE_TERMS_REVIEW
    assert flow.data.loan_amount == "400000"
    assert flow.calculated_terms.monthly_payment != first.monthly_payment


def test_persistence_failure_keeps_flow_and_allows_retry():
    agent = make_agent(FailingStore())
    reach_terms_review(agent)

    result = agent.process_user_input("c1", "yes", "u1")
    assert "Something went wrong" in result["response"]
    assert result["flow"].stage == STAGE_TERMS_REVIEW
    assert result["flow"].data.is_complete()

    agent.application_store = JsonApplicationStore()
    result = agent.process_user_input("c1", "yes", "u1")
    assert result["flow"].stage == STAGE_COMPLETE


def test_store_without_id_reports_failure():
    agent = make_agent(RejectingStore())
    reach_terms_review(agent)

    result = agent.process_user_input("c1", "yes", "u1")

    assert "issue submitting" in result["response"]
    assert result["flow"].stage == STAGE_TERMS_REVIEW
    assert result["should_create_application"] is False


def test_manual_edit_is_locked_against_extraction():
    agent = make_agent()
    agent.process_user_input("c1", "I need a home loan", "u1")

    flow = agent.mark_field_edited("c1", "loan_amount", "5 lakh")
    assert flow.data.loan_amount == "500000"
    assert "loan_amount" in flow.manually_edited_fields

    agent.process_user_input("c1", "I need a loan of 8 lakh", "u1")
    assert flow.data.loan_amount == "500000"


def test_edit_during_review_requires_fresh_confirmation():
    agent = make_agent()
    first = reach_terms_review(agent)["flow"].calculated_terms

    agent.mark_field_edited("c1", "loan_amount", "200000")
    result = agent.process_user_input("c1", "yes", "u1")

    flow = result["flow"]
    assert flow.stage == STAGE_TERMS_REVIEW
    assert flow.calculated_terms != first
    assert result["should_create_application"] is False

    result = agent.process_user_input("c1", "yes", "u1")
    assert result["flow"].stage == STAGE_COMPLETE


def test_mark_field_edited_validation():
    agent = make_agent()
    assert agent.mark_field_edited("nobody", "loan_amount", "5 lakh") is None

    agent.start_application("u1", "c1")
    with pytest.raises(ValueError):
        agent.mark_field_edited("c1", "favourite_colour", "blue")
    with pytest.raises(ValueError):
        agent.mark_field_edited("c1", "credit_score", "900")
    with pytest.raises(ValueError):
        agent.mark_field_edited("c1", "monthly_income", "lots")


def test_normalize_field_value():
    assert normalize_field_value("monthly_income", "1.5 lakh") == "150000"
    assert normalize_field_value("credit_score", " 705 ") == 705
    assert normalize_field_value("loan_type", "car") == "Vehicle Loan"
    assert normalize_field_value("applicant_name", "  Ravi Kumar ") == "Ravi Kumar"


def test_clear_all_then_fresh_flow():
    agent = make_agent()
    agent.process_user_input("c1", "I need a home loan", "u1")
    agent.process_user_input("c2", "I need a car loan", "u1")

    assert agent.clear_all_flows() == 2
    assert agent.get_current_flow("c1") is None

    result = agent.process_user_input("c1", "hello", "u1")
    assert result["flow"].data.as_dict() == {}
    assert result["flow"].stage == STAGE_INITIAL


def test_start_application_greets_and_resets():
    agent = make_agent()
    agent.process_user_input("c1", "I need a home loan", "u1")

    flow = agent.start_application("u1", "c1", clear_history=True)

    assert flow.data.as_dict() == {}
    assert flow.next_question.startswith("I'd be happy to help")
    assert agent.conversation_agent.get_conversation_context("c1") == []


def test_events_are_emitted():
    agent = make_agent()
    events = []
    agent.notifier.subscribe(APPLICATION_CREATED, events.append)
    agent.notifier.subscribe(APPLICATION_UPDATED, events.append)
    agent.notifier.subscribe(APPLICATION_CREATED, lambda payload: 1 / 0)

    reach_terms_review(agent)
    agent.process_user_input("c1", "yes", "u1")
    application_id = agent.get_current_flow("c1").application_id

    assert events == [{"application_id": application_id, "user_id": "u1", "conversation_id": "c1"}]

    assert agent.withdraw_application(application_id) is True
    assert events[-1] == {"application_id": application_id, "status": "withdrawn"}
    assert agent.get_user_applications("u1")[0]["status"] == "withdrawn"
    assert agent.withdraw_application("missing") is False


def test_user_applications_survive_store_errors():
    class BrokenStore(JsonApplicationStore):
        def list_applications(self, user_id):
            raise RuntimeError("down")

    assert make_agent(BrokenStore()).get_user_applications("u1") == []


def test_analyze_application():
    agent = make_agent()
    reach_terms_review(agent)
    agent.process_user_input("c1", "yes", "u1")
    application_id = agent.get_current_flow("c1").application_id

    analysis = agent.analyze_application(application_id)

    assert analysis["decision"] == "approved"
    assert analysis["interest_rate"] == "11.00"
    assert agent.analyze_application("missing") is None


def test_continue_application_is_read_only():
    agent = make_agent()
    reach_terms_review(agent)
    agent.process_user_input("c1", "yes", "u1")
    application_id = agent.get_current_flow("c1").application_id

    flow = agent.continue_application("c2", application_id)
    assert flow.stage == STAGE_COMPLETE

    result = agent.process_user_input("c2", "I need a car loan", "u1")
    assert "already been submitted" in result["response"]
