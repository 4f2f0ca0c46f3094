# api_server.py
"""Flask JSON API around the loan application agents.

The chat UI posts every user turn to /api/chat; the application panel
reads and edits the current flow through the /api/conversations routes.

Run locally:
  python api_server.py
"""

from __future__ import annotations

from flask import Flask, jsonify, request
from flask_cors import CORS

import logging
import os
import sys
import uuid
from typing import Any, Dict, Optional


# Ensure we can import `agents/*` and `utils/*` regardless of cwd
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.append(PROJECT_ROOT)

from agents.loan_application_agent import LoanApplicationAgent
from utils.database import build_application_store
from utils.env import env_int, load_env
from utils.logger import configure_logging

logger = logging.getLogger(__name__)


def _not_found(message: str):
    return jsonify({"error": message}), 404


def _bad_request(message: str):
    return jsonify({"error": message}), 400


def _turn_payload(conversation_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "conversationId": conversation_id,
        "message": result["response"],
        "flow": result["flow"].to_dict(),
        "shouldStartApplication": result["should_start_application"],
        "shouldCreateApplication": result["should_create_application"],
        "shouldUpdateApplication": result["should_update_application"],
    }


def create_app(loan_agent: Optional[LoanApplicationAgent] = None) -> Flask:
    """Build the Flask app; pass `loan_agent` to inject fakes in tests."""
    app = Flask(__name__)
    CORS(app)

    agent = loan_agent or LoanApplicationAgent(application_store=build_application_store())
    app.config["LOAN_AGENT"] = agent

    @app.route("/api/chat", methods=["POST"])
    def api_chat():
        body = request.get_json(silent=True) or {}
        user_message = str(body.get("message") or "").strip()
        if not user_message:
            return _bad_request("message is required")

        conversation_id = body.get("conversationId") or str(uuid.uuid4())
        user_id = body.get("userId") or "anonymous"

        result = agent.process_user_input(conversation_id, user_message, user_id)
        return jsonify(_turn_payload(conversation_id, result))

    @app.route("/api/conversations/<conversation_id>/start", methods=["POST"])
    def api_start(conversation_id: str):
        body = request.get_json(silent=True) or {}
        flow = agent.start_application(
            body.get("userId") or "anonymous",
            conversation_id,
            clear_history=bool(body.get("clearHistory")),
        )
        return jsonify({"conversationId": conversation_id, "message": flow.next_question, "flow": flow.to_dict()})

    @app.route("/api/conversations/<conversation_id>/flow", methods=["GET"])
    def api_get_flow(conversation_id: str):
        flow = agent.get_current_flow(conversation_id)
        if flow is None:
            return _not_found("No active application flow for this conversation")
        return jsonify({"flow": flow.to_dict()})

    @app.route("/api/conversations/<conversation_id>/fields", methods=["POST"])
    def api_edit_field(conversation_id: str):
        body = request.get_json(silent=True) or {}
        field_name = body.get("field")
        if not field_name:
            return _bad_request("field is required")

        try:
            flow = agent.mark_field_edited(conversation_id, field_name, body.get("value"))
        except ValueError as e:
            return _bad_request(str(e))
        if flow is None:
            return _not_found("No active application flow for this conversation")
        return jsonify({"flow": flow.to_dict()})

    @app.route("/api/conversations/<conversation_id>/continue", methods=["POST"])
    def api_continue(conversation_id: str):
        body = request.get_json(silent=True) or {}
        application_id = body.get("applicationId")
        if not application_id:
            return _bad_request("applicationId is required")

        flow = agent.continue_application(conversation_id, application_id)
        if flow is None:
            return _not_found("Application not found")
        return jsonify({"flow": flow.to_dict()})

    @app.route("/api/conversations/<conversation_id>", methods=["DELETE"])
    def api_clear_flow(conversation_id: str):
        return jsonify({"cleared": agent.clear_flow(conversation_id)})

    @app.route("/api/conversations", methods=["DELETE"])
    def api_clear_all():
        return jsonify({"cleared": agent.clear_all_flows()})

    @app.route("/api/applications", methods=["GET"])
    def api_applications():
        user_id = (request.args.get("userId") or "").strip()
        if not user_id:
            return _bad_request("userId is required")
        return jsonify({"applications": agent.get_user_applications(user_id)})

    @app.route("/api/applications/<application_id>/withdraw", methods=["POST"])
    def api_withdraw(application_id: str):
        if not agent.withdraw_application(application_id):
            return _not_found("Application not found")
        return jsonify({"applicationId": application_id, "status": "withdrawn"})

    @app.route("/api/applications/<application_id>/analysis", methods=["GET"])
    def api_analysis(application_id: str):
        analysis = agent.analyze_application(application_id)
        if analysis is None:
            return _not_found("Application not found")
        return jsonify({"applicationId": application_id, "analysis": analysis})

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify({"ok": True, "store": agent.application_store.debug_backend()})

    return app


if __name__ == "__main__":
    load_env()
    configure_logging()
    port = env_int("PORT", 5000)
    logger.info("Starting loan API server on port %s", port)
    create_app().run(port=port, debug=True)
