"""
Domain Expert API Blueprint.

This module provides the Flask endpoints through which a conversational
front end calls the Domain Expert gateway and discovers its tools.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from backend.batch.utilities.domain_expert import QueryGateway, build_tool_schemas

logger = logging.getLogger(__name__)

bp_domain_expert = Blueprint("domain_expert", __name__)

GATEWAY_EXTENSION = "domain_expert_gateway"


def get_gateway() -> QueryGateway:
    """Get the gateway registered on the current app (lazy initialization)."""
    gateway = current_app.extensions.get(GATEWAY_EXTENSION)
    if gateway is None:
        from backend.batch.utilities.domain_expert import build_gateway

        gateway = build_gateway()
        current_app.extensions[GATEWAY_EXTENSION] = gateway
    return gateway


def _bearer_token():
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


@bp_domain_expert.route("/domain-expert/query", methods=["POST"])
async def query_domain():
    """
    Answer a natural language question for one domain.

    Request Body:
        {
            "question": "What was total revenue for Widget in Q3?",
            "domain_id": "sales",
            "credential": "<caller access token>"
        }

    The credential may instead be sent as an ``Authorization: Bearer``
    header.

    Response:
        {"rows": [...], "row_count": 3, "truncated": false}
    or
        {"code": "UngeneratableQuery", "message": "..."}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"code": "BadRequest", "message": "A JSON object body is required."}), 400

    credential = data.get("credential") or _bearer_token()
    response = await get_gateway().handle(
        question=str(data.get("question") or ""),
        domain_id=str(data.get("domain_id") or ""),
        credential=credential,
        request_id=request.headers.get("X-Request-ID"),
    )
    return jsonify(response.to_dict()), response.status


@bp_domain_expert.route("/domain-expert/tools", methods=["GET"])
def list_tools():
    """
    Get the function-calling schemas of every registered domain.

    Response:
        {"tools": [{"type": "function", "function": {...}}, ...]}
    """
    return jsonify({"tools": build_tool_schemas(get_gateway().registry)})


@bp_domain_expert.route("/domain-expert/domains", methods=["GET"])
def list_domains():
    """
    Get the registered domains and their context versions.

    Response:
        {"domains": [{"domain_id": "sales", "version": "1", "tables": [...]}]}
    """
    domains = [
        {
            "domain_id": context.domain_id,
            "version": context.version,
            "description": context.description,
            "tables": [table.qualified_name for table in context.schema_descriptions],
        }
        for context in get_gateway().registry.contexts()
    ]
    return jsonify({"domains": domains})
