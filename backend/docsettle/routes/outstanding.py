# backend/docsettle/routes/outstanding.py
"""
Outstanding ledger read API.
"""
from flask import Blueprint, request, jsonify
from docsettle.errors import SettlementError
from docsettle.services import outstanding_service
from docsettle.validation import optional_date, require_int


outstanding_bp = Blueprint("outstanding", __name__, url_prefix="/api/outstanding")


@outstanding_bp.route("", methods=["GET"])
def list_outstanding():
    """
    List a party's OPEN/PARTIAL settlement documents, oldest first.

    Query params:
        party_id: int (required)
        domain: SALES | PURCHASE (optional)

    Returns:
        200: {"documents": [...], "total_outstanding_cents": int}
        400: Missing/invalid party_id
    """
    try:
        party_id = require_int(request.args, "party_id")
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code

    docs = []
    total = 0
    for doc in outstanding_service.list_outstanding(party_id, request.args.get("domain")):
        docs.append(doc.to_dict(include_lines=False))
        total += -doc.outstanding_cents if doc.is_credit_side else doc.outstanding_cents
    return jsonify({"documents": docs, "total_outstanding_cents": total}), 200


@outstanding_bp.route("/aging", methods=["GET"])
def aging():
    """
    Outstanding aged into current / 1-30 / 31-60 / 61-90 / over 90 days.

    Query params:
        party_id: int (required)
        domain: SALES | PURCHASE (optional)
        as_of: YYYY-MM-DD (optional, default today)
    """
    try:
        party_id = require_int(request.args, "party_id")
        as_of = optional_date(request.args, "as_of")
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify(outstanding_service.aging(party_id, request.args.get("domain"), as_of)), 200
