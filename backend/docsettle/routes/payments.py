# backend/docsettle/routes/payments.py
"""
Payment allocation API routes.
"""
from flask import Blueprint, request, jsonify, current_app
from docsettle.extensions import db
from docsettle.errors import InvalidStateError, RequestValidationError, SettlementError
from docsettle.models.documents import DOMAIN_SALES
from docsettle.services import allocation_service
from docsettle.validation import amount_cents, json_body, optional_date, optional_int, require_int


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _parse_knockoffs(data: dict) -> list[dict]:
    raw = data.get("knockoffs") or []
    if not isinstance(raw, list):
        raise RequestValidationError("knockoffs must be a list")
    knockoffs = []
    for i, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise RequestValidationError(f"knockoffs[{i}] must be an object")
        knockoffs.append({
            "document_id": require_int(item, "document_id"),
            "outstanding_before_cents": require_int(item, "outstanding_before_cents"),
            "knockoff_cents": require_int(item, "knockoff_cents"),
        })
    return knockoffs


@payments_bp.route("/auto-distribute", methods=["POST"])
def auto_distribute():
    """
    Propose an oldest-first allocation. Nothing is written.

    Request body:
    {
        "party_id": int,
        "amount_cents": int,
        "domain": "SALES" | "PURCHASE" (optional, default SALES)
    }

    Returns:
        200: {"proposals": [...], "allocated_cents": int, "unallocated_cents": int}
        400/422: Invalid request
    """
    try:
        data = json_body(request)
        amount = amount_cents(data)
        proposals = allocation_service.auto_distribute(
            require_int(data, "party_id"),
            amount,
            data.get("domain") or DOMAIN_SALES,
        )
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code

    allocated = sum(p.knockoff_cents for p in proposals)
    return jsonify({
        "proposals": [p.to_dict() for p in proposals],
        "allocated_cents": allocated,
        "unallocated_cents": amount - allocated,
    }), 200


@payments_bp.route("", methods=["POST"])
def commit_payment():
    """
    Commit a payment with its knockoffs.

    Request body:
    {
        "party_id": int,
        "amount_cents": int,
        "domain": "SALES" | "PURCHASE" (optional),
        "method": "CASH" | "CHEQUE" | "BANK_TRANSFER" | "CARD" | "OTHER" (optional),
        "payment_date": "YYYY-MM-DD" (optional),
        "reference": str (optional),
        "knockoffs": [{"document_id": int, "outstanding_before_cents": int, "knockoff_cents": int}]
    }

    Returns:
        201: Payment committed
        400: Malformed request
        409: Stale allocation (details list each changed document)
        422: Invalid allocation
    """
    try:
        data = json_body(request)
        payment = allocation_service.commit_payment(
            party_id=require_int(data, "party_id"),
            amount_cents=amount_cents(data),
            knockoffs=_parse_knockoffs(data),
            domain=data.get("domain") or DOMAIN_SALES,
            method=data.get("method") or "CASH",
            payment_date=optional_date(data, "payment_date"),
            reference=data.get("reference"),
            note=data.get("note"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(payment.to_dict()), 201

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation committing payment: %s", e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to commit payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.route("", methods=["GET"])
def list_payments():
    """List a party's payments and reversals. Query params: party_id (required), domain."""
    try:
        party_id = require_int(request.args, "party_id")
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    payments = allocation_service.list_payments(party_id, request.args.get("domain"))
    return jsonify({"payments": [p.to_dict() for p in payments]}), 200


@payments_bp.route("/<int:payment_id>", methods=["GET"])
def get_payment(payment_id: int):
    try:
        payment = allocation_service.get_payment(payment_id)
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify(payment.to_dict()), 200


@payments_bp.route("/<int:payment_id>/reverse", methods=["POST"])
def reverse_payment(payment_id: int):
    """
    Reverse a payment, restoring the outstanding of every document it knocked off.

    Request body:
    {
        "reason": str (optional)
    }

    Returns:
        201: Reversal payment
        404: Payment not found
        409: Already reversed, or is itself a reversal
    """
    try:
        data = json_body(request)
        reversal = allocation_service.reverse_payment(
            payment_id,
            reason=data.get("reason"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(reversal.to_dict()), 201

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation reversing payment %s: %s", payment_id, e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse payment")
        return jsonify({"error": "Internal server error"}), 500
