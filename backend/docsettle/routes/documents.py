# backend/docsettle/routes/documents.py
"""
Document API routes: creation, posting, voiding, and read models.
"""
from flask import Blueprint, request, jsonify, current_app
from docsettle.extensions import db
from docsettle.errors import InvalidStateError, RequestValidationError, SettlementError
from docsettle.services import audit_service, document_service, transfer_service
from docsettle.validation import (
    json_body,
    optional_bool,
    optional_date,
    optional_int,
    require_int,
    require_str,
)


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


def _parse_lines(data: dict) -> list[dict]:
    raw_lines = data.get("lines") or []
    if not isinstance(raw_lines, list):
        raise RequestValidationError("lines must be a list")
    lines = []
    for i, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict):
            raise RequestValidationError(f"Line {i} must be an object")
        qty_field = "ordered_qty" if "ordered_qty" in raw else "qty"
        lines.append({
            "product_id": optional_int(raw, "product_id"),
            "description": raw.get("description"),
            "ordered_qty": require_int(raw, qty_field),
            "unit_price_cents": optional_int(raw, "unit_price_cents") or 0,
        })
    return lines


@documents_bp.route("", methods=["POST"])
def create_document():
    """
    Create a root document (one that is not transferred from another).

    Request body:
    {
        "kind": str,
        "party_id": int,
        "document_date": "YYYY-MM-DD" (optional, default today),
        "due_date": "YYYY-MM-DD" (optional),
        "currency": str (optional),
        "reference": str (optional),
        "description": str (optional),
        "post": bool (optional),
        "lines": [{"product_id": int, "description": str, "ordered_qty": int, "unit_price_cents": int}]
    }

    Returns:
        201: Document created
        400: Invalid request
    """
    try:
        data = json_body(request)
        doc = document_service.create_document(
            kind=require_str(data, "kind"),
            party_id=require_int(data, "party_id"),
            lines=_parse_lines(data),
            document_date=optional_date(data, "document_date"),
            due_date=optional_date(data, "due_date"),
            currency=data.get("currency"),
            reference=data.get("reference"),
            description=data.get("description"),
            user_id=optional_int(data, "user_id"),
            post=optional_bool(data, "post"),
        )
        return jsonify(doc.to_dict()), 201

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation creating document: %s", e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.route("/<int:document_id>", methods=["GET"])
def get_document(document_id: int):
    """
    Get a document with its lines.

    Returns:
        200: Document
        404: Not found
    """
    try:
        doc = document_service.get_document(document_id)
        return jsonify(doc.to_dict()), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@documents_bp.route("/<int:document_id>/post", methods=["POST"])
def post_document(document_id: int):
    """
    Post an OPEN document. Settlement documents become outstanding.

    Returns:
        200: Document posted
        404: Not found
        409: Already posted or VOID
    """
    try:
        data = json_body(request)
        doc = document_service.post_document(document_id, user_id=optional_int(data, "user_id"))
        return jsonify(doc.to_dict()), 200

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation posting document %s: %s", document_id, e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to post document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.route("/<int:document_id>/void", methods=["POST"])
def void_document(document_id: int):
    """
    Void a document and compensate its source lines.

    Request body:
    {
        "reason": str (optional)
    }

    Returns:
        200: Document voided (or already VOID)
        404: Not found
        409: Document still feeds live downstream documents, or has knockoffs
    """
    try:
        data = json_body(request)
        doc = transfer_service.void_document(
            document_id,
            reason=data.get("reason"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(doc.to_dict()), 200

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation voiding document %s: %s", document_id, e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to void document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.route("/<int:document_id>/transferable-lines", methods=["GET"])
def transferable_lines(document_id: int):
    """Lines with quantity left to transfer and the target kinds on offer."""
    try:
        return jsonify(document_service.get_transferable_lines(document_id)), 200
    except InvalidStateError as e:
        current_app.logger.error("Invariant violation reading document %s: %s", document_id, e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@documents_bp.route("/<int:document_id>/lineage", methods=["GET"])
def lineage(document_id: int):
    """Upstream and downstream documents linked through source lines."""
    try:
        return jsonify(document_service.get_lineage(document_id)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@documents_bp.route("/<int:document_id>/events", methods=["GET"])
def document_events(document_id: int):
    try:
        document_service.get_document(document_id)
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    events = audit_service.list_events(document_id=document_id)
    return jsonify({"events": [ev.to_dict() for ev in events]}), 200
