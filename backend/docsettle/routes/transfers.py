# backend/docsettle/routes/transfers.py
"""
Transfer API routes: create a document from quantities on source lines.
"""
from flask import Blueprint, request, jsonify, current_app
from docsettle.extensions import db
from docsettle.errors import InvalidStateError, RequestValidationError, SettlementError
from docsettle.services import transfer_service
from docsettle.validation import (
    json_body,
    optional_bool,
    optional_date,
    optional_int,
    require_field,
    require_int,
    require_str,
)


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api")


def _parse_source_refs(data: dict) -> list[dict]:
    raw_refs = require_field(data, "source_refs")
    if not isinstance(raw_refs, list) or not raw_refs:
        raise RequestValidationError("source_refs must be a non-empty list")
    refs = []
    for i, raw in enumerate(raw_refs, start=1):
        if not isinstance(raw, dict):
            raise RequestValidationError(f"source_refs[{i}] must be an object")
        refs.append({
            "document_id": require_int(raw, "document_id"),
            "line_id": optional_int(raw, "line_id"),
            "qty": optional_int(raw, "qty"),
        })
    return refs


@transfers_bp.route("/transfers", methods=["POST"])
def create_transfer():
    """
    Create a target document from one or more source documents.

    Request body:
    {
        "source_refs": [{"document_id": int, "line_id": int (optional), "qty": int (optional)}],
        "target_kind": str,
        "post": bool (optional),
        "document_date": "YYYY-MM-DD" (optional),
        "due_date": "YYYY-MM-DD" (optional),
        "reference": str (optional)
    }

    A ref without line_id takes all remaining quantity of the document;
    a ref without qty takes the line's remaining quantity.

    Returns:
        201: Target document created
        400: Malformed request
        404: Source document not found
        409: Insufficient remaining quantity (details list each line)
        422: Invalid transfer (VOID source, cross-domain, bad quantity)
    """
    try:
        data = json_body(request)
        doc = transfer_service.transfer(
            _parse_source_refs(data),
            require_str(data, "target_kind"),
            post=optional_bool(data, "post"),
            document_date=optional_date(data, "document_date"),
            due_date=optional_date(data, "due_date"),
            reference=data.get("reference"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(doc.to_dict()), 201

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation during transfer: %s", e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/void", methods=["POST"])
def void():
    """
    Void a document by id.

    Request body:
    {
        "document_id": int,
        "reason": str (optional)
    }

    Returns:
        200: Document voided (or already VOID)
        404: Not found
        409: Not voidable
    """
    try:
        data = json_body(request)
        doc = transfer_service.void_document(
            require_int(data, "document_id"),
            reason=data.get("reason"),
            user_id=optional_int(data, "user_id"),
        )
        return jsonify(doc.to_dict()), 200

    except InvalidStateError as e:
        current_app.logger.error("Invariant violation during void: %s", e)
        return jsonify(e.to_dict()), e.status_code
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to void document")
        return jsonify({"error": "Internal server error"}), 500
