# Overview: Flask API routes for discount requests; parses input and returns JSON responses.

# backend/optica/routes/discount_requests.py
"""
Discount Request API Routes

DESIGN:
- Any authenticated user may propose a discount (status: pending)
- Authors edit their own pending requests; admins edit any pending request
- Admins approve/reject; authors may decide their own patient-scoped
  requests when self-service is enabled
- Decided requests are final (409 on a second decision)

ERRORS:
    400 ValidationError (with "field" when tied to one input)
    403 AuthorizationError
    404 NotFoundError
    409 ConflictError
    500 anything else (logged)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import DiscountRequest
from ..services import discount_request_service, discount_resolver
from ..services.discount_request_service import Actor
from ..validation import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    validate_payload,
)
from ..decorators import require_auth


discount_requests_bp = Blueprint("discount_requests", __name__, url_prefix="/api")


def _validation_error(e: ValidationError):
    body = {"error": str(e)}
    if e.field:
        body["field"] = e.field
    return jsonify(body), 400


def _current_actor() -> Actor:
    return Actor.from_user(g.current_user)


# =============================================================================
# CREATE / READ / UPDATE
# =============================================================================

@discount_requests_bp.post("/discount-requests")
@require_auth
def create_discount_request_route():
    """
    Propose a discount (status: pending).

    Request body:
    {
        "product_id": 3,
        "patient_id": 7,              (required unless is_global)
        "discount_percentage": "10.00",
        "is_global": false,           (optional, default false)
        "reason": "Loyal patient",    (optional, <= 500 chars)
        "expiry_date": "2026-12-31"   (optional, not in the past)
    }

    Returns:
        201: Discount request created
        400: Invalid input
    """
    try:
        patch = validate_payload(
            model=DiscountRequest,
            payload=request.get_json(silent=True),
            policy=discount_request_service.discount_request_policy(),
            partial=False,
        )

        req = discount_request_service.create_discount_request(
            product_id=patch.get("product_id"),
            patient_id=patch.get("patient_id"),
            discount_percentage=patch.get("discount_percentage"),
            actor=_current_actor(),
            reason=patch.get("reason"),
            expiry_date=patch.get("expiry_date"),
            is_global=patch.get("is_global", False),
        )

        current_app.logger.info(
            "Discount request %s created by user %s", req.id, g.current_user.id
        )
        return jsonify({"discount_request": req.to_dict()}), 201

    except ValidationError as e:
        db.session.rollback()
        return _validation_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create discount request")
        return jsonify({"error": "Internal server error"}), 500


@discount_requests_bp.get("/discount-requests")
@require_auth
def list_discount_requests_route():
    """
    List discount requests, newest first.

    Query params: status, requested_by, patient_id, product_id, is_global,
    pending_only, page (default 1), per_page (default 15, max 100).
    Non-admins only see their own requests.
    """
    try:
        filters = {
            key: request.args.get(key)
            for key in ("status", "requested_by", "patient_id", "product_id", "is_global", "pending_only")
            if request.args.get(key) not in (None, "")
        }
        result = discount_request_service.list_discount_requests(
            _current_actor(),
            filters=filters,
            page=request.args.get("page"),
            per_page=request.args.get("per_page"),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return _validation_error(e)
    except Exception:
        current_app.logger.exception("Failed to list discount requests")
        return jsonify({"error": "Internal server error"}), 500


@discount_requests_bp.get("/discount-requests/<int:request_id>")
@require_auth
def get_discount_request_route(request_id: int):
    try:
        req = discount_request_service.get_discount_request(request_id, _current_actor())
        return jsonify({"discount_request": req.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except AuthorizationError as e:
        current_app.logger.warning(
            "User %s denied access to discount request %s", g.current_user.id, request_id
        )
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to get discount request")
        return jsonify({"error": "Internal server error"}), 500


@discount_requests_bp.put("/discount-requests/<int:request_id>")
@require_auth
def update_discount_request_route(request_id: int):
    """
    Edit a pending request (author or admin).

    Request body: any of product_id, patient_id, discount_percentage,
    is_global, reason, expiry_date.

    Returns:
        200: Updated
        400: Invalid input
        403: Not the author, or no longer pending
        404: Not found
    """
    try:
        req = discount_request_service.update_discount_request(
            request_id,
            request.get_json(silent=True) or {},
            _current_actor(),
        )

        current_app.logger.info(
            "Discount request %s updated by user %s", req.id, g.current_user.id
        )
        return jsonify({"discount_request": req.to_dict()}), 200

    except ValidationError as e:
        db.session.rollback()
        return _validation_error(e)
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except AuthorizationError as e:
        db.session.rollback()
        current_app.logger.warning(
            "User %s denied update of discount request %s: %s", g.current_user.id, request_id, e
        )
        return jsonify({"error": str(e)}), 403
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update discount request")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

def _decide_route(request_id: int, action: str):
    data = request.get_json(silent=True) or {}
    handler = {
        "approve": discount_request_service.approve_discount_request,
        "reject": discount_request_service.reject_discount_request,
    }[action]

    try:
        req = handler(request_id, _current_actor(), notes=data.get("approval_notes"))

        current_app.logger.info(
            "Discount request %s %s by user %s", req.id, req.status, g.current_user.id
        )
        return jsonify({"discount_request": req.to_dict()}), 200

    except ValidationError as e:
        db.session.rollback()
        return _validation_error(e)
    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except AuthorizationError as e:
        db.session.rollback()
        current_app.logger.warning(
            "User %s denied %s of discount request %s", g.current_user.id, action, request_id
        )
        return jsonify({"error": str(e)}), 403
    except ConflictError as e:
        db.session.rollback()
        current_app.logger.warning(
            "Conflicting %s of discount request %s: %s", action, request_id, e
        )
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s discount request", action)
        return jsonify({"error": "Internal server error"}), 500


@discount_requests_bp.post("/discount-requests/<int:request_id>/approve")
@require_auth
def approve_discount_request_route(request_id: int):
    """
    Approve a pending request.

    Request body (optional):
    {
        "approval_notes": "Approved for loyalty program"   (<= 500 chars)
    }

    Returns:
        200: Approved
        403: Not allowed to decide this request
        404: Not found
        409: Already approved or rejected
    """
    return _decide_route(request_id, "approve")


@discount_requests_bp.post("/discount-requests/<int:request_id>/reject")
@require_auth
def reject_discount_request_route(request_id: int):
    """Reject a pending request. Same body and status codes as approve."""
    return _decide_route(request_id, "reject")


# =============================================================================
# RESOLUTION
# =============================================================================

@discount_requests_bp.get("/active-discounts")
@require_auth
def active_discount_route():
    """
    The single winning active discount for a product (and patient).

    Query params: product_id (required), patient_id (optional).

    Returns:
        200: {"discount": {...}} or {"discount": null}
        400: product_id missing or not an integer
    """
    try:
        raw_product_id = request.args.get("product_id")
        if raw_product_id in (None, ""):
            raise ValidationError("product_id is required", "product_id")
        product_id = coerce_int(raw_product_id, "product_id")

        raw_patient_id = request.args.get("patient_id")
        patient_id = coerce_int(raw_patient_id, "patient_id") if raw_patient_id not in (None, "") else None

        winner = discount_resolver.resolve(product_id, patient_id)
        return jsonify({"discount": winner.to_dict() if winner else None}), 200

    except ValidationError as e:
        return _validation_error(e)
    except Exception:
        current_app.logger.exception("Failed to resolve active discount")
        return jsonify({"error": "Internal server error"}), 500
