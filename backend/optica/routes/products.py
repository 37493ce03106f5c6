# Overview: Flask API routes for product pricing; parses input and returns JSON responses.

# backend/optica/routes/products.py
"""
Product pricing routes.

All amounts come back as two-decimal strings ("359.98").
SECURITY: All routes require authentication.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import product_discount_service
from ..validation import NotFoundError, ValidationError, coerce_int
from ..decorators import require_auth

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _optional_int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    return coerce_int(raw, name)


def _validation_error(e: ValidationError):
    body = {"error": str(e)}
    if e.field:
        body["field"] = e.field
    return jsonify(body), 400


@products_bp.get("/<int:product_id>/calculate-price")
@require_auth
def calculate_price(product_id: int):
    """
    Price preview for a product line.

    Query params:
    - patient_id: int (optional) - enables patient-specific discounts
    - quantity: int (optional, default 1, >= 1)

    Returns:
        200: PriceResult (unit_price, quantity, original_total,
             discount_percentage, discount_amount, final_total,
             discount_applied, discount_id)
        400: Bad quantity or patient_id
        404: Unknown product or patient
    """
    try:
        patient_id = _optional_int_arg("patient_id")
        quantity = _optional_int_arg("quantity")

        result = product_discount_service.calculate_product_price(
            product_id,
            patient_id=patient_id,
            quantity=1 if quantity is None else quantity,
        )
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return _validation_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to calculate product price")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/discount-info")
@require_auth
def discount_info(product_id: int):
    """Best discount and single-unit prices for (product, patient_id?)."""
    try:
        info = product_discount_service.get_product_discount_info(
            product_id, patient_id=_optional_int_arg("patient_id")
        )
        return jsonify(info), 200

    except ValidationError as e:
        return _validation_error(e)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load product discount info")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/active-discounts")
@require_auth
def active_discounts(product_id: int):
    try:
        items = product_discount_service.get_active_discounts_for_product(product_id)
        return jsonify({"items": items, "count": len(items)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list active discounts")
        return jsonify({"error": "Internal server error"}), 500
