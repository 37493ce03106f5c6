# Overview: Product-facing pricing: resolves the winning discount and prices a line.

"""
Product Discount Service

Thin layer over discount_resolver + price_calculator for callers that think
in products (sale lines, quotes, the price preview endpoint).

RULES:
- Prices are always recomputed from the current Product.price.
- Product.has_discounts is reported but never used to skip resolution.
- A discount can be applied to a line only if it is active, belongs to the
  product, and is global or for the line's patient.
"""

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import DiscountRequest, Patient, Product
from ..validation import NotFoundError
from . import discount_resolver
from .discount_resolver import ActiveDiscount
from .discount_request_service import list_active
from .price_calculator import PriceResult, calculate, format_money
from optica.time_utils import as_of_date, to_iso_date


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _check_patient(patient_id: Optional[int]) -> None:
    if patient_id is not None and db.session.get(Patient, patient_id) is None:
        raise NotFoundError("Patient not found")


def calculate_product_price(
    product_id: int,
    patient_id: Optional[int] = None,
    quantity: int = 1,
    as_of=None,
) -> PriceResult:
    """
    Price `quantity` units of a product for a patient (or walk-in customer).

    Raises:
        NotFoundError: unknown product or patient
        ValidationError: quantity below 1
    """
    product = _get_product(product_id)
    _check_patient(patient_id)

    winner = discount_resolver.resolve(product.id, patient_id, as_of)
    return calculate(product.price, quantity, winner)


def get_product_discount_info(product_id: int, patient_id: Optional[int] = None) -> dict:
    """Single-unit summary of the best discount for (product, patient)."""
    product = _get_product(product_id)
    _check_patient(patient_id)

    winner = discount_resolver.resolve(product.id, patient_id)
    result = calculate(product.price, 1, winner)

    best = None
    if winner is not None:
        best = {
            "id": winner.id,
            "discount_percentage": f"{winner.discount_percentage:.2f}",
            "expiry_date": to_iso_date(winner.expiry_date),
            "is_patient_specific": winner.is_patient_specific,
        }

    return {
        "product_id": product.id,
        "has_discounts": bool(product.has_discounts),
        "best_discount": best,
        "original_price": format_money(result.original_total),
        "discounted_price": format_money(result.final_total),
        "savings": format_money(result.savings),
    }


def get_active_discounts_for_product(product_id: int) -> list[dict]:
    """Every active discount for the product, highest percentage first."""
    product = _get_product(product_id)

    rows = list_active(product_id=product.id)
    rows.sort(key=lambda r: r.discount_percentage, reverse=True)

    items = []
    for row in rows:
        d = row.to_dict()
        d["patient_label"] = row.patient.full_name if row.patient is not None else "Global"
        items.append(d)
    return items


def validate_discount_application(
    product_id: int,
    discount_id: int,
    patient_id: Optional[int] = None,
    as_of=None,
) -> bool:
    """True iff discount_id may be applied to this product for this patient."""
    row = db.session.get(DiscountRequest, discount_id)
    if row is None:
        return False
    snapshot = ActiveDiscount.from_model(row)
    return snapshot.is_active(as_of_date(as_of)) and snapshot.applies_to(product_id, patient_id)
