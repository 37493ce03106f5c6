# Overview: Service-layer operations for discount requests; the only writer of DiscountRequest rows.

"""
Discount Request Lifecycle Service

================================================================================
PURPOSE: Enforce pending -> approved | rejected for proposed product discounts
================================================================================

STATE MACHINE:
    PENDING -> APPROVED
    PENDING -> REJECTED

    PENDING:  Editable by its author or an admin. Does NOT affect prices.
    APPROVED: Terminal. Affects prices until expiry_date has passed.
    REJECTED: Terminal. Never affects prices.

RULES (NON-NEGOTIABLE):
1. discount_percentage lies in (0, 100] on every write
2. is_global = true forces patient_id = NULL; otherwise a patient is required
3. Only pending requests can be edited, approved or rejected
4. Approving or rejecting a decided request is a ConflictError, there is no undo
5. Approve/reject is one conditional UPDATE guarded on status = 'pending'
6. Rows are never deleted

AUTHORIZATION:
- Admins may act on any request.
- Other users may view and edit only the requests they authored.
- Self-service approve/reject: the author of a patient-scoped request may
  decide it when DISCOUNT_SELF_SERVICE_ENABLED is on. Global requests always
  need an admin.

Every operation takes an explicit Actor; nothing reads the current user.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import DiscountRequest, Patient, Product
from ..models.discounts import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    VALID_STATUSES,
    DiscountScope,
    GlobalScope,
    PatientScope,
)
from ..validation import (
    AuthorizationError,
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_date,
    coerce_int,
    validate_discount_percentage,
    validate_notes,
    validate_payload,
)
from .concurrency import conditional_transition, lock_for_update
from .price_calculator import calculate
from optica.time_utils import as_of_date, today, utcnow


DEFAULT_APPROVAL_NOTES = "Approved by administrator."
DEFAULT_REJECTION_NOTES = "Rejected by administrator."

DEFAULT_PER_PAGE = 15
MAX_PER_PAGE = 100

UPDATABLE_FIELDS = {
    "product_id",
    "patient_id",
    "discount_percentage",
    "reason",
    "expiry_date",
    "is_global",
}


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing a lifecycle operation."""
    id: int
    is_admin: bool = False

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, is_admin=bool(user.is_admin))


def discount_request_policy() -> ModelValidationPolicy:
    return ModelValidationPolicy(
        writable_fields=set(UPDATABLE_FIELDS),
        required_on_create={"product_id", "discount_percentage"},
        max_lengths={"reason": current_app.config.get("DISCOUNT_REASON_MAX_LENGTH", 500)},
    )


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def build_scope(is_global: Any, patient_id: Any) -> DiscountScope:
    """
    Derive the scope from the raw (is_global, patient_id) pair.

    is_global wins: a global request drops any patient_id it was given.
    """
    if coerce_bool(is_global if is_global is not None else False, "is_global"):
        return GlobalScope()
    if patient_id is None:
        raise ValidationError("patient_id is required unless is_global is true", "patient_id")
    return PatientScope(patient_id=coerce_int(patient_id, "patient_id"))


def _require_product(product_id: Any) -> Product:
    if product_id is None:
        raise ValidationError("product_id is required", "product_id")
    product = db.session.get(Product, coerce_int(product_id, "product_id"))
    if product is None:
        raise ValidationError("Product not found", "product_id")
    return product


def _require_patient(patient_id: int) -> Patient:
    patient = db.session.get(Patient, patient_id)
    if patient is None:
        raise ValidationError("Patient not found", "patient_id")
    return patient


def _validate_expiry(expiry_date: Any):
    if expiry_date is None:
        return None
    expiry = coerce_date(expiry_date, "expiry_date")
    if expiry < today():
        raise ValidationError("expiry_date cannot be in the past", "expiry_date")
    return expiry


def _validate_reason(reason: Any) -> str | None:
    return validate_notes(
        reason,
        field="reason",
        max_length=current_app.config.get("DISCOUNT_REASON_MAX_LENGTH", 500),
    )


def _snapshot_prices(req: DiscountRequest, product: Product) -> None:
    """Record list price and single-unit discounted price at write time."""
    result = calculate(product.price, 1, req)
    req.original_price = result.unit_price
    req.discounted_price = result.final_total


def _load(request_id: int) -> DiscountRequest:
    req = db.session.get(DiscountRequest, request_id)
    if req is None:
        raise NotFoundError("Discount request not found")
    return req


def _require_owner_or_admin(req: DiscountRequest, actor: Actor) -> None:
    if actor.is_admin or req.requested_by == actor.id:
        return
    raise AuthorizationError("You can only access your own discount requests")


def can_decide(req: DiscountRequest, actor: Actor) -> bool:
    """Whether actor may approve or reject req (status is checked separately)."""
    if actor.is_admin:
        return True
    if not current_app.config.get("DISCOUNT_SELF_SERVICE_ENABLED", True):
        return False
    return (not req.is_global) and req.requested_by == actor.id


# =============================================================================
# LIFECYCLE OPERATIONS
# =============================================================================

def create_discount_request(
    product_id: Any,
    patient_id: Any,
    discount_percentage: Any,
    actor: Actor,
    reason: Any = None,
    expiry_date: Any = None,
    is_global: Any = False,
) -> DiscountRequest:
    """
    Create a new discount request (status: pending).

    Raises:
        ValidationError: bad percentage, unknown product or patient,
            non-global request without a patient, expiry_date in the past
    """
    pct = validate_discount_percentage(discount_percentage)
    product = _require_product(product_id)
    scope = build_scope(is_global, patient_id)
    if isinstance(scope, PatientScope):
        _require_patient(scope.patient_id)
    expiry = _validate_expiry(expiry_date)

    req = DiscountRequest(
        product_id=product.id,
        discount_percentage=pct,
        reason=_validate_reason(reason),
        expiry_date=expiry,
        status=STATUS_PENDING,
        requested_by=actor.id,
    )
    req.apply_scope(scope)
    _snapshot_prices(req, product)

    db.session.add(req)
    db.session.commit()
    return req


def update_discount_request(request_id: int, fields: dict, actor: Actor) -> DiscountRequest:
    """
    Edit a pending request. Every invariant is re-checked on the merged row.

    Raises:
        NotFoundError: request does not exist
        AuthorizationError: actor is neither the author nor an admin, or the
            request is no longer pending
        ValidationError: merged values break an invariant
    """
    req = lock_for_update(
        db.session.query(DiscountRequest).filter(DiscountRequest.id == request_id)
    ).first()
    if req is None:
        raise NotFoundError("Discount request not found")

    _require_owner_or_admin(req, actor)
    if not req.is_pending:
        raise AuthorizationError("Only pending discount requests can be modified")

    patch = validate_payload(
        model=DiscountRequest,
        payload=fields,
        policy=discount_request_policy(),
        partial=True,
    )

    pct = validate_discount_percentage(patch.get("discount_percentage", req.discount_percentage))
    product = _require_product(patch.get("product_id", req.product_id))

    is_global = patch.get("is_global", req.is_global)
    patient_id = patch.get("patient_id", req.patient_id)
    scope = build_scope(is_global, patient_id)
    if isinstance(scope, PatientScope):
        _require_patient(scope.patient_id)

    expiry = _validate_expiry(patch.get("expiry_date", req.expiry_date))

    req.product_id = product.id
    req.discount_percentage = pct
    req.apply_scope(scope)
    req.expiry_date = expiry
    if "reason" in patch:
        req.reason = _validate_reason(patch["reason"])
    _snapshot_prices(req, product)

    db.session.commit()
    return req


def _decide(
    request_id: int,
    actor: Actor,
    *,
    to_status: str,
    values: dict,
) -> DiscountRequest:
    req = _load(request_id)

    if not can_decide(req, actor):
        raise AuthorizationError(
            "Only an administrator can approve or reject this discount request"
        )
    if not req.is_pending:
        raise ConflictError(f"Discount request has already been {req.status}")

    now = utcnow()
    changed = conditional_transition(
        DiscountRequest,
        req.id,
        from_status=STATUS_PENDING,
        values={"status": to_status, "approved_by": actor.id, "decided_at": now, **values},
    )
    if not changed:
        db.session.rollback()
        raise ConflictError("Discount request has already been decided")

    if to_status == STATUS_APPROVED:
        product = db.session.get(Product, req.product_id)
        product.has_discounts = True

    db.session.commit()
    db.session.refresh(req)
    return req


def approve_discount_request(request_id: int, actor: Actor, notes: Any = None) -> DiscountRequest:
    """
    PENDING -> APPROVED.

    approval_notes falls back to the request reason, then to a default text.

    Raises:
        NotFoundError, AuthorizationError, ConflictError (already decided),
        ValidationError (notes too long)
    """
    notes = validate_notes(
        notes,
        field="approval_notes",
        max_length=current_app.config.get("APPROVAL_NOTES_MAX_LENGTH", 500),
    )
    req = _load(request_id)
    return _decide(
        request_id,
        actor,
        to_status=STATUS_APPROVED,
        values={"approval_notes": notes or req.reason or DEFAULT_APPROVAL_NOTES},
    )


def reject_discount_request(request_id: int, actor: Actor, notes: Any = None) -> DiscountRequest:
    """PENDING -> REJECTED. Same authorization and conflict rules as approval."""
    notes = validate_notes(
        notes,
        field="approval_notes",
        max_length=current_app.config.get("APPROVAL_NOTES_MAX_LENGTH", 500),
    )
    return _decide(
        request_id,
        actor,
        to_status=STATUS_REJECTED,
        values={"rejection_reason": notes or DEFAULT_REJECTION_NOTES},
    )


# =============================================================================
# QUERIES
# =============================================================================

def active_query(as_of=None):
    """Approved requests whose expiry_date is unset or not before as_of."""
    on = as_of_date(as_of)
    return db.session.query(DiscountRequest).filter(
        DiscountRequest.status == STATUS_APPROVED,
        or_(DiscountRequest.expiry_date.is_(None), DiscountRequest.expiry_date >= on),
    )


def list_active(product_id: int | None = None, patient_id: int | None = None, as_of=None) -> list[DiscountRequest]:
    """
    Active requests, newest decision first (ties: lowest id).

    patient_id keeps the requests that apply to that patient: their own
    plus every global one.
    """
    q = active_query(as_of)
    if product_id is not None:
        q = q.filter(DiscountRequest.product_id == product_id)
    if patient_id is not None:
        q = q.filter(or_(DiscountRequest.is_global.is_(True), DiscountRequest.patient_id == patient_id))
    return q.order_by(DiscountRequest.decided_at.desc(), DiscountRequest.id.asc()).all()


def get_discount_request(request_id: int, actor: Actor) -> DiscountRequest:
    req = _load(request_id)
    _require_owner_or_admin(req, actor)
    return req


def list_discount_requests(
    actor: Actor,
    filters: dict | None = None,
    page: Any = None,
    per_page: Any = None,
) -> dict:
    """
    Filtered, paginated listing, newest first.

    Filters: status, requested_by, patient_id, product_id, is_global,
    pending_only. Non-admins only ever see their own requests, whatever
    requested_by says.

    Returns:
        Dict with 'items', 'count' and 'pagination' metadata.
    """
    filters = filters or {}
    q = db.session.query(DiscountRequest)

    status = filters.get("status")
    if status is not None:
        if status not in VALID_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(VALID_STATUSES)}", "status"
            )
        q = q.filter(DiscountRequest.status == status)

    if filters.get("pending_only") is not None and coerce_bool(filters["pending_only"], "pending_only"):
        q = q.filter(DiscountRequest.status == STATUS_PENDING)

    if actor.is_admin:
        if filters.get("requested_by") is not None:
            q = q.filter(DiscountRequest.requested_by == coerce_int(filters["requested_by"], "requested_by"))
    else:
        q = q.filter(DiscountRequest.requested_by == actor.id)

    if filters.get("patient_id") is not None:
        q = q.filter(DiscountRequest.patient_id == coerce_int(filters["patient_id"], "patient_id"))
    if filters.get("product_id") is not None:
        q = q.filter(DiscountRequest.product_id == coerce_int(filters["product_id"], "product_id"))
    if filters.get("is_global") is not None:
        q = q.filter(DiscountRequest.is_global.is_(coerce_bool(filters["is_global"], "is_global")))

    page = coerce_int(page, "page") if page is not None else 1
    per_page = coerce_int(per_page, "per_page") if per_page is not None else DEFAULT_PER_PAGE
    if page < 1:
        raise ValidationError("page must be >= 1", "page")
    if per_page < 1:
        raise ValidationError("per_page must be >= 1", "per_page")
    per_page = min(per_page, MAX_PER_PAGE)

    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = (
        q.order_by(DiscountRequest.created_at.desc(), DiscountRequest.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return {
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
