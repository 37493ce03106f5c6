from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..extensions import db
from optica.time_utils import to_utc_z, to_iso_date
from .catalog import money_str


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
VALID_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


@dataclass(frozen=True)
class GlobalScope:
    """Discount applies to every patient buying the product."""

    is_global = True
    patient_id = None


@dataclass(frozen=True)
class PatientScope:
    """Discount applies to exactly one patient."""

    patient_id: int
    is_global = False


DiscountScope = Union[GlobalScope, PatientScope]


class DiscountRequest(db.Model):
    """
    A proposed percentage discount for one product.

    Scope is either global (patient_id NULL, is_global true) or a single
    patient (patient_id set, is_global false). The CHECK constraint keeps the
    two columns consistent; services write them only through apply_scope().

    STATE MACHINE:
        pending -> approved
        pending -> rejected
    approved and rejected are terminal. Rows are never deleted.
    """
    __tablename__ = "discount_requests"
    __table_args__ = (
        db.CheckConstraint(
            "(is_global AND patient_id IS NULL) OR (NOT is_global AND patient_id IS NOT NULL)",
            name="ck_discount_requests_scope",
        ),
        db.CheckConstraint(
            "discount_percentage > 0 AND discount_percentage <= 100",
            name="ck_discount_requests_percentage",
        ),
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_discount_requests_status",
        ),
        db.Index("ix_discount_requests_product_status", "product_id", "status"),
        db.Index("ix_discount_requests_patient_status", "patient_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.id"), nullable=True)
    is_global = db.Column(db.Boolean, nullable=False, default=False)

    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False)

    # Snapshot at create/update time; pricing always recomputes from Product.price
    original_price = db.Column(db.Numeric(10, 2), nullable=True)
    discounted_price = db.Column(db.Numeric(10, 2), nullable=True)

    reason = db.Column(db.Text, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)

    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Set by approve/reject only (approved_by holds the deciding user either way)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("discount_requests", lazy=True))
    patient = db.relationship("Patient", backref=db.backref("discount_requests", lazy=True))
    requester = db.relationship("User", foreign_keys=[requested_by])
    approver = db.relationship("User", foreign_keys=[approved_by])

    @property
    def scope(self) -> DiscountScope:
        if self.is_global:
            return GlobalScope()
        return PatientScope(patient_id=self.patient_id)

    def apply_scope(self, scope: DiscountScope) -> None:
        self.is_global = scope.is_global
        self.patient_id = scope.patient_id

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    def __repr__(self) -> str:
        return (
            f"<DiscountRequest id={self.id} product_id={self.product_id} "
            f"patient_id={self.patient_id} pct={self.discount_percentage} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "patient_id": self.patient_id,
            "is_global": self.is_global,
            "status": self.status,
            "discount_percentage": money_str(self.discount_percentage),
            "original_price": money_str(self.original_price),
            "discounted_price": money_str(self.discounted_price),
            "reason": self.reason,
            "expiry_date": to_iso_date(self.expiry_date),
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "decided_at": to_utc_z(self.decided_at),
            "approval_notes": self.approval_notes,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
