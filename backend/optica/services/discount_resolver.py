# Overview: Picks the single winning discount for a (product, patient) pair.

"""
Discount Resolver

resolve(product_id, patient_id, as_of) -> ActiveDiscount | None

PRECEDENCE (total order, evaluated in this sequence):
1. Only active candidates count: approved, and expiry_date is NULL or
   on/after the as_of date.
2. Patient-specific discounts for the given patient outrank every global
   discount, whatever the percentages.
3. Higher discount_percentage wins.
4. More recent decided_at wins.
5. Lower id wins.

select_winner() is a pure function over immutable snapshots; resolve() only
adds the database read. Identical snapshots always produce the same winner.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import or_

from ..extensions import db
from ..models import DiscountRequest
from ..models.discounts import STATUS_APPROVED
from optica.time_utils import as_naive_utc, as_of_date, to_iso_date, to_utc_z


@dataclass(frozen=True)
class ActiveDiscount:
    """Plain snapshot of a DiscountRequest row, detached from the session."""
    id: int
    product_id: int
    patient_id: Optional[int]
    is_global: bool
    discount_percentage: Decimal
    status: str
    expiry_date: Optional[date]
    decided_at: Optional[datetime]

    @classmethod
    def from_model(cls, row: DiscountRequest) -> "ActiveDiscount":
        return cls(
            id=row.id,
            product_id=row.product_id,
            patient_id=row.patient_id,
            is_global=bool(row.is_global),
            discount_percentage=Decimal(row.discount_percentage),
            status=row.status,
            expiry_date=row.expiry_date,
            decided_at=row.decided_at,
        )

    @property
    def is_patient_specific(self) -> bool:
        return not self.is_global

    def is_active(self, on: date) -> bool:
        if self.status != STATUS_APPROVED:
            return False
        return self.expiry_date is None or self.expiry_date >= on

    def applies_to(self, product_id: int, patient_id: Optional[int]) -> bool:
        if self.product_id != product_id:
            return False
        if self.is_global:
            return True
        return patient_id is not None and self.patient_id == patient_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "patient_id": self.patient_id,
            "is_global": self.is_global,
            "is_patient_specific": self.is_patient_specific,
            "discount_percentage": f"{self.discount_percentage:.2f}",
            "expiry_date": to_iso_date(self.expiry_date),
            "decided_at": to_utc_z(self.decided_at),
        }


def _decided_key(candidate: ActiveDiscount) -> tuple:
    decided = as_naive_utc(candidate.decided_at)
    if decided is None:
        return (False, datetime.min)
    return (True, decided)


def rank_candidates(candidates: Iterable[ActiveDiscount]) -> list[ActiveDiscount]:
    """
    Order one partition best-first: percentage desc, decided_at desc, id asc.

    Stable sorts applied from the least to the most significant key.
    Undated candidates rank after dated ones.
    """
    ranked = sorted(candidates, key=lambda c: c.id)
    ranked.sort(key=_decided_key, reverse=True)
    ranked.sort(key=lambda c: c.discount_percentage, reverse=True)
    return ranked


def select_winner(
    candidates: Iterable[ActiveDiscount],
    product_id: int,
    patient_id: Optional[int],
    as_of: datetime | date | None = None,
) -> Optional[ActiveDiscount]:
    """Pure selection over a snapshot list. See module docstring for the rules."""
    on = as_of_date(as_of)
    eligible = [
        c for c in candidates
        if c.is_active(on) and c.applies_to(product_id, patient_id)
    ]
    if not eligible:
        return None

    patient_specific = [c for c in eligible if not c.is_global]
    pool = patient_specific or eligible
    return rank_candidates(pool)[0]


def load_candidates(
    product_id: int,
    patient_id: Optional[int],
    as_of: datetime | date | None = None,
) -> list[ActiveDiscount]:
    """Active rows for the product that are global or belong to the patient."""
    on = as_of_date(as_of)

    q = db.session.query(DiscountRequest).filter(
        DiscountRequest.product_id == product_id,
        DiscountRequest.status == STATUS_APPROVED,
        or_(DiscountRequest.expiry_date.is_(None), DiscountRequest.expiry_date >= on),
    )

    if patient_id is not None:
        q = q.filter(or_(DiscountRequest.is_global.is_(True), DiscountRequest.patient_id == patient_id))
    else:
        q = q.filter(DiscountRequest.is_global.is_(True))

    return [ActiveDiscount.from_model(row) for row in q.all()]


def resolve(
    product_id: int,
    patient_id: Optional[int] = None,
    as_of: datetime | date | None = None,
) -> Optional[ActiveDiscount]:
    """Winning active discount for (product, patient), or None."""
    candidates = load_candidates(product_id, patient_id, as_of)
    return select_winner(candidates, product_id, patient_id, as_of)
