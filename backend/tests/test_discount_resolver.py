"""
Discount resolver tests.

Verifies:
- Patient-specific discounts outrank global ones regardless of percentage
- Tie-breaks: highest percentage, most recent decision, lowest id
- Pending, rejected and expired rows never win
- Discounts for other patients or other products never leak in
- resolve() reads the same answer from the database
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from optica.models.discounts import STATUS_PENDING, STATUS_REJECTED
from optica.services import discount_resolver
from optica.services.discount_resolver import ActiveDiscount, rank_candidates, select_winner
from optica.time_utils import today, utcnow

PRODUCT = 10
PATIENT = 20
AS_OF = date(2026, 3, 1)


def snap(id, pct, *, patient_id=None, status="approved", expiry=None,
         decided=datetime(2026, 1, 1), product_id=PRODUCT):
    return ActiveDiscount(
        id=id,
        product_id=product_id,
        patient_id=patient_id,
        is_global=patient_id is None,
        discount_percentage=Decimal(pct),
        status=status,
        expiry_date=expiry,
        decided_at=decided,
    )


# =============================================================================
# PURE SELECTION
# =============================================================================


class TestSelectWinner:

    def test_no_candidates(self):
        assert select_winner([], PRODUCT, PATIENT, AS_OF) is None

    def test_patient_specific_beats_bigger_global(self):
        global_50 = snap(1, "50")
        patient_5 = snap(2, "5", patient_id=PATIENT)

        winner = select_winner([global_50, patient_5], PRODUCT, PATIENT, AS_OF)
        assert winner.id == 2

    def test_global_used_without_patient(self):
        global_50 = snap(1, "50")
        patient_5 = snap(2, "5", patient_id=PATIENT)

        winner = select_winner([global_50, patient_5], PRODUCT, None, AS_OF)
        assert winner.id == 1

    def test_other_patients_discount_ignored(self):
        global_10 = snap(1, "10")
        someone_else = snap(2, "40", patient_id=PATIENT + 1)

        winner = select_winner([global_10, someone_else], PRODUCT, PATIENT, AS_OF)
        assert winner.id == 1

    def test_other_product_ignored(self):
        other = snap(1, "30", product_id=PRODUCT + 1)
        assert select_winner([other], PRODUCT, None, AS_OF) is None

    def test_highest_percentage_wins(self):
        candidates = [snap(1, "10"), snap(2, "25"), snap(3, "15")]
        assert select_winner(candidates, PRODUCT, None, AS_OF).id == 2

    def test_percentage_tie_goes_to_most_recent_decision(self):
        older = snap(1, "20", patient_id=PATIENT, decided=datetime(2026, 1, 1))
        newer = snap(2, "20", patient_id=PATIENT, decided=datetime(2026, 2, 1))

        assert select_winner([older, newer], PRODUCT, PATIENT, AS_OF).id == 2

    def test_full_tie_goes_to_lowest_id(self):
        a = snap(7, "20", decided=datetime(2026, 1, 1))
        b = snap(3, "20", decided=datetime(2026, 1, 1))

        assert select_winner([a, b], PRODUCT, None, AS_OF).id == 3

    def test_expired_excluded(self):
        expired = snap(1, "50", expiry=AS_OF - timedelta(days=1))
        current = snap(2, "5")

        assert select_winner([expired, current], PRODUCT, None, AS_OF).id == 2

    def test_expiring_today_still_active(self):
        last_day = snap(1, "15", expiry=AS_OF)
        assert select_winner([last_day], PRODUCT, None, AS_OF).id == 1

    def test_expired_patient_discount_falls_back_to_global(self):
        expired = snap(1, "30", patient_id=PATIENT, expiry=AS_OF - timedelta(days=1))
        global_10 = snap(2, "10")

        assert select_winner([expired, global_10], PRODUCT, PATIENT, AS_OF).id == 2

    @pytest.mark.parametrize("status", [STATUS_PENDING, STATUS_REJECTED])
    def test_undecided_or_rejected_never_win(self, status):
        assert select_winner([snap(1, "30", status=status)], PRODUCT, None, AS_OF) is None

    def test_input_order_does_not_matter(self):
        candidates = [
            snap(1, "20", decided=datetime(2026, 1, 1)),
            snap(2, "20", decided=datetime(2026, 1, 5)),
            snap(3, "20", decided=datetime(2026, 1, 5)),
            snap(4, "5"),
        ]
        first = select_winner(candidates, PRODUCT, None, AS_OF)
        second = select_winner(list(reversed(candidates)), PRODUCT, None, AS_OF)

        assert first == second
        assert first.id == 2

    def test_as_of_datetime_uses_its_date(self):
        last_day = snap(1, "15", expiry=date(2026, 3, 1))
        as_of = datetime(2026, 3, 1, 23, 59)

        assert select_winner([last_day], PRODUCT, None, as_of).id == 1

    def test_rank_candidates_order(self):
        ranked = rank_candidates([
            snap(5, "10", decided=datetime(2026, 1, 2)),
            snap(1, "30"),
            snap(4, "10", decided=datetime(2026, 1, 2)),
            snap(2, "10", decided=datetime(2026, 1, 3)),
        ])
        assert [c.id for c in ranked] == [1, 2, 4, 5]

    def test_undated_and_aware_decisions_rank_together(self):
        ranked = rank_candidates([
            snap(1, "10", decided=None),
            snap(2, "10", decided=datetime(2026, 1, 2, tzinfo=timezone.utc)),
            snap(3, "10", decided=datetime(2026, 1, 3)),
            snap(4, "10", decided=None),
        ])
        assert [c.id for c in ranked] == [3, 2, 1, 4]

        winner = select_winner(
            [snap(1, "10", decided=None), snap(2, "10", decided=datetime(2026, 1, 2, tzinfo=timezone.utc))],
            PRODUCT, None, AS_OF,
        )
        assert winner.id == 2


# =============================================================================
# DATABASE-BACKED RESOLUTION
# =============================================================================


class TestResolve:

    def test_no_discounts(self, product, patient):
        assert discount_resolver.resolve(product.id, patient.id) is None

    def test_patient_five_beats_global_fifty(self, product, patient, make_discount):
        make_discount(product, "50")
        mine = make_discount(product, "5", patient=patient)

        winner = discount_resolver.resolve(product.id, patient.id)
        assert winner.id == mine.id
        assert winner.is_patient_specific is True

    def test_walk_in_gets_global(self, product, patient, make_discount):
        glob = make_discount(product, "50")
        make_discount(product, "5", patient=patient)

        assert discount_resolver.resolve(product.id).id == glob.id

    def test_expired_row_excluded(self, product, make_discount):
        make_discount(product, "40", expiry_date=today() - timedelta(days=1))
        assert discount_resolver.resolve(product.id) is None

    def test_pending_row_excluded(self, product, make_discount):
        make_discount(product, "40", status=STATUS_PENDING)
        assert discount_resolver.resolve(product.id) is None

    def test_most_recent_decision_breaks_tie(self, product, make_discount):
        make_discount(product, "20", decided_at=utcnow() - timedelta(days=3))
        recent = make_discount(product, "20", decided_at=utcnow() - timedelta(days=1))

        assert discount_resolver.resolve(product.id).id == recent.id

    def test_other_product_does_not_leak(self, product, lens, make_discount):
        make_discount(lens, "30")
        assert discount_resolver.resolve(product.id) is None

    def test_as_of_in_the_future_drops_expiring_rows(self, product, make_discount):
        make_discount(product, "40", expiry_date=today() + timedelta(days=5))

        assert discount_resolver.resolve(product.id) is not None
        assert discount_resolver.resolve(product.id, as_of=today() + timedelta(days=6)) is None

    def test_snapshot_to_dict(self, product, patient, make_discount):
        row = make_discount(product, "12.5", patient=patient, expiry_date=date(2099, 1, 31))

        data = discount_resolver.resolve(product.id, patient.id).to_dict()
        assert data["id"] == row.id
        assert data["discount_percentage"] == "12.50"
        assert data["expiry_date"] == "2099-01-31"
        assert data["is_global"] is False
        assert data["patient_id"] == patient.id
