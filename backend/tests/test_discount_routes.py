"""
Discount request and pricing API tests.

Verifies:
- Unauthenticated requests return 401
- Create / show / update / list round through the HTTP layer
- Approve / reject status codes (200, 403, 404, 409)
- Error bodies carry "field" for input problems
- Active discount lookup and price preview endpoints
"""

from datetime import timedelta

import pytest

from optica.models import DiscountRequest, Product
from optica.models.discounts import STATUS_APPROVED, STATUS_PENDING
from optica.time_utils import today


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/discount-requests"),
            ("POST", "/api/discount-requests"),
            ("GET", "/api/discount-requests/1"),
            ("PUT", "/api/discount-requests/1"),
            ("POST", "/api/discount-requests/1/approve"),
            ("POST", "/api/discount-requests/1/reject"),
            ("GET", "/api/active-discounts?product_id=1"),
            ("GET", "/api/products/1/calculate-price"),
            ("GET", "/api/products/1/discount-info"),
            ("GET", "/api/products/1/active-discounts"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/discount-requests", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# =============================================================================
# CREATE / SHOW / UPDATE / LIST
# =============================================================================


class TestCreateRoute:

    def test_create_patient_request(self, client, specialist_headers, product, patient):
        resp = client.post("/api/discount-requests", json={
            "product_id": product.id,
            "patient_id": patient.id,
            "discount_percentage": "10.00",
            "reason": "Loyal patient",
        }, headers=specialist_headers)

        assert resp.status_code == 201
        body = resp.json["discount_request"]
        assert body["status"] == STATUS_PENDING
        assert body["discount_percentage"] == "10.00"
        assert body["original_price"] == "199.99"
        assert body["discounted_price"] == "179.99"
        assert body["is_global"] is False

    def test_global_flag_forces_patient_null(self, client, specialist_headers, product, patient):
        resp = client.post("/api/discount-requests", json={
            "product_id": product.id,
            "patient_id": patient.id,
            "discount_percentage": 20,
            "is_global": True,
        }, headers=specialist_headers)

        assert resp.status_code == 201
        assert resp.json["discount_request"]["patient_id"] is None
        assert resp.json["discount_request"]["is_global"] is True

    @pytest.mark.parametrize("percentage", [0, 100.5, "-3"])
    def test_bad_percentage(self, client, specialist_headers, product, patient, percentage):
        resp = client.post("/api/discount-requests", json={
            "product_id": product.id,
            "patient_id": patient.id,
            "discount_percentage": percentage,
        }, headers=specialist_headers)

        assert resp.status_code == 400
        assert resp.json["field"] == "discount_percentage"

    def test_missing_fields(self, client, specialist_headers):
        resp = client.post("/api/discount-requests", json={}, headers=specialist_headers)
        assert resp.status_code == 400
        assert "Missing required fields" in resp.json["error"]

    def test_unknown_field(self, client, specialist_headers, product, patient):
        resp = client.post("/api/discount-requests", json={
            "product_id": product.id,
            "patient_id": patient.id,
            "discount_percentage": 10,
            "status": "approved",
        }, headers=specialist_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "status"

    def test_past_expiry(self, client, specialist_headers, product, patient):
        resp = client.post("/api/discount-requests", json={
            "product_id": product.id,
            "patient_id": patient.id,
            "discount_percentage": 10,
            "expiry_date": (today() - timedelta(days=1)).isoformat(),
        }, headers=specialist_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "expiry_date"


class TestShowUpdateListRoutes:

    @pytest.fixture
    def created(self, client, specialist_headers, product, patient):
        resp = client.post("/api/discount-requests", json={
            "product_id": product.id,
            "patient_id": patient.id,
            "discount_percentage": 10,
        }, headers=specialist_headers)
        return resp.json["discount_request"]

    def test_show_own(self, client, specialist_headers, created):
        resp = client.get(f"/api/discount-requests/{created['id']}", headers=specialist_headers)
        assert resp.status_code == 200
        assert resp.json["discount_request"]["id"] == created["id"]

    def test_show_other_users_request(self, client, receptionist_headers, created):
        resp = client.get(f"/api/discount-requests/{created['id']}", headers=receptionist_headers)
        assert resp.status_code == 403

    def test_show_missing(self, client, admin_headers):
        resp = client.get("/api/discount-requests/999999", headers=admin_headers)
        assert resp.status_code == 404

    def test_update(self, client, specialist_headers, created):
        resp = client.put(
            f"/api/discount-requests/{created['id']}",
            json={"discount_percentage": "15", "reason": "Second pair"},
            headers=specialist_headers,
        )
        assert resp.status_code == 200
        assert resp.json["discount_request"]["discount_percentage"] == "15.00"
        assert resp.json["discount_request"]["reason"] == "Second pair"

    def test_update_by_other_user(self, client, receptionist_headers, created):
        resp = client.put(
            f"/api/discount-requests/{created['id']}",
            json={"reason": "hijack"},
            headers=receptionist_headers,
        )
        assert resp.status_code == 403

    def test_update_after_decision(self, client, admin_headers, created):
        client.post(f"/api/discount-requests/{created['id']}/approve", headers=admin_headers)

        resp = client.put(
            f"/api/discount-requests/{created['id']}",
            json={"reason": "too late"},
            headers=admin_headers,
        )
        assert resp.status_code == 403

    def test_update_invalid(self, client, specialist_headers, created):
        resp = client.put(
            f"/api/discount-requests/{created['id']}",
            json={"discount_percentage": 0},
            headers=specialist_headers,
        )
        assert resp.status_code == 400
        assert resp.json["field"] == "discount_percentage"

    def test_update_missing(self, client, admin_headers, db_session):
        resp = client.put("/api/discount-requests/999999", json={"reason": "x"}, headers=admin_headers)
        assert resp.status_code == 404

    def test_list(self, client, specialist_headers, receptionist_headers, created):
        mine = client.get("/api/discount-requests", headers=specialist_headers)
        theirs = client.get("/api/discount-requests", headers=receptionist_headers)

        assert mine.status_code == 200
        assert mine.json["count"] == 1
        assert mine.json["pagination"]["per_page"] == 15
        assert theirs.json["count"] == 0

    def test_list_bad_page(self, client, admin_headers, db_session):
        resp = client.get("/api/discount-requests?page=0", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "page"


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================


class TestDecisionRoutes:

    @pytest.fixture
    def pending(self, product, patient, specialist_user, make_discount):
        return make_discount(product, "10", patient=patient, status=STATUS_PENDING,
                             requested_by=specialist_user.id)

    @pytest.fixture
    def pending_global(self, product, specialist_user, make_discount):
        return make_discount(product, "10", status=STATUS_PENDING,
                             requested_by=specialist_user.id)

    def test_admin_approves(self, client, admin_headers, pending, db_session):
        resp = client.post(
            f"/api/discount-requests/{pending.id}/approve",
            json={"approval_notes": "Approved for loyalty"},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        body = resp.json["discount_request"]
        assert body["status"] == STATUS_APPROVED
        assert body["approval_notes"] == "Approved for loyalty"
        assert body["decided_at"] is not None

        db_session.expire_all()
        assert db_session.get(Product, pending.product_id).has_discounts is True

    def test_approve_without_body(self, client, admin_headers, pending):
        resp = client.post(f"/api/discount-requests/{pending.id}/approve", headers=admin_headers)
        assert resp.status_code == 200

    def test_reject_after_approve_is_conflict(self, client, admin_headers, pending, db_session):
        client.post(f"/api/discount-requests/{pending.id}/approve", headers=admin_headers)
        resp = client.post(f"/api/discount-requests/{pending.id}/reject", headers=admin_headers)

        assert resp.status_code == 409
        db_session.expire_all()
        assert db_session.get(DiscountRequest, pending.id).status == STATUS_APPROVED

    def test_double_approve_is_conflict(self, client, admin_headers, pending):
        client.post(f"/api/discount-requests/{pending.id}/approve", headers=admin_headers)
        resp = client.post(f"/api/discount-requests/{pending.id}/approve", headers=admin_headers)
        assert resp.status_code == 409

    def test_author_self_rejects(self, client, specialist_headers, pending):
        resp = client.post(
            f"/api/discount-requests/{pending.id}/reject",
            json={"approval_notes": "Patient declined"},
            headers=specialist_headers,
        )
        assert resp.status_code == 200
        assert resp.json["discount_request"]["rejection_reason"] == "Patient declined"

    def test_author_cannot_approve_global(self, client, specialist_headers, pending_global):
        resp = client.post(
            f"/api/discount-requests/{pending_global.id}/approve", headers=specialist_headers
        )
        assert resp.status_code == 403

    def test_other_user_cannot_approve(self, client, receptionist_headers, pending):
        resp = client.post(f"/api/discount-requests/{pending.id}/approve", headers=receptionist_headers)
        assert resp.status_code == 403

    def test_notes_too_long(self, client, admin_headers, pending):
        resp = client.post(
            f"/api/discount-requests/{pending.id}/approve",
            json={"approval_notes": "x" * 501},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json["field"] == "approval_notes"

    def test_missing_request(self, client, admin_headers, db_session):
        resp = client.post("/api/discount-requests/999999/reject", headers=admin_headers)
        assert resp.status_code == 404


# =============================================================================
# RESOLUTION AND PRICING
# =============================================================================


class TestActiveDiscountRoute:

    def test_winner(self, client, specialist_headers, product, patient, make_discount):
        make_discount(product, "50")
        mine = make_discount(product, "5", patient=patient)

        resp = client.get(
            f"/api/active-discounts?product_id={product.id}&patient_id={patient.id}",
            headers=specialist_headers,
        )
        assert resp.status_code == 200
        assert resp.json["discount"]["id"] == mine.id
        assert resp.json["discount"]["discount_percentage"] == "5.00"

    def test_none(self, client, specialist_headers, product):
        resp = client.get(f"/api/active-discounts?product_id={product.id}", headers=specialist_headers)
        assert resp.status_code == 200
        assert resp.json["discount"] is None

    def test_product_required(self, client, specialist_headers):
        resp = client.get("/api/active-discounts", headers=specialist_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "product_id"

    def test_product_not_integer(self, client, specialist_headers):
        resp = client.get("/api/active-discounts?product_id=abc", headers=specialist_headers)
        assert resp.status_code == 400


class TestProductPricingRoutes:

    def test_calculate_price_with_discount(self, client, specialist_headers, product, make_discount):
        row = make_discount(product, "10")

        resp = client.get(
            f"/api/products/{product.id}/calculate-price?quantity=2", headers=specialist_headers
        )
        assert resp.status_code == 200
        assert resp.json == {
            "unit_price": "199.99",
            "quantity": 2,
            "original_total": "399.98",
            "discount_percentage": "10.00",
            "discount_amount": "40.00",
            "final_total": "359.98",
            "discount_applied": True,
            "discount_id": row.id,
        }

    def test_calculate_price_without_discount(self, client, specialist_headers, lens):
        resp = client.get(
            f"/api/products/{lens.id}/calculate-price?quantity=3", headers=specialist_headers
        )
        assert resp.status_code == 200
        assert resp.json["original_total"] == "300.00"
        assert resp.json["discount_amount"] == "0.00"
        assert resp.json["final_total"] == "300.00"
        assert resp.json["discount_applied"] is False

    def test_quantity_defaults_to_one(self, client, specialist_headers, lens):
        resp = client.get(f"/api/products/{lens.id}/calculate-price", headers=specialist_headers)
        assert resp.json["quantity"] == 1
        assert resp.json["final_total"] == "100.00"

    def test_huge_quantity_is_priced_exactly(self, client, specialist_headers, product, make_discount):
        make_discount(product, "10")

        resp = client.get(
            f"/api/products/{product.id}/calculate-price?quantity={10**26}", headers=specialist_headers
        )
        assert resp.status_code == 200
        assert resp.json["quantity"] == 10**26
        assert resp.json["original_total"] == "19999" + "0" * 24 + ".00"
        assert resp.json["discount_amount"] == "19999" + "0" * 23 + ".00"
        assert resp.json["final_total"] == "179991" + "0" * 23 + ".00"

    @pytest.mark.parametrize("qty", ["0", "-2", "1.5"])
    def test_bad_quantity(self, client, specialist_headers, lens, qty):
        resp = client.get(
            f"/api/products/{lens.id}/calculate-price?quantity={qty}", headers=specialist_headers
        )
        assert resp.status_code == 400
        assert resp.json["field"] == "quantity"

    def test_unknown_product(self, client, specialist_headers):
        resp = client.get("/api/products/999999/calculate-price", headers=specialist_headers)
        assert resp.status_code == 404

    def test_unknown_patient(self, client, specialist_headers, lens):
        resp = client.get(
            f"/api/products/{lens.id}/calculate-price?patient_id=999999", headers=specialist_headers
        )
        assert resp.status_code == 404

    def test_discount_info(self, client, specialist_headers, product, patient, make_discount):
        row = make_discount(product, "10", patient=patient)

        resp = client.get(
            f"/api/products/{product.id}/discount-info?patient_id={patient.id}",
            headers=specialist_headers,
        )
        assert resp.status_code == 200
        assert resp.json["best_discount"]["id"] == row.id
        assert resp.json["best_discount"]["is_patient_specific"] is True
        assert resp.json["original_price"] == "199.99"
        assert resp.json["discounted_price"] == "179.99"
        assert resp.json["savings"] == "20.00"

    def test_active_discounts_listing(self, client, specialist_headers, product, patient, make_discount):
        make_discount(product, "5")
        make_discount(product, "15", patient=patient)

        resp = client.get(f"/api/products/{product.id}/active-discounts", headers=specialist_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 2
        labels = [item["patient_label"] for item in resp.json["items"]]
        assert labels == ["Maria Lopez", "Global"]
