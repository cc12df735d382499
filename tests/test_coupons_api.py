from datetime import timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.coupon import Coupon
from app.models.course import Course, CourseStatus
from app.models.redemption import PromotionKind
from app.services.redemption_ledger import RedemptionLedger

BASE = "/api/v1/instructor/coupons"


def _payload(clock, **overrides) -> dict:
    now = clock.now()
    payload = {
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": "10",
        "valid_from": (now - timedelta(days=1)).isoformat(),
        "valid_to": (now + timedelta(days=30)).isoformat(),
        "max_uses": 100,
    }
    payload.update(overrides)
    return payload


def _create(client: TestClient, headers: dict, clock, **overrides) -> dict:
    response = client.post(f"{BASE}/", json=_payload(clock, **overrides), headers=headers)
    assert response.status_code == 200, response.json()
    return response.json()["data"]


def test_create_coupon(client: TestClient, instructor, auth_headers, clock):
    data = _create(client, auth_headers(instructor), clock, code="save10")

    assert data["code"] == "SAVE10"
    assert data["status"] == "active"
    assert data["used_count"] == 0
    assert data["currency"] == "EGP"


def test_duplicate_code_rejected_in_any_case(client: TestClient, instructor, other_instructor, auth_headers, clock):
    _create(client, auth_headers(instructor), clock)

    response = client.post(f"{BASE}/", json=_payload(clock, code="Save10"), headers=auth_headers(other_instructor))

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["reason"] == "duplicate_code"


def test_invalid_definition_returns_reason(client: TestClient, instructor, auth_headers, clock):
    response = client.post(
        f"{BASE}/",
        json=_payload(clock, discount_type="fixed", discount_value="50", max_discount_amount="10"),
        headers=auth_headers(instructor),
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["reason"] == "invalid_cap_for_type"


def test_scope_limited_to_own_published_courses(
    client: TestClient, db_session: Session, instructor, other_instructor, course, auth_headers, clock
):
    foreign = Course(instructor_id=other_instructor.id, title="Not mine", price=Decimal("90"), status=CourseStatus.PUBLISHED)
    draft = Course(instructor_id=instructor.id, title="Unreleased", price=Decimal("90"), status=CourseStatus.DRAFT)
    db_session.add_all([foreign, draft])
    db_session.commit()

    for course_id in (foreign.id, draft.id):
        response = client.post(
            f"{BASE}/", json=_payload(clock, applicable_course_ids=[course_id]), headers=auth_headers(instructor)
        )
        assert response.status_code == 400
        assert response.json()["errors"][0]["reason"] == "unauthorized_course_scope"

    data = _create(client, auth_headers(instructor), clock, applicable_course_ids=[course.id])
    assert data["applicable_course_ids"] == [course.id]


def test_students_cannot_manage_coupons(client: TestClient, student, auth_headers, clock):
    response = client.post(f"{BASE}/", json=_payload(clock), headers=auth_headers(student))
    assert response.status_code == 403


def test_requires_authentication(client: TestClient):
    response = client.get(f"{BASE}/")
    assert response.status_code == 401


def test_other_instructor_cannot_see_coupon(client: TestClient, instructor, other_instructor, auth_headers, clock):
    coupon = _create(client, auth_headers(instructor), clock)

    response = client.get(f"{BASE}/{coupon['id']}", headers=auth_headers(other_instructor))

    assert response.status_code == 404


def test_update_keeps_own_code(client: TestClient, instructor, auth_headers, clock):
    coupon = _create(client, auth_headers(instructor), clock)

    response = client.put(
        f"{BASE}/{coupon['id']}",
        json={"code": "save10", "discount_value": "15"},
        headers=auth_headers(instructor),
    )

    assert response.status_code == 200
    assert response.json()["data"]["discount_value"] == 15.0


def test_used_coupon_is_locked_but_can_be_toggled(
    client: TestClient, db_session: Session, instructor, auth_headers, clock
):
    coupon = _create(client, auth_headers(instructor), clock)
    db_session.query(Coupon).filter(Coupon.id == coupon["id"]).update({Coupon.used_count: 1})
    db_session.commit()

    response = client.put(f"{BASE}/{coupon['id']}", json={"discount_value": "20"}, headers=auth_headers(instructor))
    assert response.status_code == 409

    response = client.post(f"{BASE}/{coupon['id']}/toggle", headers=auth_headers(instructor))
    assert response.status_code == 200
    assert response.json()["data"]["is_active"] is False
    assert response.json()["data"]["status"] == "inactive"


def test_delete_rules(client: TestClient, db_session: Session, instructor, auth_headers, clock):
    headers = auth_headers(instructor)
    coupon = _create(client, headers, clock)

    response = client.delete(f"{BASE}/{coupon['id']}", headers=headers)
    assert response.status_code == 409

    client.post(f"{BASE}/{coupon['id']}/toggle", headers=headers)
    response = client.delete(f"{BASE}/{coupon['id']}", headers=headers)
    assert response.status_code == 200
    assert db_session.query(Coupon).count() == 0


def test_used_coupon_cannot_be_deleted(client: TestClient, db_session: Session, instructor, student, auth_headers, clock):
    headers = auth_headers(instructor)
    coupon = _create(client, headers, clock)
    RedemptionLedger(db_session, clock=clock).try_redeem(PromotionKind.COUPON, coupon["id"], student.id, "txn-1")
    client.post(f"{BASE}/{coupon['id']}/toggle", headers=headers)

    response = client.delete(f"{BASE}/{coupon['id']}", headers=headers)

    assert response.status_code == 409


def test_scheduled_coupon_can_be_deleted(client: TestClient, instructor, auth_headers, clock):
    now = clock.now()
    headers = auth_headers(instructor)
    coupon = _create(
        client,
        headers,
        clock,
        valid_from=(now + timedelta(days=2)).isoformat(),
        valid_to=(now + timedelta(days=5)).isoformat(),
    )
    assert coupon["status"] == "scheduled"

    response = client.delete(f"{BASE}/{coupon['id']}", headers=headers)
    assert response.status_code == 200


def test_list_filters_on_derived_status(client: TestClient, instructor, auth_headers, clock):
    now = clock.now()
    headers = auth_headers(instructor)
    _create(client, headers, clock, code="LIVE10")
    _create(
        client,
        headers,
        clock,
        code="SOON10",
        valid_from=(now + timedelta(days=2)).isoformat(),
        valid_to=(now + timedelta(days=5)).isoformat(),
    )

    response = client.get(f"{BASE}/", params={"status": "scheduled"}, headers=headers)
    assert response.status_code == 200
    assert [coupon["code"] for coupon in response.json()["data"]] == ["SOON10"]

    response = client.get(f"{BASE}/", headers=headers)
    assert len(response.json()["data"]) == 2


def test_statistics(client: TestClient, db_session: Session, instructor, student, other_instructor, auth_headers, clock):
    headers = auth_headers(instructor)
    coupon = _create(client, headers, clock)
    ledger = RedemptionLedger(db_session, clock=clock)
    ledger.try_redeem(PromotionKind.COUPON, coupon["id"], student.id, "txn-1", discount_amount=Decimal("20.00"))
    ledger.try_redeem(PromotionKind.COUPON, coupon["id"], other_instructor.id, "txn-2", discount_amount=Decimal("5.50"))

    response = client.get(f"{BASE}/{coupon['id']}/statistics", headers=headers)

    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["used_count"] == 2
    assert stats["remaining_uses"] == 98
    assert stats["unique_users"] == 2
    assert stats["total_discount_given"] == 25.5
    assert len(stats["recent_usages"]) == 2


def test_generate_code(client: TestClient, instructor, auth_headers):
    response = client.get(f"{BASE}/generate-code", headers=auth_headers(instructor))

    assert response.status_code == 200
    code = response.json()["data"]["code"]
    assert len(code) == 8
    assert code.isalnum() and code.upper() == code


def test_offset_aware_window_is_stored_as_utc(client: TestClient, db_session: Session, instructor, auth_headers, clock):
    now = clock.now()
    data = _create(
        client,
        auth_headers(instructor),
        clock,
        valid_from=(now - timedelta(days=1)).isoformat() + "Z",
        valid_to=(now + timedelta(days=2, hours=2)).isoformat() + "+02:00",
    )

    assert data["status"] == "active"
    stored = db_session.query(Coupon).filter(Coupon.id == data["id"]).one()
    assert stored.valid_from == now - timedelta(days=1)
    assert stored.valid_to == now + timedelta(days=2)


def test_update_rejects_explicit_nulls(client: TestClient, instructor, auth_headers, clock):
    headers = auth_headers(instructor)
    coupon = _create(client, headers, clock)

    for field in ("code", "discount_type", "discount_value", "valid_from", "valid_to"):
        response = client.put(f"{BASE}/{coupon['id']}", json={field: None}, headers=headers)
        assert response.status_code == 422, field


def test_admin_lists_every_coupon(client: TestClient, instructor, other_instructor, admin, auth_headers, clock):
    _create(client, auth_headers(instructor), clock, code="MINE10")
    _create(client, auth_headers(other_instructor), clock, code="THEIRS10")

    response = client.get(f"{BASE}/", headers=auth_headers(admin))
    assert sorted(coupon["code"] for coupon in response.json()["data"]) == ["MINE10", "THEIRS10"]

    response = client.get(f"{BASE}/", headers=auth_headers(instructor))
    assert [coupon["code"] for coupon in response.json()["data"]] == ["MINE10"]
