import pytest
import stripe

from wedding_checkout.checkout.exceptions import ChargeError
from wedding_checkout.payments import service as payments_service
from wedding_checkout.payments.schemas import ChargeRequest

USER = {"id": "user-1", "email": "alex@example.com"}


@pytest.fixture
def charge_request(make_item):
    def _make(items=None, **overrides):
        items = items or [make_item("Photography", 200000)]
        payload = {
            "cartItems": [i.model_dump(by_alias=True) for i in items],
            "totals": {"subtotal": 200000, "depositAmount": 100000, "platformFee": 5000, "grandTotal": 105000},
            "customer": {
                "partner1Name": "Alex", "email": "alex@example.com", "phone": "555-0100",
                "billingAddress": "1 Main St", "city": "Austin", "state": "TX", "zipCode": "73301",
                "coupleId": "couple-1",
            },
            "signatures": {"Photography": "Alex Doe"},
            "paymentMethodId": "pm_123",
            "paymentMethod": "card",
            "paymentType": "deposit",
        }
        payload.update(overrides)
        return ChargeRequest.model_validate(payload)
    return _make


@pytest.fixture
def store(monkeypatch):
    """Table bookings en mémoire + intents Stripe simulés."""
    state = {"bookings": [], "payments": [], "intents": [], "intent_status": "succeeded", "stripe_error": None,
             "couples": {("couple-1", "user-1")}, "coupons": {}}

    def find_by_key(key):
        return [b for b in state["bookings"] if b["idempotency_key"] == key]

    def find_by_intent(pi):
        return [b for b in state["bookings"] if b.get("stripe_payment_intent_id") == pi]

    def insert_bookings(rows):
        created = []
        for row in rows:
            row = dict(row, id=f"b{len(state['bookings']) + 1}")
            state["bookings"].append(row)
            created.append(row)
        return created

    def _rows(ids):
        ids = set(ids)
        return [b for b in state["bookings"] if b["id"] in ids]

    def attach(ids, pi):
        for b in _rows(ids):
            b["stripe_payment_intent_id"] = pi

    def update_status(ids, status, payment_intent_id=None):
        rows = _rows(ids)
        for b in rows:
            b["status"] = status
            if payment_intent_id:
                b["stripe_payment_intent_id"] = payment_intent_id
        return rows

    def insert_payments(rows):
        state["payments"].extend(rows)
        return rows

    def create_intent(**kwargs):
        if state["stripe_error"]:
            raise state["stripe_error"]
        state["intents"].append(kwargs)
        return {"id": "pi_1", "status": state["intent_status"], "client_secret": "pi_1_secret"}

    def retrieve(pi):
        return {"id": pi, "status": state["intent_status"], "client_secret": "pi_1_secret"}

    monkeypatch.setattr("wedding_checkout.payments.repository.couple_belongs_to_user",
                        lambda couple_id, user_id: (couple_id, user_id) in state["couples"])
    monkeypatch.setattr("wedding_checkout.payments.repository.find_valid_coupon",
                        lambda code: state["coupons"].get(code.strip().upper()))
    monkeypatch.setattr("wedding_checkout.payments.repository.find_bookings_by_idempotency_key", find_by_key)
    monkeypatch.setattr("wedding_checkout.payments.repository.find_bookings_by_intent", find_by_intent)
    monkeypatch.setattr("wedding_checkout.payments.repository.insert_bookings", insert_bookings)
    monkeypatch.setattr("wedding_checkout.payments.repository.attach_payment_intent", attach)
    monkeypatch.setattr("wedding_checkout.payments.repository.update_bookings_status", update_status)
    monkeypatch.setattr("wedding_checkout.payments.repository.insert_payments", insert_payments)
    monkeypatch.setattr("wedding_checkout.payments.stripe_client.create_payment_intent", create_intent)
    monkeypatch.setattr("wedding_checkout.payments.stripe_client.retrieve_payment_intent", retrieve)
    return state


def test_charge_creates_one_intent_and_one_booking_per_item(charge_request, make_item, store):
    items = [make_item("Photography", 200000), make_item("DJ", 100000), make_item("DJ", 50000)]
    request = charge_request(
        items=items,
        totals={"subtotal": 350000, "depositAmount": 175000, "platformFee": 5000, "grandTotal": 180000},
        signatures={"Photography": "Alex", "DJ": "Alex"},
    )
    response = payments_service.charge_and_book(user=USER, request=request, idempotency_key="key-1")
    assert response == {"paymentIntentId": "pi_1", "bookingIds": ["b1", "b2", "b3"]}
    assert len(store["intents"]) == 1
    intent = store["intents"][0]
    assert intent["amount"] == 180000
    assert intent["idempotency_key"] == "key-1"
    assert intent["metadata"]["idempotency_key"] == "key-1"
    assert intent["metadata"]["payment_type"] == "deposit"
    assert [b["status"] for b in store["bookings"]] == ["pending"] * 3
    assert all(b["stripe_payment_intent_id"] == "pi_1" for b in store["bookings"])
    # frais plateforme portés par la première ligne uniquement
    assert [b["platform_deposit_share"] for b in store["bookings"]] == [5000, 0, 0]


def test_retry_with_same_key_does_not_duplicate(charge_request, store):
    request = charge_request()
    first = payments_service.charge_and_book(user=USER, request=request, idempotency_key="key-1")
    second = payments_service.charge_and_book(user=USER, request=request, idempotency_key="key-1")
    assert first == second
    assert len(store["bookings"]) == 1
    assert len(store["intents"]) == 1


def test_requires_action_response(charge_request, store):
    store["intent_status"] = "requires_action"
    response = payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    assert response["requiresAction"] is True
    assert response["clientSecret"] == "pi_1_secret"
    assert response["bookingIds"] == ["b1"]


def test_grand_total_mismatch_is_rejected(charge_request, store):
    request = charge_request(totals={"subtotal": 200000, "depositAmount": 1, "platformFee": 5000, "grandTotal": 5001})
    with pytest.raises(ChargeError) as exc:
        payments_service.charge_and_book(user=USER, request=request, idempotency_key="k")
    assert exc.value.status_code == 400
    assert store["bookings"] == [] and store["intents"] == []


def test_fee_only_charge_is_rejected(charge_request, make_item, store):
    request = charge_request(
        items=[make_item("Photography", 0)],
        totals={"subtotal": 0, "depositAmount": 0, "platformFee": 5000, "grandTotal": 5000},
    )
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=request, idempotency_key="k")
    assert store["intents"] == []


def test_unsigned_service_type_is_rejected(charge_request, store):
    with pytest.raises(ChargeError) as exc:
        payments_service.charge_and_book(user=USER, request=charge_request(signatures={"Photography": " "}),
                                         idempotency_key="k")
    assert "Photography" in exc.value.message


def test_missing_idempotency_key_is_rejected(charge_request, store):
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="")


def test_card_declined_marks_rows_failed_and_returns_402(charge_request, store):
    store["stripe_error"] = stripe.CardError("declined", param=None, code="card_declined")
    with pytest.raises(ChargeError) as exc:
        payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    assert exc.value.status_code == 402
    assert [b["status"] for b in store["bookings"]] == ["payment_failed"]

    # rejouer la même clé renvoie l'échec sans nouvelle tentative Stripe
    store["stripe_error"] = None
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    assert store["intents"] == []


def test_discount_and_referral_reduce_charged_amount(charge_request, store):
    store["coupons"]["SAVE200"] = {"code": "SAVE200", "discount_amount": 20000, "is_valid": True}
    request = charge_request(discountAmount=20000, discountCode="save200",
                             referralDiscount=10000, referralCode="FRIEND")
    payments_service.charge_and_book(user=USER, request=request, idempotency_key="k")
    # (200000 - 30000) * 0.5 + 5000
    assert store["intents"][0]["amount"] == 90000
    assert store["intents"][0]["metadata"]["referral_code"] == "FRIEND"


def test_discount_covering_subtotal_never_reaches_stripe(charge_request, store):
    store["coupons"]["FREE"] = {"code": "FREE", "discount_percent": 100, "is_valid": True}
    request = charge_request(discountAmount=200000, discountCode="FREE")
    with pytest.raises(ChargeError) as exc:
        payments_service.charge_and_book(user=USER, request=request, idempotency_key="k")
    assert exc.value.status_code == 400
    assert store["intents"] == [] and store["bookings"] == []


def test_discount_without_code_is_rejected(charge_request, store):
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=charge_request(discountAmount=200000),
                                         idempotency_key="k")
    assert store["intents"] == []


def test_discount_must_match_coupon(charge_request, store):
    store["coupons"]["SAVE10"] = {"code": "SAVE10", "discount_percent": 10, "is_valid": True}
    ok = charge_request(discountAmount=20000, discountCode="SAVE10")
    payments_service.charge_and_book(user=USER, request=ok, idempotency_key="k1")
    # 10% de 200000 => (200000 - 20000) * 0.5 + 5000
    assert store["intents"][0]["amount"] == 95000

    inflated = charge_request(discountAmount=150000, discountCode="SAVE10")
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=inflated, idempotency_key="k2")
    assert len(store["intents"]) == 1


def test_expired_coupon_is_rejected(charge_request, store):
    store["coupons"]["OLD"] = {"code": "OLD", "discount_amount": 20000, "is_valid": True,
                               "expiration_date": "2020-01-01T00:00:00Z"}
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=charge_request(discountAmount=20000, discountCode="OLD"),
                                         idempotency_key="k")


def test_referral_discount_is_capped_and_needs_code(charge_request, store):
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=charge_request(referralDiscount=5000),
                                         idempotency_key="k1")
    too_big = charge_request(referralDiscount=190000, referralCode="FRIEND")
    with pytest.raises(ChargeError):
        payments_service.charge_and_book(user=USER, request=too_big, idempotency_key="k2")
    assert store["intents"] == []


def test_recorded_payments_match_discounted_charge(charge_request, make_item, store):
    store["coupons"]["SAVE200"] = {"code": "SAVE200", "discount_amount": 20000, "is_valid": True}
    items = [make_item("Photography", 200000), make_item("DJ", 100001)]
    request = charge_request(
        items=items,
        totals={"subtotal": 300001, "depositAmount": 150001, "platformFee": 5000, "grandTotal": 155001},
        signatures={"Photography": "Alex", "DJ": "Alex"},
        discountAmount=20000, discountCode="SAVE200", referralDiscount=10000, referralCode="FRIEND",
    )
    payments_service.charge_and_book(user=USER, request=request, idempotency_key="k")
    charged = store["intents"][0]["amount"]
    # round((300001 - 30000) * 0.5) + 5000
    assert charged == 140001

    payments_service.handle_event(_event("payment_intent.succeeded"))
    assert sum(p["amount"] for p in store["payments"]) == charged
    assert all(p["amount"] > 0 for p in store["payments"])


def test_bookings_are_stamped_with_user(charge_request, store):
    payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    assert store["bookings"][0]["user_id"] == "user-1"


def test_couple_of_another_user_is_forbidden(charge_request, store):
    stranger = {"id": "user-2", "email": "eve@example.com"}
    with pytest.raises(ChargeError) as exc:
        payments_service.charge_and_book(user=stranger, request=charge_request(), idempotency_key="k")
    assert exc.value.status_code == 403
    assert store["bookings"] == [] and store["intents"] == []


def test_rows_without_intent_resume_with_same_key(charge_request, store):
    store["bookings"].append({"id": "b9", "idempotency_key": "k", "status": "pending"})
    response = payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    assert response["bookingIds"] == ["b9"]
    assert len(store["bookings"]) == 1
    assert store["bookings"][0]["stripe_payment_intent_id"] == "pi_1"


# --- Webhook ---

def _event(event_type, pi="pi_1", metadata=None):
    return {"type": event_type, "data": {"object": {"id": pi, "amount_received": 105000, "metadata": metadata or {}}}}


def test_succeeded_event_records_payments_then_confirms(charge_request, store):
    payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    result = payments_service.handle_event(_event("payment_intent.succeeded"))
    assert result == {"status": "ok", "confirmed": 1}
    assert store["bookings"][0]["status"] == "confirmed"
    assert store["payments"][0]["booking_id"] == "b1"
    assert store["payments"][0]["amount"] == 105000


def test_succeeded_event_is_idempotent(charge_request, store):
    payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    payments_service.handle_event(_event("payment_intent.succeeded"))
    again = payments_service.handle_event(_event("payment_intent.succeeded"))
    assert again["confirmed"] == 0
    assert len(store["payments"]) == 1


def test_succeeded_event_falls_back_to_idempotency_key(store):
    store["bookings"].append({"id": "b1", "idempotency_key": "k", "status": "pending", "vendor_id": "v1"})
    result = payments_service.handle_event(_event("payment_intent.succeeded", metadata={"idempotency_key": "k"}))
    assert result["confirmed"] == 1
    assert store["bookings"][0]["stripe_payment_intent_id"] == "pi_1"


def test_failed_event_marks_pending_rows(charge_request, store):
    store["intent_status"] = "requires_action"
    payments_service.charge_and_book(user=USER, request=charge_request(), idempotency_key="k")
    result = payments_service.handle_event(_event("payment_intent.payment_failed"))
    assert result == {"status": "ok", "failed": 1}
    assert store["bookings"][0]["status"] == "payment_failed"


def test_other_events_are_ignored(store):
    assert payments_service.handle_event({"type": "charge.refunded", "data": {"object": {}}}) == {"status": "ignored"}
