import pytest
import stripe
from listing_studio.models.credit import TransactionType, PaymentOutcome, CREDIT_PACKAGES
from listing_studio.models.user import AuthenticatedUser
from listing_studio.utils.exceptions import (ValidationException, ConfigurationException,
                                             PaymentVerificationException)
from helpers import run, checkout_completed_event, signed_payload


def _purchases(services, user_id):
    return [tx for tx in services.ledger.transactions(user_id, limit=100)
            if tx.type == TransactionType.PURCHASE]


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = {"customers": [], "sessions": []}

    def create_customer(**params):
        calls["customers"].append(params)
        return {"id": "cus_test_1"}

    def create_session(**params):
        calls["sessions"].append(params)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}

    monkeypatch.setattr(stripe.Customer, "create", create_customer)
    monkeypatch.setattr(stripe.checkout.Session, "create", create_session)
    return calls


def test_catalog_has_three_fixed_packages():
    assert [(p.id, p.credits, p.price) for p in CREDIT_PACKAGES] == [
        ("credits_25", 25, 999), ("credits_100", 100, 2999), ("credits_500", 500, 9999)]
    assert [p.id for p in CREDIT_PACKAGES if p.popular] == ["credits_100"]


# ---------- checkout ----------

def test_checkout_carries_package_metadata(services, user, stripe_calls):
    services.payments.secret_key = "sk_test_123"
    caller = AuthenticatedUser(id=str(user.id), email=user.email)

    session = run(services.payments.create_checkout_session(caller, "credits_100"))

    assert session.session_id == "cs_test_1"
    assert session.url.startswith("https://checkout.stripe.com/")
    params = stripe_calls["sessions"][0]
    assert params["api_key"] == "sk_test_123"
    assert params["customer"] == "cus_test_1"
    assert params["mode"] == "payment"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 2999
    assert params["metadata"] == {"user_id": str(user.id), "package_id": "credits_100",
                                  "credits": "100"}
    assert services.profiles.get_profile(str(user.id)).stripe_customer_id == "cus_test_1"


def test_checkout_reuses_existing_customer(services, user, stripe_calls):
    services.payments.secret_key = "sk_test_123"
    services.profiles.set_stripe_customer_id(str(user.id), "cus_existing")
    caller = AuthenticatedUser(id=str(user.id), email=user.email)

    run(services.payments.create_checkout_session(caller, "credits_25"))

    assert stripe_calls["customers"] == []
    assert stripe_calls["sessions"][0]["customer"] == "cus_existing"


def test_unknown_package_is_rejected(services, user, stripe_calls):
    services.payments.secret_key = "sk_test_123"
    caller = AuthenticatedUser(id=str(user.id), email=user.email)

    with pytest.raises(ValidationException):
        run(services.payments.create_checkout_session(caller, "credits_1000"))
    assert stripe_calls["sessions"] == []


def test_checkout_without_stripe_key_is_configuration_error(services, user):
    caller = AuthenticatedUser(id=str(user.id), email=user.email)

    with pytest.raises(ConfigurationException):
        run(services.payments.create_checkout_session(caller, "credits_25"))


# ---------- webhook verification ----------

def test_verify_event_accepts_valid_signature(services, user):
    payload, signature = signed_payload(checkout_completed_event(str(user.id)))

    event = services.payments.verify_event(payload, signature)

    assert event["type"] == "checkout.session.completed"


@pytest.mark.parametrize("signature", [None, "", "t=1,v1=deadbeef"])
def test_verify_event_rejects_bad_signature(services, user, signature):
    payload, _ = signed_payload(checkout_completed_event(str(user.id)))

    with pytest.raises(PaymentVerificationException) as exc_info:
        services.payments.verify_event(payload, signature)
    assert exc_info.value.status_code == 400


def test_signature_from_another_secret_is_rejected(services, user):
    payload, signature = signed_payload(checkout_completed_event(str(user.id)),
                                        secret="whsec_someone_else")

    with pytest.raises(PaymentVerificationException):
        services.payments.verify_event(payload, signature)


# ---------- webhook handling ----------

def test_duplicate_checkout_event_credits_once(services, user):
    event = checkout_completed_event(str(user.id), payment_intent="pi_dup")

    first = run(services.payments.handle_event(event))
    second = run(services.payments.handle_event(event))

    assert first.credited is True
    assert second.credited is False
    assert second.balance == first.balance == 110
    assert services.ledger.balance(str(user.id)) == 110
    purchases = _purchases(services, str(user.id))
    assert len(purchases) == 1
    assert purchases[0].stripe_payment_id == "pi_dup"
    assert purchases[0].description == "Purchased credits_100: 100 credits"


def test_session_id_is_used_when_payment_intent_is_missing(services, user):
    event = checkout_completed_event(str(user.id))
    event["data"]["object"]["payment_intent"] = None

    run(services.payments.handle_event(event))

    assert _purchases(services, str(user.id))[0].stripe_payment_id == "cs_test_1"


def test_event_without_metadata_is_ignored(services, db, user):
    event = checkout_completed_event(str(user.id))
    event["data"]["object"]["metadata"] = {}

    result = run(services.payments.handle_event(event))

    assert result.handled is False
    assert services.ledger.balance(str(user.id)) == 10
    assert any(row["source"] == "stripe" and row["log_type"] == "error"
               for row in db.system_logs)


def test_payment_failed_is_logged(services, db):
    event = {"type": "payment_intent.payment_failed",
             "data": {"object": {"id": "pi_failed",
                                 "last_payment_error": {"message": "Card declined"}}}}

    result = run(services.payments.handle_event(event))

    assert result.handled is True
    assert any("Card declined" in row["message"] for row in db.system_logs)


def test_unrelated_event_is_acknowledged(services):
    result = run(services.payments.handle_event({"type": "customer.created",
                                                 "data": {"object": {"id": "cus_1"}}}))
    assert result == PaymentOutcome(handled=False, event_type="customer.created")
