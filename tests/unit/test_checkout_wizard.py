import asyncio

import pytest

from wedding_checkout.checkout.exceptions import (
    ContractIncomplete,
    InvalidTransition,
    StepUpFailure,
    ValidationError,
)
from wedding_checkout.checkout.reconciler import ConfirmationReconciler
from wedding_checkout.checkout.session import CheckoutSession, WizardStep
from wedding_checkout.checkout.wizard import CheckoutResult, WizardController, build_wizard
from wedding_checkout.contracts.service import ContractGate
from wedding_checkout.payments.stripe_client import AwaitableStepUp
from wedding_checkout.payments.submitter import ChargeOutcome
from wedding_checkout.checkout.exceptions import ChargeError


class FakeSubmitter:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = 0

    async def submit(self, session):
        self.calls += 1
        return self.outcome


class StatusSource:
    def __init__(self, *polls):
        self.polls = list(polls)
        self.calls = 0

    async def __call__(self, payment_intent_id):
        self.calls += 1
        return self.polls[min(self.calls, len(self.polls)) - 1]


async def _no_wait(_interval):
    return None


def _fill_details(session):
    for name, value in {
        "partner1_name": "Alex", "email": "alex@example.com", "phone": "555-0100",
        "billing_address": "1 Main St", "city": "Austin", "state": "TX", "zip_code": "73301",
    }.items():
        session.update_field(name, value)


@pytest.fixture
def build(make_item, template_loader):
    def _build(outcome=None, polls=(["b1"],), step_up=None, items=None, max_attempts=30):
        session = CheckoutSession(items or [make_item("Photography", 200000)], couple_id="couple-1")
        submitter = FakeSubmitter(outcome or ChargeOutcome.succeeded("pi_1", ["b1"]))
        source = StatusSource(*polls)
        wizard = WizardController(
            session,
            ContractGate(template_loader),
            submitter,
            lambda: ConfirmationReconciler(source, interval=2, max_attempts=max_attempts, sleep=_no_wait),
            step_up=step_up,
        )
        return wizard, session, submitter, source
    return _build


def _to_payment(wizard, session):
    _fill_details(session)
    wizard.next()
    for service_type in {i.service_type for i in session.cart_items}:
        session.set_draft_signature(service_type, "Alex Doe")
        session.confirm_signature(service_type)
    wizard.next()
    assert session.current_step == WizardStep.PAYMENT


def test_details_gate_requires_fields_and_terms(build):
    wizard, session, _, _ = build()
    with pytest.raises(ValidationError) as exc:
        wizard.go_to_contracts()
    assert "email" in exc.value.fields
    assert session.current_step == WizardStep.DETAILS
    assert session.error

    _fill_details(session)
    session.update_field("agreed_to_terms", False)
    with pytest.raises(ValidationError):
        wizard.next()
    session.update_field("agreed_to_terms", True)
    wizard.next()
    assert session.current_step == WizardStep.CONTRACTS
    assert session.error is None


def test_contracts_gate_blocks_until_signed(build):
    wizard, session, _, _ = build()
    _fill_details(session)
    wizard.next()
    with pytest.raises(ContractIncomplete):
        wizard.next()
    assert session.current_step == WizardStep.CONTRACTS
    session.set_draft_signature("Photography", "Alex Doe")
    session.confirm_signature("Photography")
    wizard.next()
    assert session.current_step == WizardStep.PAYMENT


def test_back_keeps_data_and_signatures(build):
    wizard, session, _, _ = build()
    _to_payment(wizard, session)
    wizard.back(WizardStep.DETAILS)
    assert session.current_step == WizardStep.DETAILS
    assert session.customer["partner1_name"] == "Alex"
    assert session.signatures == {"Photography": "Alex Doe"}
    # revenir en avant repasse par les portes, déjà satisfaites
    wizard.next()
    wizard.next()
    assert session.current_step == WizardStep.PAYMENT


def test_back_cannot_move_forward(build):
    wizard, session, _, _ = build()
    _fill_details(session)
    wizard.next()
    with pytest.raises(InvalidTransition):
        wizard.back(WizardStep.PAYMENT)


def test_submit_outside_payment_step_is_invalid(build):
    wizard, _, submitter, _ = build()
    with pytest.raises(InvalidTransition):
        asyncio.run(wizard.submit_payment())
    assert submitter.calls == 0


def test_end_to_end_confirmed(build):
    wizard, session, submitter, source = build(polls=([], ["b1"]))
    assert session.grand_total == 105000
    _to_payment(wizard, session)
    result = asyncio.run(wizard.submit_payment())
    assert result.status == CheckoutResult.CONFIRMED
    assert result.payment_intent_id == "pi_1"
    assert result.booking_ids == ["b1"]
    assert session.current_step == WizardStep.CONFIRMED
    assert source.calls == 2


def test_charge_failure_stays_on_payment_with_error(build):
    outcome = ChargeOutcome.failed(ChargeError("Your card was declined.", status_code=402))
    wizard, session, _, source = build(outcome=outcome)
    _to_payment(wizard, session)
    key = session.idempotency_key
    result = asyncio.run(wizard.submit_payment())
    assert result.status == CheckoutResult.FAILED
    assert result.may_resubmit is True
    assert session.current_step == WizardStep.PAYMENT
    assert session.error == "Your card was declined."
    assert session.idempotency_key != key
    assert source.calls == 0


def test_server_side_failure_keeps_idempotency_key(build):
    outcome = ChargeOutcome.failed(ChargeError("Impossible de joindre le service de paiement", status_code=503))
    wizard, session, _, _ = build(outcome=outcome)
    _to_payment(wizard, session)
    key = session.idempotency_key
    asyncio.run(wizard.submit_payment())
    assert session.idempotency_key == key


def test_step_up_suspends_before_reconciler(build):
    step_up = AwaitableStepUp()
    outcome = ChargeOutcome.requires_step_up("pi_1_secret", "pi_1", ["b1"])
    wizard, session, _, source = build(outcome=outcome, step_up=step_up)
    _to_payment(wizard, session)

    async def scenario():
        task = asyncio.ensure_future(wizard.submit_payment())
        await asyncio.sleep(0.01)
        assert session.current_step == WizardStep.STEP_UP
        assert step_up.pending and step_up.client_secret == "pi_1_secret"
        assert source.calls == 0
        step_up.complete()
        return await task

    result = asyncio.run(scenario())
    assert result.status == CheckoutResult.CONFIRMED
    assert session.current_step == WizardStep.CONFIRMED
    assert source.calls == 1


def test_step_up_failure_returns_to_payment(build):
    step_up = AwaitableStepUp()
    outcome = ChargeOutcome.requires_step_up("secret", "pi_1", ["b1"])
    wizard, session, _, source = build(outcome=outcome, step_up=step_up)
    _to_payment(wizard, session)

    async def scenario():
        task = asyncio.ensure_future(wizard.submit_payment())
        await asyncio.sleep(0.01)
        step_up.fail("Authentication declined")
        return await task

    result = asyncio.run(scenario())
    assert result.status == CheckoutResult.FAILED
    assert isinstance(result.error, StepUpFailure)
    assert session.current_step == WizardStep.PAYMENT
    assert session.error == "Authentication declined"
    assert source.calls == 0


def test_abandon_during_step_up_never_retries(build):
    step_up = AwaitableStepUp()
    outcome = ChargeOutcome.requires_step_up("secret", "pi_1", ["b1"])
    wizard, session, submitter, source = build(outcome=outcome, step_up=step_up)
    _to_payment(wizard, session)

    async def scenario():
        task = asyncio.ensure_future(wizard.submit_payment())
        await asyncio.sleep(0.01)
        wizard.abandon()
        return await task

    result = asyncio.run(scenario())
    assert result.status == CheckoutResult.CANCELLED
    assert submitter.calls == 1
    assert source.calls == 0


def test_timeout_is_unconfirmed_not_failed(build, make_item):
    items = [make_item("Photography"), make_item("Photography"), make_item("Photography")]
    outcome = ChargeOutcome.succeeded("pi_7", ["b1", "b2", "b3"])
    wizard, session, _, source = build(outcome=outcome, polls=(["b1"],), items=items, max_attempts=4)
    _to_payment(wizard, session)
    result = asyncio.run(wizard.submit_payment())
    assert result.status == CheckoutResult.UNCONFIRMED
    assert result.may_resubmit is False
    assert session.current_step == WizardStep.UNCONFIRMED
    assert "pi_7" in session.error
    assert source.calls == 4


def test_cancelled_reconciliation_never_updates_step(build):
    wizard, session, _, _ = build(polls=([],))
    _to_payment(wizard, session)

    async def scenario():
        wizard.reconciler_factory = lambda: ConfirmationReconciler(StatusSource([]), interval=60, max_attempts=30)
        task = asyncio.ensure_future(wizard.submit_payment())
        await asyncio.sleep(0.01)
        wizard.abandon()
        return await task

    result = asyncio.run(scenario())
    assert result.status == CheckoutResult.CANCELLED
    assert session.current_step == WizardStep.PAYMENT


def test_busy_wizard_rejects_second_submit(build):
    step_up = AwaitableStepUp()
    outcome = ChargeOutcome.requires_step_up("secret", "pi_1", ["b1"])
    wizard, session, submitter, _ = build(outcome=outcome, step_up=step_up)
    _to_payment(wizard, session)

    async def scenario():
        task = asyncio.ensure_future(wizard.submit_payment())
        await asyncio.sleep(0.01)
        # l'étape courante est STEP_UP: toute nouvelle soumission est refusée
        with pytest.raises(InvalidTransition):
            await wizard.submit_payment()
        step_up.complete()
        return await task

    asyncio.run(scenario())
    assert submitter.calls == 1


def test_build_wizard_wires_backend_client(make_item):
    session = CheckoutSession([make_item("Photography", 200000)], couple_id="couple-1")
    wizard = build_wizard(session, access_token="tok", base_url="https://api.test/")
    assert wizard.step == WizardStep.DETAILS
    assert wizard.submitter.api.base_url == "https://api.test"
    assert wizard.submitter.api.access_token == "tok"
    assert isinstance(wizard.step_up, AwaitableStepUp)
    reconciler = wizard.reconciler_factory()
    assert reconciler.max_attempts > 0
