"""
Wizard Controller: machine à états Details -> Contracts -> Payment -> (StepUp) -> Confirmed.
- Seul composant qui modifie session.current_step.
- Avancer exige que la porte de l'étape courante soit satisfaite; reculer est toujours permis
  et ne vide ni les champs saisis ni les signatures.
- Seul le Reconciler peut déclarer le succès final.
"""
import logging
from typing import Awaitable, Callable, Optional

from wedding_checkout.checkout.exceptions import (
    ChargeError,
    CheckoutError,
    ConfirmationTimeout,
    InvalidTransition,
    StepUpFailure,
    SubmissionInProgress,
    ValidationError,
)
from wedding_checkout.checkout.reconciler import CANCELLED, CONFIRMED, ConfirmationReconciler
from wedding_checkout.checkout.session import STEP_ORDER, CheckoutSession, WizardStep
from wedding_checkout.contracts.service import ContractGate
from wedding_checkout.config import BASE_URL
from wedding_checkout.payments.client import BookingApiClient
from wedding_checkout.payments.stripe_client import AwaitableStepUp, StripeTokenizer
from wedding_checkout.payments.submitter import FAILED, REQUIRES_STEP_UP, ChargeSubmitter

logger = logging.getLogger(__name__)

ReconcilerFactory = Callable[[], ConfirmationReconciler]
StepUpChallenge = Callable[[str, Optional[str]], Awaitable[None]]


def needs_new_intent(error: CheckoutError) -> bool:
    """
    Vrai si la prochaine tentative doit utiliser une nouvelle clé d'idempotence.
    Une erreur serveur (5xx, transport) garde la clé: le backend rejouera la même intention.
    """
    if isinstance(error, StepUpFailure):
        return True
    if isinstance(error, ChargeError):
        return error.status_code < 500
    return False


class CheckoutResult:
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNCONFIRMED = "unconfirmed"
    CANCELLED = "cancelled"

    def __init__(self, status: str, payment_intent_id: Optional[str] = None,
                 booking_ids=None, error: Optional[CheckoutError] = None):
        self.status = status
        self.payment_intent_id = payment_intent_id
        self.booking_ids = list(booking_ids or [])
        self.error = error

    @property
    def may_resubmit(self) -> bool:
        """Un nouveau paiement n'est proposé que si l'erreur le permet (jamais après un timeout)."""
        return self.status == self.FAILED and bool(self.error and self.error.resubmittable)

    def __repr__(self) -> str:
        return f"CheckoutResult(status={self.status!r}, payment_intent_id={self.payment_intent_id!r})"


class WizardController:
    def __init__(
        self,
        session: CheckoutSession,
        gate: ContractGate,
        submitter: ChargeSubmitter,
        reconciler_factory: ReconcilerFactory,
        step_up: Optional[StepUpChallenge] = None,
    ):
        self.session = session
        self.gate = gate
        self.submitter = submitter
        self.reconciler_factory = reconciler_factory
        self.step_up = step_up
        self.reconciler: Optional[ConfirmationReconciler] = None
        self._busy = False
        self._abandoned = False

    @property
    def step(self) -> WizardStep:
        return self.session.current_step

    def _move(self, target: WizardStep) -> None:
        previous = self.session.current_step
        self.session.set_current_step(target)
        logger.info("wizard transition %s -> %s", previous.value, target.value)

    def _reject(self, error: CheckoutError) -> None:
        self.session.set_error(error.message)
        logger.info("wizard blocked at %s: %s", self.step.value, error.code)
        raise error

    # --- Navigation ---

    def go_to_contracts(self) -> None:
        if self.step != WizardStep.DETAILS:
            raise InvalidTransition(f"Transition impossible depuis {self.step.value}")
        missing = self.session.missing_required_fields()
        if missing:
            self._reject(ValidationError("Veuillez remplir tous les champs obligatoires", fields=missing))
        if not self.session.customer.get("agreed_to_terms"):
            self._reject(ValidationError("Veuillez accepter les conditions générales", fields=["agreed_to_terms"]))
        self.session.clear_error()
        self._move(WizardStep.CONTRACTS)

    def go_to_payment(self) -> None:
        if self.step != WizardStep.CONTRACTS:
            raise InvalidTransition(f"Transition impossible depuis {self.step.value}")
        try:
            self.gate.ensure_all_signed(self.session.cart_items, self.session.signatures)
        except CheckoutError as e:
            self._reject(e)
        self.session.clear_error()
        self._move(WizardStep.PAYMENT)

    def next(self) -> None:
        if self.step == WizardStep.DETAILS:
            self.go_to_contracts()
        elif self.step == WizardStep.CONTRACTS:
            self.go_to_payment()
        else:
            raise InvalidTransition("Utilisez submit_payment() depuis l'étape paiement")

    def back(self, to: Optional[WizardStep] = None) -> None:
        """Retour à une étape antérieure (par défaut la précédente). Les données sont conservées."""
        if self._busy or self.step not in STEP_ORDER:
            raise InvalidTransition(f"Retour impossible depuis {self.step.value}")
        index = STEP_ORDER.index(self.step)
        target = to if to is not None else STEP_ORDER[max(0, index - 1)]
        if target not in STEP_ORDER or STEP_ORDER.index(target) > index:
            raise InvalidTransition(f"{target} n'est pas une étape antérieure")
        self._move(target)

    def abandon(self) -> None:
        """Navigation hors du checkout: annule la réconciliation et le défi en cours."""
        self._abandoned = True
        if self.reconciler is not None:
            self.reconciler.cancel()
        if self.step_up is not None and hasattr(self.step_up, "abandon"):
            self.step_up.abandon()
        logger.info("wizard abandoned at %s", self.step.value)

    # --- Paiement ---

    def _fail(self, error: CheckoutError) -> CheckoutResult:
        if self._abandoned:
            return CheckoutResult(CheckoutResult.CANCELLED, error=error)
        self.session.set_error(error.message)
        if needs_new_intent(error):
            # resoumission explicite = nouvelle intention de paiement
            self.session.rotate_idempotency_key()
        if self.step != WizardStep.PAYMENT:
            self._move(WizardStep.PAYMENT)
        logger.info("wizard payment failed: %s", error.code)
        return CheckoutResult(CheckoutResult.FAILED, error=error)

    async def submit_payment(self) -> CheckoutResult:
        if self.step != WizardStep.PAYMENT:
            raise InvalidTransition(f"Paiement impossible depuis {self.step.value}")
        if self._busy:
            raise SubmissionInProgress("Un paiement est déjà en cours")
        self._busy = True
        try:
            return await self._submit_payment()
        finally:
            self._busy = False

    async def _submit_payment(self) -> CheckoutResult:
        self.session.clear_error()
        try:
            self.gate.ensure_all_signed(self.session.cart_items, self.session.signatures)
        except CheckoutError as e:
            return self._fail(e)

        outcome = await self.submitter.submit(self.session)
        if outcome.status == FAILED:
            return self._fail(outcome.error)

        if outcome.status == REQUIRES_STEP_UP:
            self._move(WizardStep.STEP_UP)
            if self.step_up is None:
                return self._fail(StepUpFailure("Vérification requise mais indisponible"))
            try:
                await self.step_up(outcome.client_secret, outcome.payment_intent_id)
            except StepUpFailure as e:
                if e.abandoned:
                    self._abandoned = True
                    logger.info("wizard step-up abandoned payment_intent_id=%s", outcome.payment_intent_id)
                return self._fail(e)
            if not outcome.payment_intent_id:
                return self._fail(StepUpFailure("Référence de paiement manquante après vérification"))

        if self._abandoned:
            return CheckoutResult(CheckoutResult.CANCELLED, outcome.payment_intent_id, outcome.booking_ids)
        return await self._reconcile(outcome.payment_intent_id, outcome.booking_ids)

    async def _reconcile(self, payment_intent_id: str, booking_ids) -> CheckoutResult:
        self.reconciler = self.reconciler_factory()
        if booking_ids:
            task = self.reconciler.start(payment_intent_id, expected_ids=booking_ids)
        else:
            task = self.reconciler.start(payment_intent_id, expected_count=len(self.session.cart_items))
        result = await task

        # après annulation, l'étape n'est plus modifiée
        if result.status == CANCELLED or self._abandoned:
            return CheckoutResult(CheckoutResult.CANCELLED, payment_intent_id, result.confirmed_ids)
        if result.status == CONFIRMED:
            self.session.clear_error()
            self._move(WizardStep.CONFIRMED)
            return CheckoutResult(CheckoutResult.CONFIRMED, payment_intent_id, result.confirmed_ids)

        error: ConfirmationTimeout = result.error
        self.session.set_error(error.message)
        self._move(WizardStep.UNCONFIRMED)
        return CheckoutResult(CheckoutResult.UNCONFIRMED, payment_intent_id, result.confirmed_ids, error=error)


def build_wizard(
    session: CheckoutSession,
    access_token: Optional[str] = None,
    base_url: str = BASE_URL,
    step_up: Optional[StepUpChallenge] = None,
) -> WizardController:
    """
    Assemble un contrôleur branché sur le backend réel:
    porte Contrats (Supabase), tokenisation Stripe, client HTTP et réconciliation par polling.
    """
    api = BookingApiClient(base_url=base_url, access_token=access_token)
    return WizardController(
        session=session,
        gate=ContractGate(),
        submitter=ChargeSubmitter(api, StripeTokenizer()),
        reconciler_factory=lambda: ConfirmationReconciler(api.fetch_confirmed_ids),
        step_up=step_up if step_up is not None else AwaitableStepUp(),
    )
