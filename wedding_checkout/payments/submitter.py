"""
Charge Submitter: transforme l'état de session en UNE requête charge-and-book idempotente.
- Tokenise localement l'instrument (carte); un échec n'atteint jamais le backend.
- Interprète la réponse: requiresAction -> step-up, paymentIntentId -> succès, sinon échec
  avec le message serveur tel quel.
- Ne fait aucun polling et aucune hypothèse sur le statut des réservations.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from wedding_checkout.checkout import cart as cart_logic
from wedding_checkout.checkout.exceptions import (
    ChargeError,
    CheckoutError,
    SubmissionInProgress,
    TokenizationError,
    ValidationError,
)
from wedding_checkout.checkout.session import PAYMENT_METHOD_CARD, CheckoutSession
from wedding_checkout.config import PAYMENT_TYPE_DEPOSIT

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
REQUIRES_STEP_UP = "requires_step_up"
FAILED = "failed"


class ChargeOutcome:
    def __init__(
        self,
        status: str,
        payment_intent_id: Optional[str] = None,
        booking_ids: Optional[List[str]] = None,
        client_secret: Optional[str] = None,
        error: Optional[CheckoutError] = None,
    ):
        self.status = status
        self.payment_intent_id = payment_intent_id
        self.booking_ids = list(booking_ids or [])
        self.client_secret = client_secret
        self.error = error

    @classmethod
    def succeeded(cls, payment_intent_id: str, booking_ids: List[str]) -> "ChargeOutcome":
        return cls(SUCCEEDED, payment_intent_id=payment_intent_id, booking_ids=booking_ids)

    @classmethod
    def requires_step_up(cls, client_secret: str, payment_intent_id: Optional[str] = None,
                         booking_ids: Optional[List[str]] = None) -> "ChargeOutcome":
        return cls(REQUIRES_STEP_UP, payment_intent_id=payment_intent_id,
                   booking_ids=booking_ids, client_secret=client_secret)

    @classmethod
    def failed(cls, error: CheckoutError) -> "ChargeOutcome":
        return cls(FAILED, error=error)

    @property
    def reason(self) -> Optional[str]:
        return self.error.message if self.error else None

    def __repr__(self) -> str:
        return f"ChargeOutcome(status={self.status!r}, payment_intent_id={self.payment_intent_id!r})"


class BookingApi(Protocol):
    async def charge_and_book(self, payload: Dict[str, Any], idempotency_key: str): ...


class Tokenizer(Protocol):
    async def tokenize(self, session: CheckoutSession) -> Optional[str]: ...


def build_charge_payload(session: CheckoutSession, payment_method_id: Optional[str]) -> Dict[str, Any]:
    """Requête charge-and-book (camelCase): panier, totaux, client, signatures, ajustements, instrument."""
    return {
        "cartItems": [item.model_dump(by_alias=True) for item in session.cart_items],
        "totals": session.totals.model_dump(by_alias=True),
        "customer": session.customer_info(),
        "signatures": dict(session.signatures),
        "discountAmount": session.discount_amount,
        "discountCode": session.discount_code,
        "referralCode": session.referral_code,
        "referralDiscount": session.referral_discount,
        "paymentMethodId": payment_method_id,
        "paymentMethod": session.payment_method,
        "paymentType": PAYMENT_TYPE_DEPOSIT,
        "savePaymentMethod": bool(session.customer.get("save_payment_method")),
    }


def interpret_charge_response(status_code: int, body: Dict[str, Any]) -> ChargeOutcome:
    body = body or {}
    if body.get("error") or status_code >= 400:
        message = body.get("error") or body.get("detail") or f"Paiement refusé (HTTP {status_code})"
        return ChargeOutcome.failed(ChargeError(str(message), status_code=status_code))
    if body.get("requiresAction"):
        secret = body.get("clientSecret")
        if not secret:
            return ChargeOutcome.failed(ChargeError("Vérification requise sans secret client", status_code=status_code))
        return ChargeOutcome.requires_step_up(secret, body.get("paymentIntentId"), body.get("bookingIds"))
    intent_id = body.get("paymentIntentId")
    if not intent_id:
        return ChargeOutcome.failed(ChargeError("Réponse de paiement invalide", status_code=status_code))
    return ChargeOutcome.succeeded(intent_id, [str(b) for b in body.get("bookingIds") or []])


def check_preconditions(session: CheckoutSession) -> None:
    items = session.cart_items
    if not items:
        raise ValidationError("Votre panier est vide", fields=["cart"])
    if not session.couple_id:
        raise ValidationError("Profil client introuvable", fields=["couple_id"])
    if not cart_logic.is_chargeable(session.charged_totals):
        # acompte nul après remise: seuls les frais plateforme seraient débités
        raise ValidationError("Montant à payer invalide", fields=["totals"])
    if session.payment_method == PAYMENT_METHOD_CARD and not session.customer.get("accept_processor_terms"):
        raise ValidationError("Veuillez accepter les conditions du processeur de paiement",
                              fields=["accept_processor_terms"])


class ChargeSubmitter:
    def __init__(self, api: BookingApi, tokenizer: Tokenizer):
        self.api = api
        self.tokenizer = tokenizer
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def submit(self, session: CheckoutSession) -> ChargeOutcome:
        """
        Une tentative de paiement.
        - Lève SubmissionInProgress si une tentative est déjà en cours (aucun appel backend).
        - Les erreurs de validation/tokenisation/charge sont retournées en ChargeOutcome.failed.
        """
        if self._in_flight:
            logger.warning("payments.submit rejected: submission already in flight")
            raise SubmissionInProgress("Un paiement est déjà en cours")
        self._in_flight = True
        try:
            return await self._submit(session)
        finally:
            self._in_flight = False

    async def _submit(self, session: CheckoutSession) -> ChargeOutcome:
        try:
            check_preconditions(session)
        except ValidationError as e:
            return ChargeOutcome.failed(e)

        try:
            payment_method_id = await self.tokenizer.tokenize(session)
        except TokenizationError as e:
            logger.info("payments.submit tokenization failed: %s", e.message)
            return ChargeOutcome.failed(e)

        payload = build_charge_payload(session, payment_method_id)
        try:
            status_code, body = await self.api.charge_and_book(payload, session.idempotency_key)
        except httpx.HTTPError as e:
            logger.warning("payments.submit transport error: %s", e)
            return ChargeOutcome.failed(ChargeError("Impossible de joindre le service de paiement", status_code=503))

        outcome = interpret_charge_response(status_code, body)
        logger.info(
            "payments.submit outcome=%s payment_intent_id=%s bookings=%s",
            outcome.status, outcome.payment_intent_id, len(outcome.booking_ids),
        )
        return outcome
