"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
- Côté serveur: PaymentIntent (création idempotente, lecture), webhook signé.
- Côté client (orchestration du checkout): tokenisation carte et défi de vérification (step-up).
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import Request

from wedding_checkout.checkout.exceptions import StepUpFailure, TokenizationError
from wedding_checkout.checkout.session import PAYMENT_METHOD_AFFIRM, CheckoutSession
from wedding_checkout.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

# module wedding_checkout.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - En absence de clé, les appels Stripe échoueront côté SDK (ex: No API key provided).
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    return stripe

def create_payment_method(card_token: str) -> Dict[str, Any]:
    """Transforme une source carte (tok_...) en PaymentMethod réutilisable par un PaymentIntent."""
    require_stripe()
    pm = stripe.PaymentMethod.create(type="card", card={"token": card_token})
    return dict(pm)

def create_payment_intent(
    *,
    amount: int,
    currency: str,
    payment_method: Optional[str],
    method_type: str,
    metadata: Dict[str, str],
    idempotency_key: str,
    return_url: str,
) -> Dict[str, Any]:
    """
    Crée et confirme un PaymentIntent.
    - amount: centimes.
    - idempotency_key transmis à Stripe: un retry avec la même clé renvoie la même intention.
    - affirm: pas de PaymentMethod préalable, Stripe impose toujours une redirection.
    Retour: dict incluant "id", "status", "client_secret".
    """
    require_stripe()
    params: Dict[str, Any] = {
        "amount": int(amount),
        "currency": currency,
        "payment_method_types": [method_type],
        "metadata": metadata,
        "confirm": True,
        "return_url": return_url,
    }
    if payment_method:
        params["payment_method"] = payment_method
    else:
        params["payment_method_data"] = {"type": method_type}
    intent = stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)
    return dict(intent)

def retrieve_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    require_stripe()
    return dict(stripe.PaymentIntent.retrieve(payment_intent_id))

async def parse_event(request: Request):
    """
    Parse et valide un événement Stripe signé (webhook).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Retour: l’objet event si la signature est valide.
    """
    require_stripe()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or request.headers.get("Stripe-Signature")
    return stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET or "")


class StripeTokenizer:
    """Tokenisation locale de l'instrument; aucune requête au backend de réservation."""

    def __init__(self, create_method=None):
        self._create_method = create_method or create_payment_method

    async def tokenize(self, session: CheckoutSession) -> Optional[str]:
        if session.payment_method == PAYMENT_METHOD_AFFIRM:
            return None
        if not session.card_source or not session.payment_details_complete:
            raise TokenizationError("Veuillez compléter les informations de carte")
        try:
            pm = await asyncio.to_thread(self._create_method, session.card_source)
        except stripe.StripeError as e:
            logger.warning("payments.tokenize failed code=%s", getattr(e, "code", None))
            raise TokenizationError(getattr(e, "user_message", None) or str(e) or "Carte refusée") from e
        pm_id = (pm or {}).get("id")
        if not pm_id:
            raise TokenizationError("Impossible de créer le moyen de paiement")
        return pm_id


class AwaitableStepUp:
    """
    Défi de vérification attendu comme un résultat (pas de callback).
    L'UI (ou le retour de redirection) résout le défi via complete / fail / abandon;
    le contrôleur attend `await step_up(client_secret, payment_intent_id)`.
    """

    def __init__(self):
        self._future: Optional[asyncio.Future] = None
        self.client_secret: Optional[str] = None
        self.payment_intent_id: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._future is not None and not self._future.done()

    def _resolve(self, outcome) -> None:
        if self._future is None or self._future.done():
            return
        self._future.set_result(outcome)

    def complete(self) -> None:
        self._resolve(None)

    def fail(self, reason: str) -> None:
        self._resolve(StepUpFailure(reason or "Vérification échouée"))

    def abandon(self) -> None:
        self._resolve(StepUpFailure("Vérification abandonnée", abandoned=True))

    async def __call__(self, client_secret: str, payment_intent_id: Optional[str] = None) -> None:
        self.client_secret = client_secret
        self.payment_intent_id = payment_intent_id
        self._future = asyncio.get_running_loop().create_future()
        try:
            outcome = await self._future
        finally:
            self._future = None
        if isinstance(outcome, StepUpFailure):
            raise outcome
