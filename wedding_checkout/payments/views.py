import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from wedding_checkout.checkout.exceptions import ChargeError
from wedding_checkout.utils.security import require_user
from wedding_checkout.utils.rate_limit import optional_rate_limit
from wedding_checkout.payments import stripe_client
from wedding_checkout.payments import service as payments_service
from wedding_checkout.payments.schemas import ChargeRequest

logger = logging.getLogger(__name__)
checkout_router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module wedding_checkout.payments.views
@checkout_router.post("/charge", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def charge_and_book(
    payload: ChargeRequest,
    idempotency_key: str = Header(default="", alias="Idempotency-Key"),
    user: Dict[str, Any] = Depends(require_user),
):
    """
    Crée le paiement d'acompte et les réservations du panier (une requête, une intention).
    - En-tête Idempotency-Key obligatoire: rejouer la même clé renvoie le même résultat.
    - Réponses: {paymentIntentId, bookingIds} | {requiresAction, clientSecret, ...} | {error}
    - Erreurs: 400 (validation/processeur), 402 (carte refusée), 500 (enregistrement impossible)
    """
    try:
        return payments_service.charge_and_book(user=user, request=payload, idempotency_key=idempotency_key)
    except ChargeError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})

@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request):
    """
    Webhook Stripe: confirmation asynchrone des réservations.
    - Signature: valide via stripe_client.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - payment_intent.succeeded => paiements enregistrés puis réservations "confirmed"
    - payment_intent.payment_failed => réservations en attente "payment_failed"
    - Réponses: {"status": "ok", ...} ou {"status": "ignored"}
    - Erreurs: 400 si signature/payload invalide
    """
    try:
        event = await stripe_client.parse_event(request)
    except Exception:
        logger.exception("Erreur webhook_stripe")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    if not isinstance(event, dict) and hasattr(event, "to_dict"):
        event = event.to_dict()
    result = payments_service.handle_event(event)
    logger.info("payments.webhook type=%s result=%s", (event or {}).get("type"), result)
    return JSONResponse(result)
