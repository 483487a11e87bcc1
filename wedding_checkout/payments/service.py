"""
Cas d'usage 'payments' côté serveur: orchestre repository, cart, stripe, metadata.
- charge_and_book: un PaymentIntent + N réservations, rejouable avec la même clé d'idempotence.
- handle_event: webhook Stripe (confirmation asynchrone des réservations).
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

import stripe

from wedding_checkout.checkout import cart as cart_logic
from wedding_checkout.checkout.exceptions import ChargeError
from wedding_checkout.config import (
    BASE_URL,
    CURRENCY,
    MAX_REFERRAL_DISCOUNT_CENTS,
    PAYMENT_TYPE_DEPOSIT,
    STEP_UP_RETURN_PATH,
)
from wedding_checkout.payments import metadata as meta
from wedding_checkout.payments import repository
from wedding_checkout.payments import stripe_client
from wedding_checkout.payments.repository import STATUS_CONFIRMED, STATUS_PAYMENT_FAILED, STATUS_PENDING
from wedding_checkout.payments.schemas import ChargeRequest

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = ("succeeded", "processing", "requires_capture")
_ACTION_STATUSES = ("requires_action", "requires_confirmation")

# module wedding_checkout.payments.service
def _coupon_expired(coupon: Dict[str, Any]) -> bool:
    raw = coupon.get("expiration_date")
    if not raw:
        return False
    try:
        expires = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return True
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires < datetime.now(timezone.utc)

def coupon_discount(coupon: Dict[str, Any], subtotal: int) -> int:
    """Remise d'un code promo: pourcentage du sous-total (arrondi) ou montant fixe en centimes."""
    percent = coupon.get("discount_percent") or 0
    if percent and float(percent) > 0:
        return cart_logic.round_half_up(Decimal(subtotal) * Decimal(str(percent)) / Decimal(100))
    return max(0, int(coupon.get("discount_amount") or 0))

def verify_discounts(request: ChargeRequest, subtotal: int) -> int:
    """
    Revérifie les ajustements envoyés par le client et retourne la remise totale (centimes).
    - discountAmount doit correspondre au code promo actif recalculé côté serveur.
    - referralDiscount exige un code et reste sous MAX_REFERRAL_DISCOUNT_CENTS.
    """
    discount = 0
    if request.discount_amount:
        code = (request.discount_code or "").strip()
        if not code:
            raise ChargeError("Code de remise manquant")
        coupon = repository.find_valid_coupon(code)
        if not coupon or _coupon_expired(coupon):
            raise ChargeError("Code de remise invalide ou expiré")
        expected = coupon_discount(coupon, subtotal)
        if expected != request.discount_amount:
            raise ChargeError("Le montant de la remise ne correspond pas au code")
        discount += expected
    if request.referral_discount:
        if not (request.referral_code or "").strip():
            raise ChargeError("Code de parrainage manquant")
        if request.referral_discount > MAX_REFERRAL_DISCOUNT_CENTS:
            raise ChargeError("Remise de parrainage invalide")
        discount += request.referral_discount
    return discount

def validate_request(request: ChargeRequest) -> cart_logic.Totals:
    """
    Recalcule les totaux côté serveur et vérifie remises, signatures et instrument.
    Retour: les totaux effectivement débités (après remise et parrainage).
    """
    totals = cart_logic.compute_totals(request.cart_items)
    if request.totals.grand_total != totals.grand_total:
        raise ChargeError(
            f"Le total ne correspond pas au panier (attendu {cart_logic.format_cents(totals.grand_total)})"
        )

    discount = verify_discounts(request, totals.subtotal)
    charged = cart_logic.compute_totals(request.cart_items, discount=discount)
    if not cart_logic.is_chargeable(charged):
        # remise >= sous-total: seuls les frais plateforme seraient débités
        raise ChargeError("Montant à payer invalide")

    missing = [
        t for t in cart_logic.service_types(request.cart_items)
        if not (request.signatures.get(t) or "").strip()
    ]
    if missing:
        raise ChargeError("Contrats non signés: " + ", ".join(missing))

    if request.payment_method == "card" and not request.payment_method_id:
        raise ChargeError("Moyen de paiement manquant")
    return charged

def build_booking_rows(request: ChargeRequest, idempotency_key: str, user_id: str,
                       charged: cart_logic.Totals) -> List[Dict[str, Any]]:
    """
    Une ligne par article.
    - L'acompte débité (après remise) est réparti au prorata des prix: la somme des parts
      plus les frais plateforme (première ligne uniquement) égale le montant débité.
    """
    shares = cart_logic.prorate(charged.deposit_amount, [item.package.price for item in request.cart_items])
    rows: List[Dict[str, Any]] = []
    for index, item in enumerate(request.cart_items):
        rows.append({
            "user_id": user_id,
            "couple_id": request.customer.couple_id,
            "vendor_id": item.vendor.id,
            "package_id": item.package.id,
            "service_type": item.service_type,
            "amount": item.package.price,
            "vendor_deposit_share": shares[index],
            "platform_deposit_share": charged.platform_fee if index == 0 else 0,
            "event_date": item.event_date or None,
            "event_time": item.event_time or None,
            "end_time": item.end_time or None,
            "venue_id": item.venue.id if item.venue else None,
            "venue_name": item.venue.name if item.venue else None,
            "signature": request.signatures.get(item.service_type, "").strip(),
            "status": STATUS_PENDING,
            "payment_type": PAYMENT_TYPE_DEPOSIT,
            "idempotency_key": idempotency_key,
            "cart_item_id": item.id,
        })
    return rows

def respond_for_intent(intent: Dict[str, Any], booking_ids: List[str]) -> Dict[str, Any]:
    """Traduit l'état Stripe en réponse charge-and-book."""
    status = intent.get("status") or ""
    intent_id = intent.get("id")
    if status in _SUCCESS_STATUSES:
        return {"paymentIntentId": intent_id, "bookingIds": booking_ids}
    if status in _ACTION_STATUSES:
        return {
            "requiresAction": True,
            "clientSecret": intent.get("client_secret"),
            "paymentIntentId": intent_id,
            "bookingIds": booking_ids,
        }
    raise ChargeError(f"Paiement refusé (status={status})", status_code=402)

def _create_intent(request: ChargeRequest, user: Dict[str, Any], idempotency_key: str,
                   booking_ids: List[str], amount: int) -> Dict[str, Any]:
    metadata = meta.make_metadata(
        couple_id=request.customer.couple_id,
        user_id=str(user.get("id") or ""),
        idempotency_key=idempotency_key,
        payment_type=request.payment_type,
        items=request.cart_items,
        signatures=request.signatures,
        discount_amount=request.discount_amount,
        referral_code=request.referral_code,
        referral_discount=request.referral_discount,
    )
    try:
        intent = stripe_client.create_payment_intent(
            amount=amount,
            currency=CURRENCY,
            payment_method=request.payment_method_id,
            method_type=request.payment_method,
            metadata=metadata,
            idempotency_key=idempotency_key,
            return_url=f"{BASE_URL.rstrip('/')}{STEP_UP_RETURN_PATH}",
        )
    except stripe.CardError as e:
        repository.update_bookings_status(booking_ids, STATUS_PAYMENT_FAILED)
        logger.info("payments.charge card declined key=%s code=%s", idempotency_key, getattr(e, "code", None))
        raise ChargeError(getattr(e, "user_message", None) or "Carte refusée", status_code=402) from e
    except stripe.StripeError as e:
        repository.update_bookings_status(booking_ids, STATUS_PAYMENT_FAILED)
        logger.warning("payments.charge stripe error key=%s: %s", idempotency_key, e)
        raise ChargeError(getattr(e, "user_message", None) or "Erreur du processeur de paiement") from e

    intent_id = intent.get("id")
    if intent.get("status") in ("requires_payment_method", "canceled"):
        repository.update_bookings_status(booking_ids, STATUS_PAYMENT_FAILED, payment_intent_id=intent_id)
    else:
        repository.attach_payment_intent(booking_ids, intent_id)
    return intent

def _replay(rows: List[dict], request: ChargeRequest, user: Dict[str, Any], idempotency_key: str,
            amount: int) -> Dict[str, Any]:
    booking_ids = [str(r.get("id")) for r in rows]
    if any(r.get("status") == STATUS_PAYMENT_FAILED for r in rows):
        raise ChargeError("Ce paiement a échoué; relancez-le avec une nouvelle tentative", status_code=402)
    intent_id = next((r.get("stripe_payment_intent_id") for r in rows if r.get("stripe_payment_intent_id")), None)
    if intent_id:
        logger.info("payments.charge replay key=%s payment_intent_id=%s", idempotency_key, intent_id)
        return respond_for_intent(stripe_client.retrieve_payment_intent(intent_id), booking_ids)
    # lignes créées mais intention jamais rattachée: Stripe renvoie la même via la clé
    intent = _create_intent(request, user, idempotency_key, booking_ids, amount)
    return respond_for_intent(intent, booking_ids)

def charge_and_book(*, user: Dict[str, Any], request: ChargeRequest, idempotency_key: str) -> Dict[str, Any]:
    """
    Crée exactement un paiement et N réservations pour une clé d'idempotence.
    - Rejouer la même clé ne crée ni paiement ni réservation supplémentaire.
    - Lève ChargeError (400/402/403/500) avec un message destiné à l'utilisateur.
    """
    if not (idempotency_key or "").strip():
        raise ChargeError("En-tête Idempotency-Key manquant")
    user_id = str(user.get("id") or "")
    if not repository.couple_belongs_to_user(request.customer.couple_id, user_id):
        logger.warning("payments.charge couple not owned couple_id=%s", request.customer.couple_id)
        raise ChargeError("Profil client introuvable pour cet utilisateur", status_code=403)
    charged = validate_request(request)

    existing = repository.find_bookings_by_idempotency_key(idempotency_key)
    if existing:
        return _replay(existing, request, user, idempotency_key, charged.grand_total)

    try:
        rows = repository.insert_bookings(build_booking_rows(request, idempotency_key, user_id, charged))
    except Exception as e:
        # requête concurrente avec la même clé: contrainte d'unicité côté base
        existing = repository.find_bookings_by_idempotency_key(idempotency_key)
        if existing:
            return _replay(existing, request, user, idempotency_key, charged.grand_total)
        raise ChargeError("Impossible d'enregistrer les réservations", status_code=500) from e

    booking_ids = [str(r.get("id")) for r in rows if r.get("id")]
    if len(booking_ids) != len(request.cart_items):
        raise ChargeError("Impossible d'enregistrer les réservations", status_code=500)

    intent = _create_intent(request, user, idempotency_key, booking_ids, charged.grand_total)
    response = respond_for_intent(intent, booking_ids)
    logger.info(
        "payments.charge created payment_intent_id=%s bookings=%s amount=%s requires_action=%s",
        intent.get("id"), len(booking_ids), charged.grand_total, bool(response.get("requiresAction")),
    )
    return response

# --- Webhook ---

def _bookings_for_event(payment_intent_id: Optional[str], metadata: Dict[str, Any]) -> List[dict]:
    rows = repository.find_bookings_by_intent(payment_intent_id) if payment_intent_id else []
    if not rows and metadata.get("idempotency_key"):
        rows = repository.find_bookings_by_idempotency_key(metadata["idempotency_key"])
    return rows

def confirm_payment(payment_intent_id: Optional[str], metadata: Dict[str, Any], amount_received: int = 0) -> int:
    """
    payment_intent.succeeded: enregistre le paiement puis confirme les réservations.
    - Idempotent: les lignes déjà confirmées sont ignorées.
    - Le paiement est durable avant qu'une réservation ne passe à "confirmed".
    Retour: nombre de réservations confirmées par cet appel.
    """
    rows = _bookings_for_event(payment_intent_id, metadata)
    todo = [r for r in rows if r.get("status") != STATUS_CONFIRMED]
    if not todo:
        return 0
    payments = [
        {
            "booking_id": r.get("id"),
            "couple_id": r.get("couple_id") or metadata.get("couple_id"),
            "vendor_id": r.get("vendor_id"),
            "amount": int(r.get("vendor_deposit_share") or 0) + int(r.get("platform_deposit_share") or 0),
            "payment_type": metadata.get("payment_type") or PAYMENT_TYPE_DEPOSIT,
            "stripe_payment_intent_id": payment_intent_id,
            "status": "succeeded",
        }
        for r in todo
    ]
    repository.insert_payments(payments)
    updated = repository.update_bookings_status(
        [r.get("id") for r in todo], STATUS_CONFIRMED, payment_intent_id=payment_intent_id
    )
    logger.info(
        "payments.webhook confirmed payment_intent_id=%s bookings=%s amount_received=%s",
        payment_intent_id, len(updated or todo), amount_received,
    )
    return len(todo)

def fail_payment(payment_intent_id: Optional[str], metadata: Dict[str, Any]) -> int:
    rows = _bookings_for_event(payment_intent_id, metadata)
    pending = [r.get("id") for r in rows if r.get("status") == STATUS_PENDING]
    if pending:
        repository.update_bookings_status(pending, STATUS_PAYMENT_FAILED, payment_intent_id=payment_intent_id)
    logger.info("payments.webhook failed payment_intent_id=%s bookings=%s", payment_intent_id, len(pending))
    return len(pending)

def handle_event(event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = (event or {}).get("type")
    payment_intent_id, metadata = meta.extract_intent(event)
    if event_type == "payment_intent.succeeded":
        obj = (event.get("data") or {}).get("object") or {}
        updated = confirm_payment(payment_intent_id, metadata, int(obj.get("amount_received") or 0))
        return {"status": "ok", "confirmed": updated}
    if event_type == "payment_intent.payment_failed":
        updated = fail_payment(payment_intent_id, metadata)
        return {"status": "ok", "failed": updated}
    return {"status": "ignored"}
