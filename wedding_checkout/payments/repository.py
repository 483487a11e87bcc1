"""
Accès aux données pour la feature 'payments' (tables bookings et payments).
- Écritures via service-role (bypass RLS): endpoint charge-and-book et webhook Stripe.
- Lecture: échec => [] (absence de ligne = « pas encore confirmé »).
- Écriture: échec => journalisé puis propagé (le service traduit en erreur typée).
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

from postgrest.exceptions import APIError

import wedding_checkout.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_PAYMENT_FAILED = "payment_failed"

# module wedding_checkout.payments.repository
def find_bookings_by_idempotency_key(idempotency_key: str) -> List[dict]:
    if not idempotency_key:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("bookings")
            .select("id, status, stripe_payment_intent_id, idempotency_key")
            .eq("idempotency_key", idempotency_key)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("payments.repository.find_bookings_by_idempotency_key failed key=%s", idempotency_key)
        return []

def find_bookings_by_intent(payment_intent_id: str) -> List[dict]:
    if not payment_intent_id:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("bookings")
            .select("*")
            .eq("stripe_payment_intent_id", payment_intent_id)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("payments.repository.find_bookings_by_intent failed payment_intent_id=%s", payment_intent_id)
        return []

def find_valid_coupon(code: str) -> Optional[dict]:
    """Code promo actif (is_valid), recherché en majuscules. None si absent ou en cas d'erreur."""
    cleaned = (code or "").strip().upper()
    if not cleaned:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("coupons")
            .select("code, discount_percent, discount_amount, expiration_date, is_valid")
            .eq("code", cleaned)
            .eq("is_valid", True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("payments.repository.find_valid_coupon failed code=%s", cleaned)
        return None

def couple_belongs_to_user(couple_id: str, user_id: str) -> bool:
    """Vrai si le profil couple appartient à l'utilisateur authentifié (échec de lecture => False)."""
    if not couple_id or not user_id:
        return False
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("couples")
            .select("id")
            .eq("id", couple_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return bool(res.data)
    except Exception:
        logger.exception("payments.repository.couple_belongs_to_user failed couple_id=%s", couple_id)
        return False

def insert_bookings(rows: List[Dict[str, Any]]) -> List[dict]:
    """Insère une ligne par article du panier en une seule requête."""
    try:
        res = supabase_client.get_service_supabase().table("bookings").insert(rows).execute()
        return res.data or []
    except APIError as e:
        # 23505: contrainte (idempotency_key, cart_item_id) violée par une requête concurrente
        logger.warning("payments.repository.insert_bookings rejected code=%s rows=%s", e.code, len(rows))
        raise
    except Exception:
        logger.exception("payments.repository.insert_bookings failed rows=%s", len(rows))
        raise

def attach_payment_intent(booking_ids: Iterable[str], payment_intent_id: str) -> None:
    ids = [str(i) for i in booking_ids]
    if not ids:
        return
    try:
        (
            supabase_client.get_service_supabase()
            .table("bookings")
            .update({"stripe_payment_intent_id": payment_intent_id})
            .in_("id", ids)
            .execute()
        )
    except Exception:
        logger.exception("payments.repository.attach_payment_intent failed payment_intent_id=%s", payment_intent_id)
        raise

def update_bookings_status(booking_ids: Iterable[str], status: str,
                           payment_intent_id: Optional[str] = None) -> List[dict]:
    ids = [str(i) for i in booking_ids]
    if not ids:
        return []
    values: Dict[str, Any] = {"status": status}
    if payment_intent_id:
        values["stripe_payment_intent_id"] = payment_intent_id
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("bookings")
            .update(values)
            .in_("id", ids)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("payments.repository.update_bookings_status failed status=%s ids=%s", status, ids)
        raise

def insert_payments(rows: List[Dict[str, Any]]) -> List[dict]:
    if not rows:
        return []
    try:
        res = supabase_client.get_service_supabase().table("payments").insert(rows).execute()
        return res.data or []
    except Exception:
        logger.exception("payments.repository.insert_payments failed rows=%s", len(rows))
        raise
