"""
Accès aux données pour la feature 'bookings' (lecture du statut des réservations).
"""
from typing import List, Optional
import logging

import wedding_checkout.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module wedding_checkout.bookings.repository
def fetch_bookings_by_payment_intent(payment_intent_id: str, user_id: str,
                                     statuses: Optional[List[str]] = None) -> List[dict]:
    """
    Réservations d'un paiement appartenant à l'utilisateur, filtrées par statut.
    - Retourne [] si l'identifiant est vide ou en cas d'erreur: absence de ligne = pas encore confirmé.
    """
    if not payment_intent_id or not user_id:
        return []
    try:
        query = (
            supabase_client.get_service_supabase()
            .table("bookings")
            .select("id, status")
            .eq("stripe_payment_intent_id", payment_intent_id)
            .eq("user_id", user_id)
        )
        if statuses:
            query = query.in_("status", statuses)
        res = query.execute()
        return res.data or []
    except Exception:
        logger.exception("bookings.repository.fetch_bookings_by_payment_intent failed payment_intent_id=%s", payment_intent_id)
        return []
