from typing import Dict, List, Optional

from wedding_checkout.bookings import repository

ALLOWED_STATUSES = ("pending", "confirmed", "payment_failed", "completed", "cancelled")

def parse_statuses(raw: Optional[str]) -> List[str]:
    """ "confirmed,pending" -> ["confirmed", "pending"] (statuts inconnus ignorés)."""
    return [s for s in (p.strip() for p in (raw or "").split(",")) if s in ALLOWED_STATUSES]

def get_booking_statuses(payment_intent_id: str, user_id: str,
                         status: Optional[str] = "confirmed") -> List[Dict[str, str]]:
    """
    Sous-ensemble des réservations d'un paiement correspondant au(x) statut(s) demandé(s).
    Seules les réservations de l'utilisateur sont visibles.
    Un filtre ne contenant que des statuts inconnus ne renvoie rien.
    """
    statuses = parse_statuses(status)
    if status and not statuses:
        return []
    rows = repository.fetch_bookings_by_payment_intent(payment_intent_id, user_id, statuses or None)
    return [{"id": str(r.get("id")), "status": str(r.get("status") or "")} for r in rows if r.get("id")]
