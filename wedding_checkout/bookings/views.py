from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from wedding_checkout.utils.security import require_user
from wedding_checkout.bookings.service import get_booking_statuses

router = APIRouter(prefix="/api/v1/bookings", tags=["Bookings API"])

@router.get("/status")
def booking_status(
    payment_intent_id: str = Query(..., min_length=1),
    status: Optional[str] = Query("confirmed"),
    user: Dict[str, Any] = Depends(require_user),
) -> Dict[str, Any]:
    """
    Statut des réservations d'un paiement (consommé par le Reconciler).
    - Ne renvoie que les lignes correspondantes de l'utilisateur; une absence signifie « pas encore confirmé ».
    """
    return {"bookings": get_booking_statuses(payment_intent_id, str(user.get("id") or ""), status)}
