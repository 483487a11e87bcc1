"""
Sérialisation/désérialisation des métadonnées Stripe d'un PaymentIntent de checkout.
Stripe limite chaque valeur de metadata à 500 caractères: les JSON sont tronqués.
"""
import json
from typing import Any, Dict, List, Optional, Tuple

from wedding_checkout.checkout.cart import CartItem

_MAX_VALUE = 500

# module wedding_checkout.payments.metadata
def _truncate(value: str) -> str:
    return value[:_MAX_VALUE]

def cart_summary(items: List[CartItem]) -> List[Dict[str, Any]]:
    return [
        {"id": i.id, "pkg": i.package.id, "vendor": i.vendor.id, "type": i.service_type}
        for i in items
    ]

def make_metadata(
    *,
    couple_id: str,
    user_id: str,
    idempotency_key: str,
    payment_type: str,
    items: List[CartItem],
    signatures: Dict[str, str],
    discount_amount: int = 0,
    referral_code: str = "",
    referral_discount: int = 0,
) -> Dict[str, str]:
    """
    Métadonnées attachées au PaymentIntent.
    - idempotency_key permet au webhook de retrouver les réservations même si l'id
      du paiement n'a pas encore été rattaché aux lignes.
    """
    return {
        "couple_id": couple_id,
        "user_id": user_id or "",
        "idempotency_key": idempotency_key,
        "payment_type": payment_type,
        "item_count": str(len(items)),
        "cart": _truncate(json.dumps(cart_summary(items))),
        "signatures": _truncate(json.dumps(signatures or {})),
        "discount_amount": str(int(discount_amount or 0)),
        "referral_code": referral_code or "",
        "referral_discount": str(int(referral_discount or 0)),
    }

def extract_intent(event: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    Extrait (payment_intent_id, metadata) depuis un event Stripe payment_intent.*.
    - Tolérant: retourne (None, {}) si la structure est inattendue.
    """
    data_obj = (event or {}).get("data", {}).get("object", {}) if isinstance(event, dict) else {}
    if not isinstance(data_obj, dict):
        return None, {}
    return data_obj.get("id"), dict(data_obj.get("metadata") or {})

def extract_cart(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Résumé panier depuis la metadata (liste vide si JSON tronqué ou invalide)."""
    cart_json = (metadata or {}).get("cart")
    try:
        cart = json.loads(cart_json) if cart_json else []
    except ValueError:
        cart = []
    return cart if isinstance(cart, list) else []
