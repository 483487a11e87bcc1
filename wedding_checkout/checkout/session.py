"""
État de la session de checkout (données + mutateurs nommés, aucune I/O).
- Créée à l'ouverture du checkout, détruite à l'abandon ou à la fin.
- Seul le WizardController fait avancer current_step (après validation de la porte courante).
- Les signatures sont indexées par type de service, jamais par article du panier.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4
import logging

from wedding_checkout.checkout import cart as cart_logic
from wedding_checkout.checkout.cart import CartItem, Totals
from wedding_checkout.checkout.exceptions import ValidationError

logger = logging.getLogger(__name__)


class WizardStep(str, Enum):
    DETAILS = "details"
    CONTRACTS = "contracts"
    PAYMENT = "payment"
    STEP_UP = "step_up"
    CONFIRMED = "confirmed"
    # Paiement accepté, confirmation des réservations en attente (support)
    UNCONFIRMED = "unconfirmed"


STEP_ORDER = [WizardStep.DETAILS, WizardStep.CONTRACTS, WizardStep.PAYMENT, WizardStep.STEP_UP]

PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_AFFIRM = "affirm"
PAYMENT_METHODS = (PAYMENT_METHOD_CARD, PAYMENT_METHOD_AFFIRM)

REQUIRED_FIELDS = ("partner1_name", "email", "phone", "billing_address", "city", "state", "zip_code")
OPTIONAL_FIELDS = ("partner2_name", "guest_count", "special_requests", "couple_id")
FLAG_FIELDS = ("agreed_to_terms", "accept_processor_terms", "save_payment_method")


class CheckoutSession:
    def __init__(self, cart_items: Sequence[CartItem], couple_id: Optional[str] = None):
        self._cart_items: List[CartItem] = list(cart_items or [])
        self.current_step = WizardStep.DETAILS
        self.customer: Dict[str, Any] = {name: "" for name in REQUIRED_FIELDS + OPTIONAL_FIELDS}
        self.customer.update({"agreed_to_terms": True, "accept_processor_terms": False, "save_payment_method": False})
        if couple_id:
            self.customer["couple_id"] = couple_id
        self.signatures: Dict[str, str] = {}
        self.draft_signatures: Dict[str, str] = {}
        self.payment_method = PAYMENT_METHOD_CARD
        self.payment_details_complete = False
        self.card_source: Optional[str] = None
        self.discount_amount = 0
        self.discount_code = ""
        self.referral_code = ""
        self.referral_discount = 0
        self.error: Optional[str] = None
        self.idempotency_key = str(uuid4())

    # --- Panier et totaux ---

    @property
    def cart_items(self) -> List[CartItem]:
        return list(self._cart_items)

    def replace_cart(self, cart_items: Sequence[CartItem]) -> None:
        """Remplace le panier; les totaux sont recalculés au prochain accès."""
        self._cart_items = list(cart_items or [])
        # Un nouveau panier = une nouvelle intention de paiement
        self.rotate_idempotency_key()

    @property
    def totals(self) -> Totals:
        return cart_logic.compute_totals(self._cart_items)

    @property
    def grand_total(self) -> int:
        return self.totals.grand_total

    @property
    def charged_totals(self) -> Totals:
        """Totaux après remise et parrainage: le montant réellement débité par le serveur."""
        return cart_logic.compute_totals(self._cart_items, discount=self.discount_amount + self.referral_discount)

    @property
    def charged_total(self) -> int:
        return self.charged_totals.grand_total

    # --- Champs client ---

    def update_field(self, name: str, value: Any) -> None:
        """Met à jour un champ client connu; efface l'erreur affichée."""
        if name not in self.customer:
            raise ValidationError(f"Champ inconnu: {name}", fields=[name])
        if name in FLAG_FIELDS:
            value = bool(value)
        elif value is None:
            value = ""
        else:
            value = str(value)
        self.customer[name] = value
        self.clear_error()

    def prefill(self, couple: Optional[Dict[str, Any]] = None, user: Optional[Dict[str, Any]] = None) -> None:
        """
        Pré-remplit les champs vides depuis le profil couple puis l'utilisateur connecté.
        - Ne remplace jamais une valeur déjà saisie.
        """
        couple = couple or {}
        user = user or {}
        if couple.get("id"):
            self.customer["couple_id"] = str(couple["id"])
        candidates = {
            "partner1_name": couple.get("partner1_name") or (user.get("user_metadata") or {}).get("name"),
            "partner2_name": couple.get("partner2_name"),
            "email": couple.get("email") or user.get("email"),
            "phone": couple.get("phone"),
            "guest_count": couple.get("guest_count"),
        }
        for name, value in candidates.items():
            if value and not str(self.customer.get(name) or "").strip():
                self.customer[name] = str(value)

    def missing_required_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS if not str(self.customer.get(name) or "").strip()]

    @property
    def details_complete(self) -> bool:
        return not self.missing_required_fields() and bool(self.customer.get("agreed_to_terms"))

    @property
    def couple_id(self) -> str:
        return str(self.customer.get("couple_id") or "")

    @property
    def client_name(self) -> str:
        p1 = str(self.customer.get("partner1_name") or "").strip()
        p2 = str(self.customer.get("partner2_name") or "").strip()
        return f"{p1} & {p2}" if p2 else p1

    # --- Signatures ---

    def set_draft_signature(self, service_type: str, text: str) -> None:
        self.draft_signatures[service_type] = text or ""

    def confirm_signature(self, service_type: str) -> bool:
        """
        Copie le brouillon dans les signatures définitives (action explicite uniquement).
        Retourne False si le brouillon est vide après trim.
        """
        draft = (self.draft_signatures.get(service_type) or "").strip()
        if not draft:
            return False
        self.signatures[service_type] = draft
        self.clear_error()
        return True

    # --- Paiement ---

    def set_payment_method(self, method: str) -> None:
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Moyen de paiement non supporté: {method}", fields=["payment_method"])
        self.payment_method = method
        self.payment_details_complete = False
        self.card_source = None

    def set_card_source(self, source: Optional[str], complete: bool = True) -> None:
        """Source carte fournie par l'élément de saisie du processeur (ex: tok_...)."""
        self.card_source = source or None
        self.payment_details_complete = bool(source) and complete

    def apply_discount(self, amount: int, code: str = "") -> None:
        """Remise issue d'un code promo; le serveur revérifie le code et le montant."""
        self.discount_amount = max(0, int(amount or 0))
        self.discount_code = (code or "").strip() if self.discount_amount else ""

    def apply_referral(self, code: str, discount: int) -> None:
        self.referral_code = (code or "").strip()
        self.referral_discount = max(0, int(discount or 0))

    def remove_referral(self) -> None:
        self.referral_code = ""
        self.referral_discount = 0

    def rotate_idempotency_key(self) -> str:
        """Nouvelle clé après un échec terminal: la resoumission explicite crée une nouvelle intention."""
        self.idempotency_key = str(uuid4())
        return self.idempotency_key

    # --- Étape et erreurs ---

    def set_current_step(self, step: WizardStep) -> None:
        self.current_step = step

    def set_error(self, message: Optional[str]) -> None:
        self.error = message or None

    def clear_error(self) -> None:
        self.error = None

    def customer_info(self) -> Dict[str, Any]:
        """Champs client envoyés au backend (camelCase, format attendu par l'endpoint)."""
        first = self._cart_items[0] if self._cart_items else None
        return {
            "partner1Name": self.customer["partner1_name"],
            "partner2Name": self.customer["partner2_name"] or "",
            "email": self.customer["email"],
            "phone": self.customer["phone"],
            "billingAddress": self.customer["billing_address"],
            "city": self.customer["city"],
            "state": self.customer["state"],
            "zipCode": self.customer["zip_code"],
            "guestCount": self.customer["guest_count"] or "",
            "specialRequests": self.customer["special_requests"] or "",
            "coupleId": self.couple_id,
            "eventDate": first.event_date if first else "",
            "eventTime": first.event_time if first else "",
            "endTime": first.end_time if first else "",
        }
