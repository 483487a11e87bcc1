"""
Logique panier pure (pas de Stripe, pas de DB).
- CartItem et ses dépendances (package, vendor, venue), lus depuis le JSON du front.
- Totaux: acompte = round(sous-total * taux), frais plateforme fixes si panier non vide.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wedding_checkout.config import DEPOSIT_RATE, PLATFORM_FEE_CENTS

# module wedding_checkout.checkout.cart
_MODEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Package(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    name: str
    service_type: str
    # centimes
    price: int = Field(ge=0)


class Vendor(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    name: str


class Venue(BaseModel):
    model_config = _MODEL_CONFIG

    id: Optional[str] = None
    name: str = ""


class CartItem(BaseModel):
    model_config = _MODEL_CONFIG

    id: str
    package: Package
    vendor: Vendor
    event_date: str = ""
    event_time: str = ""
    end_time: str = ""
    venue: Optional[Venue] = None

    @property
    def service_type(self) -> str:
        return self.package.service_type


class Totals(BaseModel):
    model_config = _MODEL_CONFIG

    subtotal: int
    deposit_amount: int
    platform_fee: int
    grand_total: int


def round_half_up(value: Decimal) -> int:
    """Arrondi commercial (0.5 -> supérieur), identique à Math.round pour des montants positifs."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def subtotal(items: Iterable[CartItem]) -> int:
    return sum(item.package.price for item in items)


def deposit_for(amount: int, deposit_rate: float = DEPOSIT_RATE) -> int:
    return round_half_up(Decimal(amount) * Decimal(str(deposit_rate)))


def compute_totals(
    items: Sequence[CartItem],
    deposit_rate: float = DEPOSIT_RATE,
    platform_fee: int = PLATFORM_FEE_CENTS,
    discount: int = 0,
) -> Totals:
    """
    Calcule les totaux à partir de l'état courant du panier (jamais mis en cache).
    - discount (centimes) est déduit du sous-total avant l'acompte, plancher à 0.
    - Les frais plateforme ne s'appliquent qu'à un panier non vide.
    """
    base = max(0, subtotal(items) - max(0, int(discount or 0)))
    deposit = deposit_for(base, deposit_rate)
    fee = platform_fee if items else 0
    return Totals(
        subtotal=subtotal(items),
        deposit_amount=deposit,
        platform_fee=fee,
        grand_total=deposit + fee,
    )


def prorate(total: int, weights: Sequence[int]) -> List[int]:
    """
    Répartit `total` (centimes) proportionnellement aux poids, sans perte:
    parts entières arrondies vers le bas, unités restantes aux plus grands restes (ordre du panier à égalité).
    """
    if not weights:
        return []
    weight_sum = sum(weights)
    if weight_sum <= 0:
        return [total] + [0] * (len(weights) - 1)
    exact = [Decimal(total) * Decimal(w) / Decimal(weight_sum) for w in weights]
    shares = [int(x) for x in exact]
    remainder = total - sum(shares)
    order = sorted(range(len(weights)), key=lambda i: (-(exact[i] - shares[i]), i))
    for i in order[:remainder]:
        shares[i] += 1
    return shares


def is_chargeable(totals: Totals) -> bool:
    """Refuse un paiement limité aux frais plateforme (acompte nul => erreur de calcul en amont)."""
    return totals.grand_total > 0 and totals.grand_total > totals.platform_fee


def service_types(items: Iterable[CartItem]) -> List[str]:
    """Types de service distincts, dans l'ordre d'apparition du panier."""
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(item.service_type, None)
    return list(seen)


def group_by_service_type(items: Iterable[CartItem]) -> Dict[str, List[CartItem]]:
    groups: Dict[str, List[CartItem]] = {}
    for item in items:
        groups.setdefault(item.service_type, []).append(item)
    return groups


def format_cents(cents: int) -> str:
    """Ex: 105000 -> "$1050.00"."""
    value = Decimal(int(cents or 0)) / Decimal(100)
    return f"${value:.2f}"


def parse_cart(raw_items: Iterable[dict]) -> List[CartItem]:
    return [CartItem.model_validate(raw) for raw in raw_items or []]
