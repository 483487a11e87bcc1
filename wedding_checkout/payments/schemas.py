"""
Schémas d'échange de l'endpoint charge-and-book (camelCase sur le fil).
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from wedding_checkout.checkout.cart import CartItem, Totals
from wedding_checkout.checkout.session import PAYMENT_METHODS
from wedding_checkout.config import PAYMENT_TYPE_DEPOSIT

_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerInfo(BaseModel):
    model_config = _WIRE

    partner1_name: str
    partner2_name: str = ""
    email: EmailStr
    phone: str
    billing_address: str
    city: str
    state: str
    zip_code: str
    guest_count: str = ""
    special_requests: str = ""
    couple_id: str
    event_date: str = ""
    event_time: str = ""
    end_time: str = ""

    @field_validator("partner1_name", "phone", "billing_address", "city", "state", "zip_code", "couple_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not (v or "").strip():
            raise ValueError("champ requis")
        return v.strip()


class ChargeRequest(BaseModel):
    model_config = _WIRE

    cart_items: List[CartItem] = Field(min_length=1)
    totals: Totals
    customer: CustomerInfo
    # {service_type: signature}
    signatures: Dict[str, str] = Field(default_factory=dict)
    discount_amount: int = Field(default=0, ge=0)
    discount_code: str = ""
    referral_code: str = ""
    referral_discount: int = Field(default=0, ge=0)
    payment_method_id: Optional[str] = None
    payment_method: str = "card"
    payment_type: str = PAYMENT_TYPE_DEPOSIT
    save_payment_method: bool = False

    @field_validator("payment_method")
    @classmethod
    def _known_method(cls, v: str) -> str:
        if v not in PAYMENT_METHODS:
            raise ValueError(f"moyen de paiement non supporté: {v}")
        return v

    @field_validator("payment_type")
    @classmethod
    def _deposit_only(cls, v: str) -> str:
        if v != PAYMENT_TYPE_DEPOSIT:
            raise ValueError("seul le paiement d'acompte est supporté")
        return v


