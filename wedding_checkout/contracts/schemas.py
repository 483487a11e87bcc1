"""
Schémas d'entrée des endpoints 'contracts'.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from wedding_checkout.checkout.cart import CartItem

_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RenderContractsRequest(BaseModel):
    model_config = _WIRE

    cart_items: List[CartItem] = Field(min_length=1)
    client_name: str = ""


class ContractPdfRequest(BaseModel):
    model_config = _WIRE

    package_name: str = ""
    content: str
    signature: str
    signed_at: Optional[str] = None

    @field_validator("signature")
    @classmethod
    def _signed(cls, v: str) -> str:
        if not (v or "").strip():
            raise ValueError("signature requise")
        return v.strip()
