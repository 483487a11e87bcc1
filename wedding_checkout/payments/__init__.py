"""
Module 'payments' (feature-first): point d'entrée public.
Réunit metadata Stripe, client Stripe, repository BD, soumission côté client et services serveur.
"""

from .metadata import make_metadata, extract_intent, extract_cart
from .stripe_client import (
    require_stripe,
    create_payment_method,
    create_payment_intent,
    retrieve_payment_intent,
    parse_event,
    StripeTokenizer,
    AwaitableStepUp,
)
from .client import BookingApiClient
from .submitter import ChargeOutcome, ChargeSubmitter, interpret_charge_response
from .service import charge_and_book, handle_event

__all__ = [
    # metadata
    "make_metadata",
    "extract_intent",
    "extract_cart",
    # stripe
    "require_stripe",
    "create_payment_method",
    "create_payment_intent",
    "retrieve_payment_intent",
    "parse_event",
    "StripeTokenizer",
    "AwaitableStepUp",
    # client
    "BookingApiClient",
    "ChargeOutcome",
    "ChargeSubmitter",
    "interpret_charge_response",
    # services
    "charge_and_book",
    "handle_event",
]
