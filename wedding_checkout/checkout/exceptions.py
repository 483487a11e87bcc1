"""
Taxonomie des erreurs du checkout.
- Chaque porte (détails, contrats, paiement, réconciliation) possède ses erreurs.
- `resubmittable` indique si l'utilisateur peut relancer un paiement après l'erreur.
- ConfirmationTimeout n'est jamais « resubmittable »: le paiement a réussi.
"""
from typing import Iterable, Optional


class CheckoutError(Exception):
    code = "checkout_error"
    resubmittable = True

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(CheckoutError):
    """Champ requis manquant ou invalide. Bloque l'étape, ne contacte jamais le backend."""
    code = "validation_error"

    def __init__(self, message: str, fields: Iterable[str] = (), code: Optional[str] = None):
        super().__init__(message, code)
        self.fields = list(fields)


class ContractIncomplete(CheckoutError):
    code = "contract_incomplete"

    def __init__(self, message: str, missing: Iterable[str] = ()):
        super().__init__(message)
        self.missing = list(missing)


class ContractUnavailable(CheckoutError):
    """Aucun modèle de contrat lié à un type de service: le checkout est bloqué."""
    code = "contract_unavailable"
    resubmittable = False

    def __init__(self, message: str, service_types: Iterable[str] = ()):
        super().__init__(message)
        self.service_types = list(service_types)


class TemplateError(CheckoutError):
    """Modèle mal formé ou emplacement inconnu/non renseigné."""
    code = "template_error"
    resubmittable = False


class TokenizationError(CheckoutError):
    code = "tokenization_error"


class ChargeError(CheckoutError):
    """Refus du backend ou du processeur; le message serveur est affiché tel quel."""
    code = "charge_error"

    def __init__(self, message: str, status_code: int = 400, code: Optional[str] = None):
        super().__init__(message, code)
        self.status_code = status_code


class StepUpFailure(CheckoutError):
    code = "step_up_failure"

    def __init__(self, message: str, abandoned: bool = False):
        super().__init__(message)
        self.abandoned = abandoned


class ConfirmationTimeout(CheckoutError):
    """
    Paiement accepté mais réservations non confirmées dans le budget de polling.
    Ne doit jamais inviter à payer de nouveau: oriente vers le support avec l'identifiant du paiement.
    """
    code = "confirmation_timeout"
    resubmittable = False

    def __init__(self, payment_intent_id: str, support_email: str, confirmed: int = 0, expected: int = 0):
        message = (
            "Votre paiement a bien été accepté, mais la confirmation de vos réservations est encore en attente. "
            f"Ne relancez pas le paiement: contactez {support_email} en indiquant la référence {payment_intent_id}."
        )
        super().__init__(message)
        self.payment_intent_id = payment_intent_id
        self.support_email = support_email
        self.confirmed = confirmed
        self.expected = expected

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"paymentIntentId": self.payment_intent_id, "supportEmail": self.support_email})
        return data


class SubmissionInProgress(CheckoutError):
    """Soumission ré-entrante: un paiement est déjà en cours pour cette session."""
    code = "submission_in_progress"
    resubmittable = False


class InvalidTransition(CheckoutError):
    code = "invalid_transition"
    resubmittable = False
