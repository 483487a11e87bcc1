"""
Porte « Contrats » du checkout.
Rôles:
- Résoudre exactement un contrat par type de service distinct du panier.
- Rendre chaque contrat avec les champs du premier article de ce type.
- Bloquer la progression tant qu'un type de service n'a pas de signature (non vide après trim).
Notes:
- Un type de service sans modèle lié bloque le checkout (ContractUnavailable), il n'est jamais ignoré.
- Plusieurs prestataires pour un même type: seuls les champs du premier article apparaissent
  dans le texte signé; les autres sont exposés dans `additional_items` et journalisés.
"""
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence
import logging

from wedding_checkout.checkout import cart as cart_logic
from wedding_checkout.checkout.cart import CartItem
from wedding_checkout.checkout.exceptions import ContractIncomplete, ContractUnavailable
from wedding_checkout.contracts import repository
from wedding_checkout.contracts.templates import (
    ContractTemplate,
    TemplateDocument,
    parse_template,
    render,
    slot_values,
)

logger = logging.getLogger(__name__)

TemplateLoader = Callable[[Iterable[str]], Dict[str, dict]]


class ResolvedContract:
    def __init__(self, template: ContractTemplate, document: TemplateDocument, items: Sequence[CartItem]):
        self.template = template
        self.document = document
        self.item = items[0]
        self.additional_items = list(items[1:])

    @property
    def service_type(self) -> str:
        return self.template.service_type

    @property
    def has_vendor_conflict(self) -> bool:
        """True si d'autres prestataires du même type ne figurent pas dans le texte signé."""
        return any(i.vendor.id != self.item.vendor.id for i in self.additional_items)

    def render(self, client_name: str) -> str:
        return render(self.document, slot_values(self.item, client_name))


class ContractGate:
    def __init__(self, load_templates: Optional[TemplateLoader] = None):
        self._load_templates = load_templates or repository.get_templates_map
        self._cache: Dict[str, ContractTemplate] = {}

    def required_service_types(self, cart_items: Sequence[CartItem]) -> List[str]:
        return cart_logic.service_types(cart_items)

    def resolve(self, cart_items: Sequence[CartItem]) -> List[ResolvedContract]:
        """
        Résout un contrat par type de service (ordre du panier).
        - Charge uniquement les types absents du cache.
        - Lève ContractUnavailable si un type n'a aucun modèle lié.
        """
        groups = cart_logic.group_by_service_type(cart_items)
        to_load = [t for t in groups if t not in self._cache]
        if to_load:
            for service_type, row in (self._load_templates(to_load) or {}).items():
                self._cache[service_type] = ContractTemplate(
                    id=str(row.get("id") or ""),
                    service_type=service_type,
                    content=row.get("content") or "",
                )

        missing = [t for t in groups if t not in self._cache]
        if missing:
            logger.warning("contracts.gate missing templates service_types=%s", missing)
            raise ContractUnavailable(
                "Aucun modèle de contrat n'est lié à: " + ", ".join(missing),
                service_types=missing,
            )

        resolved: List[ResolvedContract] = []
        for service_type, items in groups.items():
            template = self._cache[service_type]
            contract = ResolvedContract(template, parse_template(template.content, template.id), items)
            if contract.has_vendor_conflict:
                logger.warning(
                    "contracts.gate several vendors share service_type=%s; only vendor=%s is rendered",
                    service_type, contract.item.vendor.id,
                )
            resolved.append(contract)
        return resolved

    def missing_signatures(self, cart_items: Sequence[CartItem], signatures: Mapping[str, str]) -> List[str]:
        return [
            c.service_type
            for c in self.resolve(cart_items)
            if not (signatures.get(c.service_type) or "").strip()
        ]

    def all_signed(self, cart_items: Sequence[CartItem], signatures: Mapping[str, str]) -> bool:
        return not self.missing_signatures(cart_items, signatures)

    def ensure_all_signed(self, cart_items: Sequence[CartItem], signatures: Mapping[str, str]) -> None:
        missing = self.missing_signatures(cart_items, signatures)
        if missing:
            raise ContractIncomplete(
                "Veuillez signer tous les contrats avant de continuer",
                missing=missing,
            )

    def render_all(self, cart_items: Sequence[CartItem], client_name: str) -> Dict[str, str]:
        return {c.service_type: c.render(client_name) for c in self.resolve(cart_items)}
