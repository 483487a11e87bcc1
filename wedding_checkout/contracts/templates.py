"""
Modèles de contrat structurés: texte + ensemble fermé d'emplacements nommés ({{slot}}).
- parse_template: découpe le texte en segments (littéraux / emplacements), rejette
  les emplacements inconnus et les accolades orphelines.
- render: substitution pure; un emplacement sans valeur lève TemplateError au lieu
  de laisser le texte littéral "{{...}}" dans le contrat signé.
"""
import re
from typing import Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from wedding_checkout.checkout.cart import CartItem, format_cents
from wedding_checkout.checkout.exceptions import TemplateError

SLOTS = (
    "client_name",
    "vendor_name",
    "package_name",
    "event_date",
    "event_time",
    "venue",
    "price",
)

_SLOT_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class ContractTemplate(BaseModel):
    """Ligne de la table contract_templates."""
    model_config = ConfigDict(frozen=True)

    id: str
    service_type: str
    content: str


class Slot(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class TemplateDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_id: Optional[str] = None
    segments: Tuple[Union[Slot, str], ...] = ()

    @property
    def slots(self) -> List[str]:
        return [s.name for s in self.segments if isinstance(s, Slot)]


def parse_template(content: str, template_id: Optional[str] = None) -> TemplateDocument:
    text = content or ""
    segments: List[Union[Slot, str]] = []
    pos = 0
    for match in _SLOT_RE.finditer(text):
        literal = text[pos:match.start()]
        _check_literal(literal, template_id)
        if literal:
            segments.append(literal)
        name = match.group(1)
        if name not in SLOTS:
            raise TemplateError(f"Emplacement inconnu '{name}' dans le modèle {template_id or ''}".strip())
        segments.append(Slot(name=name))
        pos = match.end()
    tail = text[pos:]
    _check_literal(tail, template_id)
    if tail:
        segments.append(tail)
    return TemplateDocument(template_id=template_id, segments=tuple(segments))


def _check_literal(literal: str, template_id: Optional[str]) -> None:
    if "{{" in literal or "}}" in literal:
        raise TemplateError(f"Modèle mal formé (accolades orphelines) {template_id or ''}".strip())


def render(document: TemplateDocument, values: Mapping[str, str]) -> str:
    parts: List[str] = []
    for segment in document.segments:
        if isinstance(segment, Slot):
            value = values.get(segment.name)
            if value is None:
                raise TemplateError(f"Valeur manquante pour l'emplacement '{segment.name}'")
            parts.append(str(value))
        else:
            parts.append(segment)
    return "".join(parts)


def slot_values(item: CartItem, client_name: str) -> Dict[str, str]:
    """Valeurs des emplacements pour un article (avec les valeurs par défaut affichées)."""
    start = item.event_time or ""
    end = item.end_time or ""
    return {
        "client_name": client_name or "",
        "vendor_name": item.vendor.name or "Vendor",
        "package_name": item.package.name or "Service",
        "event_date": item.event_date or "N/A",
        "event_time": f"{start} to {end}",
        "venue": (item.venue.name if item.venue and item.venue.name else "N/A"),
        "price": format_cents(item.package.price),
    }
