"""
Accès aux données pour la feature 'contracts' (table contract_templates).
Le store renvoie le texte brut; la substitution des emplacements appartient au service.
"""
from typing import Dict, Iterable, List
import logging

import wedding_checkout.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module wedding_checkout.contracts.repository
def fetch_templates_by_service_types(service_types: Iterable[str]) -> List[dict]:
    """
    Récupère les modèles de contrat pour les types de service donnés.
    - Retourne [] si la liste est vide ou en cas d'erreur (le service bloquera le checkout).
    """
    types = [str(t) for t in service_types or [] if t]
    if not types:
        return []
    try:
        res = (
            supabase_client.get_supabase()
            .table("contract_templates")
            .select("id, content, service_type")
            .in_("service_type", types)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("contracts.repository.fetch_templates_by_service_types failed types=%s", types)
        return []


def get_templates_map(service_types: Iterable[str]) -> Dict[str, dict]:
    """
    Retourne un dict {service_type: modèle}.
    - Si plusieurs modèles existent pour un même type, le premier renvoyé est conservé.
    """
    templates: Dict[str, dict] = {}
    for row in fetch_templates_by_service_types(service_types):
        templates.setdefault(str(row.get("service_type") or ""), row)
    return templates
