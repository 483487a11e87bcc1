import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from wedding_checkout.checkout.exceptions import ContractUnavailable, TemplateError
from wedding_checkout.contracts import export
from wedding_checkout.contracts import repository as contracts_repo
from wedding_checkout.contracts.schemas import ContractPdfRequest, RenderContractsRequest
from wedding_checkout.contracts.service import ContractGate
from wedding_checkout.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/contracts", tags=["Contracts API"])

# module wedding_checkout.contracts.views
@router.get("/templates")
def list_templates(service_types: str = Query(""), user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Modèles de contrat pour des types de service séparés par des virgules.
    - Le texte est renvoyé brut: la substitution des emplacements est faite par la porte Contrats.
    """
    types = [t.strip() for t in (service_types or "").split(",") if t.strip()]
    if not types:
        return {"templates": []}
    templates = contracts_repo.get_templates_map(types)
    return {
        "templates": [
            {"id": str(row.get("id") or ""), "serviceType": service_type, "content": row.get("content") or ""}
            for service_type, row in templates.items()
        ]
    }

@router.post("/render")
def render_contracts(payload: RenderContractsRequest, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Aperçu des contrats d'un panier: un contrat par type de service.
    - 404 si un type de service n'a pas de modèle lié (le checkout est bloqué).
    - 400 si un modèle est mal formé.
    """
    gate = ContractGate()
    try:
        contracts = gate.resolve(payload.cart_items)
        return {
            "contracts": [
                {
                    "serviceType": c.service_type,
                    "templateId": c.template.id,
                    "content": c.render(payload.client_name),
                    "itemId": c.item.id,
                    "additionalItemIds": [i.id for i in c.additional_items],
                    "vendorConflict": c.has_vendor_conflict,
                }
                for c in contracts
            ]
        }
    except ContractUnavailable as e:
        raise HTTPException(status_code=404, detail=e.message)
    except TemplateError as e:
        raise HTTPException(status_code=400, detail=e.message)

@router.post("/pdf")
def contract_pdf(payload: ContractPdfRequest, user: Dict[str, Any] = Depends(require_user)):
    """Export PDF d'un contrat signé (téléchargement)."""
    try:
        pdf = export.render_contract_pdf(payload.content, payload.signature, payload.package_name, payload.signed_at)
    except Exception as e:
        logger.exception("Erreur contract_pdf")
        raise HTTPException(status_code=500, detail="Génération du PDF impossible") from e
    filename = export.contract_filename(payload.package_name)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
