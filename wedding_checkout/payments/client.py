"""
Client HTTP du backend de réservation, utilisé par l'orchestration du checkout.
- charge_and_book: une seule requête idempotente (en-tête Idempotency-Key).
- fetch_booking_statuses: lecture des réservations d'un paiement, filtrées par statut.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from wedding_checkout.config import BASE_URL, BOOKING_STATUS_PATH, CHARGE_ENDPOINT_PATH

logger = logging.getLogger(__name__)


class BookingApiClient:
    def __init__(
        self,
        base_url: str = BASE_URL,
        access_token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.access_token = access_token
        self._http = http
        self.timeout = timeout

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        headers.update(extra or {})
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._http is not None:
            return await self._http.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def charge_and_book(self, payload: Dict[str, Any], idempotency_key: str) -> Tuple[int, Dict[str, Any]]:
        """
        Envoie la requête charge-and-book et retourne (status_code, body).
        Le body n'est pas interprété ici: c'est le rôle du ChargeSubmitter.
        """
        response = await self._request(
            "POST",
            CHARGE_ENDPOINT_PATH,
            json=payload,
            headers=self._headers({"Idempotency-Key": idempotency_key}),
        )
        try:
            body = response.json()
        except ValueError:
            body = {"error": response.text or f"HTTP {response.status_code}"}
        if not isinstance(body, dict):
            body = {"error": f"Réponse inattendue (HTTP {response.status_code})"}
        return response.status_code, body

    async def fetch_booking_statuses(self, payment_intent_id: str, status: str = "confirmed") -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            BOOKING_STATUS_PATH,
            params={"payment_intent_id": payment_intent_id, "status": status},
            headers=self._headers(),
        )
        response.raise_for_status()
        return list((response.json() or {}).get("bookings") or [])

    async def fetch_confirmed_ids(self, payment_intent_id: str) -> List[str]:
        """Identifiants des réservations confirmées (source de vérité: le backend)."""
        rows = await self.fetch_booking_statuses(payment_intent_id, status="confirmed")
        return [str(r.get("id")) for r in rows if r.get("id")]
