"""
Confirmation Reconciler.
Après un paiement accepté, interroge le backend jusqu'à ce que TOUTES les réservations
attendues soient "confirmed", ou que le budget (intervalle x tentatives) soit épuisé.
- Succès uniquement si le nombre confirmé == nombre attendu (un résultat partiel n'est pas un succès).
- Épuisement => UNCONFIRMED + ConfirmationTimeout (le paiement a réussi: ne jamais proposer de repayer).
- Annulable à tout moment via un CancellationToken vérifié à chaque itération.
- Une erreur de polling est journalisée puis retentée au tick suivant.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from wedding_checkout.checkout.exceptions import ConfirmationTimeout
from wedding_checkout.config import RECONCILE_INTERVAL_SECONDS, RECONCILE_MAX_ATTEMPTS, SUPPORT_EMAIL

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
UNCONFIRMED = "unconfirmed"
CANCELLED = "cancelled"

FetchConfirmed = Callable[[str], Awaitable[Iterable[str]]]


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Attend au plus `timeout` secondes; retourne True si annulé entre-temps."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self.cancelled


class ReconcileResult:
    def __init__(self, status: str, payment_intent_id: str, confirmed_ids: List[str], expected: int,
                 attempts: int, error: Optional[ConfirmationTimeout] = None):
        self.status = status
        self.payment_intent_id = payment_intent_id
        self.confirmed_ids = confirmed_ids
        self.expected = expected
        self.attempts = attempts
        self.error = error

    @property
    def confirmed(self) -> bool:
        return self.status == CONFIRMED

    def __repr__(self) -> str:
        return (f"ReconcileResult(status={self.status!r}, confirmed={len(self.confirmed_ids)}/"
                f"{self.expected}, attempts={self.attempts})")


class ConfirmationReconciler:
    def __init__(
        self,
        fetch_confirmed: FetchConfirmed,
        interval: float = RECONCILE_INTERVAL_SECONDS,
        max_attempts: int = RECONCILE_MAX_ATTEMPTS,
        support_email: str = SUPPORT_EMAIL,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if not max_attempts or max_attempts <= 0:
            raise ValueError("max_attempts doit être > 0")
        if interval is None or interval < 0:
            raise ValueError("interval doit être >= 0")
        self._fetch_confirmed = fetch_confirmed
        self.interval = interval
        self.max_attempts = int(max_attempts)
        self.support_email = support_email
        self._sleep = sleep
        self.token = CancellationToken()
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        self.token.cancel()

    def start(self, payment_intent_id: str, expected_ids: Optional[Iterable[str]] = None,
              expected_count: Optional[int] = None) -> "asyncio.Task[ReconcileResult]":
        """Planifie la réconciliation comme tâche annulable (navigation-away => cancel())."""
        self._task = asyncio.ensure_future(self.reconcile(payment_intent_id, expected_ids, expected_count))
        return self._task

    async def _pause(self) -> bool:
        if self._sleep is not None:
            await self._sleep(self.interval)
            return self.token.cancelled
        return await self.token.wait(self.interval)

    async def reconcile(self, payment_intent_id: str, expected_ids: Optional[Iterable[str]] = None,
                        expected_count: Optional[int] = None) -> ReconcileResult:
        expected_set = {str(i) for i in expected_ids} if expected_ids is not None else None
        expected = len(expected_set) if expected_set is not None else int(expected_count or 0)
        if expected <= 0:
            raise ValueError("expected booking count must be > 0")

        confirmed: List[str] = []
        attempts = 0
        while attempts < self.max_attempts:
            if self.token.cancelled:
                logger.info("reconcile cancelled payment_intent_id=%s attempts=%s", payment_intent_id, attempts)
                return ReconcileResult(CANCELLED, payment_intent_id, confirmed, expected, attempts)
            attempts += 1
            try:
                rows = [str(i) for i in await self._fetch_confirmed(payment_intent_id)]
                if expected_set is not None:
                    rows = [i for i in rows if i in expected_set]
                confirmed = sorted(set(rows))
            except Exception as e:
                logger.warning("reconcile poll failed payment_intent_id=%s attempt=%s: %s",
                               payment_intent_id, attempts, e)
            else:
                if len(confirmed) == expected:
                    logger.info("reconcile confirmed payment_intent_id=%s bookings=%s attempts=%s",
                                payment_intent_id, expected, attempts)
                    return ReconcileResult(CONFIRMED, payment_intent_id, confirmed, expected, attempts)

            if attempts < self.max_attempts and await self._pause():
                logger.info("reconcile cancelled payment_intent_id=%s attempts=%s", payment_intent_id, attempts)
                return ReconcileResult(CANCELLED, payment_intent_id, confirmed, expected, attempts)

        logger.info("reconcile timeout payment_intent_id=%s confirmed=%s/%s attempts=%s",
                    payment_intent_id, len(confirmed), expected, attempts)
        error = ConfirmationTimeout(payment_intent_id, self.support_email, confirmed=len(confirmed), expected=expected)
        return ReconcileResult(UNCONFIRMED, payment_intent_id, confirmed, expected, attempts, error=error)
