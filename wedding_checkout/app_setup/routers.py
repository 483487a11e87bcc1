"""
Registre central des routers.
- API v1: checkout (charge-and-book), payments (webhook), bookings (statut), contracts
- Health: health_router
"""
from fastapi import FastAPI
from wedding_checkout.payments import views as payments_views
from wedding_checkout.bookings import views as bookings_views
from wedding_checkout.contracts import views as contracts_views
from wedding_checkout.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    """L’ordre n’a pas d’impact sauf conflits de chemins (évités par préfixes)."""
    # API v1
    app.include_router(payments_views.checkout_router)
    app.include_router(payments_views.router)
    app.include_router(bookings_views.router)
    app.include_router(contracts_views.router)
    # Health & monitoring
    app.include_router(health_router)
