"""
Gestionnaires d’exceptions de l’API.
- HTTPException: body JSON standard {"detail": ...}.
- RequestValidationError: 422 avec un message lisible dans "error" (affiché tel quel par le client).
- CheckoutError non interceptée par une vue: {"error", "code"} avec un statut adapté.
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from wedding_checkout.checkout.exceptions import (
    ChargeError,
    CheckoutError,
    ContractUnavailable,
    SubmissionInProgress,
)

def status_for(exc: CheckoutError) -> int:
    if isinstance(exc, ChargeError):
        return exc.status_code
    if isinstance(exc, SubmissionInProgress):
        return 409
    if isinstance(exc, ContractUnavailable):
        return 404
    return 400

def _first_message(errors) -> str:
    for err in errors or []:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg") or "invalide"
        return f"{loc}: {msg}" if loc else msg
    return "Requête invalide"

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        return JSONResponse(
            status_code=422,
            content={"error": _first_message(errors), "detail": jsonable_encoder(errors, custom_encoder={Exception: str})},
        )

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())
