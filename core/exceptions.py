# core/exceptions.py
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base error carrying the HTTP status the API answers with."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    """Raised by the authentication gate; message is shown to the user."""

    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class SponsorLimitError(ConflictError):
    status_code = 400


class BillingProviderError(AppError):
    """Billing provider call failed; message is the provider's where available."""

    status_code = 502

    def __init__(self, message: str, provider_status: Optional[int] = None, details=None):
        super().__init__(message)
        self.provider_status = provider_status
        self.details = details


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
