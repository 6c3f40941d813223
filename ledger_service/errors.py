"""Errores del Ledger Service y los handlers de FastAPI que los devuelven como {"error": ...}."""

import logging
from typing import Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Error base del Ledger Service; lleva el status HTTP que le corresponde."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidArgument(LedgerError):
    """Entrada faltante o fuera de rango."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(LedgerError):
    """El saldo o gasto referenciado no existe."""
    status_code = status.HTTP_404_NOT_FOUND


class ServiceError(LedgerError):
    """Fallo de persistencia; la transacción fue revertida."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


# --- Manejadores de excepciones ---

async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if isinstance(exc, ServiceError):
        logger.error(f"Error de servicio en {request.url.path}: {exc.message} (causa: {exc.cause!r})")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Reporta el primer campo inválido, p. ej. "amount: Input should be a valid decimal"
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})
