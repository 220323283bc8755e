"""
Error types for the storefront API and the handlers that render them.

Every business failure is a ShopError subclass carrying its HTTP status,
a stable machine-readable code and the identifiers that caused it.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or unsafe."""


class ShopError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.context}


class ValidationError(ShopError):
    status_code = 400
    code = "validation_error"


class Unauthenticated(ShopError):
    status_code = 401
    code = "unauthenticated"


class InvalidCredentials(ShopError):
    status_code = 401
    code = "invalid_credentials"


class Forbidden(ShopError):
    status_code = 403
    code = "forbidden"


class TokenRejected(ShopError):
    status_code = 403
    code = "token_rejected"


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class Conflict(ShopError):
    status_code = 409
    code = "conflict"


class ProductNotFound(ShopError):
    status_code = 404
    code = "product_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found", product_id=product_id)
        self.product_id = product_id


class InsufficientStock(ShopError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Requested: {requested}",
            product_id=product_id,
            available=available,
            requested=requested,
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class PersistenceFailure(ShopError):
    status_code = 500
    code = "persistence_failure"


def _headers_for(exc: ShopError) -> Optional[Dict[str, str]]:
    if isinstance(exc, Unauthenticated):
        return {"WWW-Authenticate": "Bearer"}
    return None


def register_exception_handlers(app: FastAPI) -> None:
    """Render ShopError and request validation failures as JSON envelopes."""

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=exc.code, detail=exc.message, **exc.context)
        else:
            logger.info("Request rejected", error=exc.code, status=exc.status_code, **exc.context)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=_headers_for(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        fields = ", ".join(".".join(e["loc"][1:]) or e["loc"][0] for e in errors if e["loc"])
        body = ValidationError(f"Invalid request fields: {fields}" if fields else "Invalid request").to_dict()
        body["errors"] = errors
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "internal_error", "detail": "Internal server error"})
