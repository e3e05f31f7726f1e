"""Marché API service entrypoint."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.api.app.db.init_db import init_db
from services.api.app.models.common import ErrorResponse
from services.api.app.routers.audit import router as audit_router
from services.api.app.routers.cart import router as cart_router
from services.api.app.routers.order import router as order_router
from services.api.app.routers.payment import router as payment_router
from services.api.app.routers.webhook import router as webhook_router
from services.api.app.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
)

app = FastAPI(title="Marché API")

app.include_router(cart_router)
app.include_router(audit_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(webhook_router)


@app.on_event("startup")
def _startup() -> None:
    configure_logging()
    init_db()


@app.middleware("http")
async def _request_context(request: Request, call_next):
    clear_request_context()
    bind_request_context(method=request.method, path=request.url.path)
    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        body = ErrorResponse(
            message=str(detail.get("message", "")),
            errors=detail.get("errors") or {},
        ).model_dump()
        if detail.get("data") is not None:
            body["data"] = detail["data"]
    else:
        body = ErrorResponse(message=str(detail)).model_dump()
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.setdefault(field, []).append(message)

    return JSONResponse(
        status_code=422,
        content=ErrorResponse(message="Validation error", errors=errors).model_dump(),
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
