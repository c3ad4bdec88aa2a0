# orders_gateway/app.py
import sys
from contextlib import asynccontextmanager
from typing import Optional

import pydantic
import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from orders_gateway.auth.claims import Claims
from orders_gateway.auth.gates import Denied, build_profiles
from orders_gateway.auth.profile import ProfileEnricher
from orders_gateway.auth.providers import IdentityProvider
from orders_gateway.auth.registry import get_provider
from orders_gateway.auth.service_token import ServiceTokenCache
from orders_gateway.auth.verifier import IdentityVerifier
from orders_gateway.config import Settings, get_settings
from orders_gateway.db import build_engine, build_sessionmaker, create_schema
from orders_gateway.errors import (
    ConfigurationError,
    DependencyError,
    OrdersGatewayError,
    ValidationError,
)
from orders_gateway.logging import configure_logging, get_logger
from orders_gateway.middleware.request_context import RequestContextMiddleware
from orders_gateway.repository import OrderRepository
from orders_gateway.schema import Health, NewOrderReq, OrderInfo, OrderList, OrderSummary

logger = get_logger("orders_gateway.app")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


# --------------------------------------------------------------------------- #
# Auth dependency: run the route's pipeline, turn a denial into its error
# --------------------------------------------------------------------------- #
def authorize(profile: str):
    async def dependency(request: Request) -> Claims:
        pipeline = getattr(request.app.state.profiles, profile)
        result = await pipeline.evaluate(request.headers.get("authorization"))
        if isinstance(result, Denied):
            raise result.to_error()
        return result.claims

    return dependency


def _body_error(exc: pydantic.ValidationError) -> ValidationError:
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()))
    message = f"Invalid body: {where}: {first.get('msg')}" if where else "Invalid body"
    return ValidationError(message, details={"errors": exc.errors(include_context=False)})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrdersGatewayError)
    async def gateway_error(request: Request, exc: OrdersGatewayError):
        if isinstance(exc, DependencyError):
            logger.error("Dependency failure", code=exc.code, error=exc.message, details=exc.details)
        return JSONResponse(exc.to_response(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request"}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)


# --------------------------------------------------------------------------- #
# App factory
# --------------------------------------------------------------------------- #
def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[IdentityProvider] = None,
    engine: Optional[AsyncEngine] = None,
) -> FastAPI:
    settings = (settings or get_settings()).validate()
    configure_logging(settings.log_level)

    provider = provider or get_provider(settings)
    engine = engine or build_engine(settings)
    repository = OrderRepository(build_sessionmaker(engine))
    service_tokens = ServiceTokenCache(provider)
    verifier = IdentityVerifier(provider, service_tokens)
    enricher = ProfileEnricher(provider, service_tokens) if settings.profile_enrichment else None

    # Lifespan hook: create tables, release pools on shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_schema(engine)
        yield
        await provider.close()
        await engine.dispose()

    app = FastAPI(title="Orders Gateway", lifespan=lifespan)
    app.state.settings = settings
    app.state.provider = provider
    app.state.repository = repository
    app.state.service_tokens = service_tokens
    app.state.profiles = build_profiles(provider, verifier)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    _install_error_handlers(app)

    # ---------- REST API ---------- #
    @app.get("/health", response_model=Health)
    async def health():
        return Health(ok=True)

    @app.post("/orders", status_code=status.HTTP_201_CREATED, response_model=OrderInfo)
    async def create_order(
        request: Request,
        background: BackgroundTasks,
        claims: Claims = Depends(authorize("create_order")),
    ):
        try:
            payload = await request.json()
        except ValueError:
            raise ValidationError("Invalid body. Expect {items:[], total:number, address?}")
        try:
            body = NewOrderReq.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise _body_error(exc) from None

        user_id = await repository.ensure_user(claims.subject, claims.email)
        order = await repository.create_order(
            user_id,
            [item.model_dump() for item in body.items],
            body.total,
            body.address,
        )
        if enricher is not None:
            background.add_task(enricher.record_order, claims.subject, order)
        return order

    @app.get("/orders", response_model=OrderList)
    async def list_orders(
        response: Response,
        claims: Claims = Depends(authorize("read_orders")),
    ):
        user_id = await repository.ensure_user(claims.subject, claims.email)
        orders = await repository.list_orders(user_id)
        response.headers.update(NO_CACHE_HEADERS)
        return OrderList(orders=orders)

    @app.get("/orders/summary", response_model=list[OrderSummary])
    async def orders_summary(
        sub: Optional[str] = None,
        claims: Claims = Depends(authorize("summary")),
    ):
        """Snapshot (max 5) for the post-login claim-enrichment hook."""
        if not sub:
            raise ValidationError("Missing sub")
        return await repository.summary(sub)

    return app


def main() -> None:
    try:
        settings = get_settings()
        configure_logging(settings.log_level)
        app = create_app(settings)
    except ConfigurationError as exc:
        logger.critical("Refusing to start", error=exc.message, **exc.details)
        sys.exit(1)
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)


if __name__ == "__main__":
    main()
