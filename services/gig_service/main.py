from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import init_db
from dispatcher import NotificationDispatcher, RedisRelay, REDIS_URL
from errors import MarketplaceError
from identity import IdentityClient
from routes import gigs_router, bids_router, notifications_router, realtime_router
from typing import Optional
import asyncio
import logging
import os
import redis.asyncio as aioredis

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("gig_service")

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]


def create_app(
    identity: Optional[IdentityClient] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    redis_url: Optional[str] = REDIS_URL,
    init_database: bool = True,
) -> FastAPI:
    app = FastAPI(
        title="Gig Service API",
        description="Gigs, bids and hiring for the freelance marketplace",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    relay = None
    if dispatcher is None:
        if redis_url:
            relay = RedisRelay(aioredis.from_url(redis_url, decode_responses=True))
        dispatcher = NotificationDispatcher(relay=relay)
    app.state.identity = identity or IdentityClient()
    app.state.dispatcher = dispatcher

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(exc.errors()), "kind": "validation"},
        )

    app.include_router(gigs_router)
    app.include_router(bids_router)
    app.include_router(notifications_router)
    app.include_router(realtime_router)

    @app.on_event("startup")
    async def startup_event():
        if init_database:
            init_db()
        if relay is not None:
            app.state.relay_task = asyncio.create_task(relay.listen(dispatcher))

    @app.on_event("shutdown")
    async def shutdown_event():
        task = getattr(app.state, "relay_task", None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Redis relay stopped with an error")
        if relay is not None:
            await relay.redis.aclose()

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "gig-service"}

    return app


app = create_app()
