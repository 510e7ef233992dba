import asyncio
import logging

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from backoffice_auth.config import settings
from backoffice_auth.database import init_db
from backoffice_auth.dependencies import get_auth_service
from backoffice_auth.routers import auth, health
from backoffice_auth.services.identity import SqlIdentityResolver

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Back Office Auth")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api")
app.include_router(auth.router, prefix="/api")
app.include_router(auth.router)  # Compatibility for clients calling /auth/* without /api.


async def _sweep_expired_otps() -> None:
    service = get_auth_service()
    while True:
        await asyncio.sleep(settings.otp_sweep_interval_seconds)
        try:
            await run_in_threadpool(service.sweep_expired)
        except Exception:
            LOGGER.exception("Expired OTP sweep failed")


@app.on_event("startup")
async def startup() -> None:
    init_db()
    identities = SqlIdentityResolver(default_country_code=settings.default_country_code)
    identities.ensure_reference_data()
    if settings.seed_email:
        identities.ensure_seed_identity(
            settings.seed_email, settings.seed_username, settings.seed_contact
        )
    if settings.sweeper_enabled:
        app.state.otp_sweeper = asyncio.create_task(_sweep_expired_otps())


@app.on_event("shutdown")
async def shutdown() -> None:
    sweeper = getattr(app.state, "otp_sweeper", None)
    if sweeper is not None:
        sweeper.cancel()


@app.get("/")
def root():
    return {"status": "Backend running"}
