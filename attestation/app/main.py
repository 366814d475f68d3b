import sys
import logging
import httpx

from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from attestation.app.api.routes import router as submission_router
from attestation.app.core.config import Settings
from attestation.app.core.logging_config import configure_logging
from attestation.app.services.key_holder import (
    JsonRpcKeyHolder,
    KeyHolder,
    LocalAccountKeyHolder,
)
from attestation.app.services.orchestrator import SubmissionOrchestrator
from attestation.app.services.pinning import PinningServiceClient
from attestation.app.services.signer import TypedDataSigner
from attestation.app.typed_data.schemas import default_registry

logger = logging.getLogger("attestation.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("typed-data-attestation")
    except PackageNotFoundError:
        return "0.1.0"


def build_key_holder(
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> Optional[KeyHolder]:
    """Select the signing capability named by ``settings.key_holder``."""
    if settings.key_holder == "local":
        logger.warning(
            "local_key_holder_enabled",
            extra={"note": "development only"},
        )
        return LocalAccountKeyHolder(
            settings.local_private_key.get_secret_value()
        )

    if settings.key_holder == "json_rpc":
        return JsonRpcKeyHolder(
            rpc_url=str(settings.wallet_rpc_url),
            http_client=http_client,
        )

    return None


def build_orchestrator(
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> SubmissionOrchestrator:
    registry = default_registry()

    publisher = PinningServiceClient(
        endpoint=str(settings.pinning_endpoint),
        credential=settings.pinning_jwt,
        http_client=http_client,
        timeout_seconds=settings.pinning_timeout_seconds,
    )

    signer = TypedDataSigner(
        key_holder=build_key_holder(settings, http_client),
        registry=registry,
        verify_recovered_signer=settings.verify_recovered_signer,
    )

    return SubmissionOrchestrator(
        publisher=publisher,
        signer=signer,
        domain=settings.domain(),
        registry=registry,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Guarantees:
    - Fail-fast startup if configuration is invalid
    - Domain and schema registry built once and shared read-only
    - One pooled HTTP client for the content store and the wallet bridge
    """

    # ------------------------------------------------------------------
    # Load and validate configuration (FAIL FAST)
    # ------------------------------------------------------------------
    try:
        settings = Settings()
    except Exception:
        logger.exception("invalid_attestation_configuration")
        raise

    configure_logging(settings.log_level)

    logger.info(
        "attestation_startup_begin",
        extra={
            "service": "attestation",
            "version": get_app_version(),
            "network": settings.network,
            "chain_id": settings.effective_chain_id,
            "key_holder": settings.key_holder,
        },
    )

    app.state.settings = settings

    # ------------------------------------------------------------------
    # Shared HTTP client
    #
    # The per-request pinning timeout is applied by the publisher;
    # wallet requests override it with no timeout at all.
    # ------------------------------------------------------------------
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout=settings.pinning_timeout_seconds,
            connect=10.0,
        ),
        limits=httpx.Limits(
            max_keepalive_connections=20,
            max_connections=50,
        ),
        headers={
            "User-Agent": f"typed-data-attestation/{get_app_version()}",
        },
    )

    app.state.orchestrator = build_orchestrator(
        settings, app.state.http_client
    )

    logger.info(
        "attestation_startup_complete",
        extra={
            "verifying_contract": settings.verifying_contract,
            "schemas": app.state.orchestrator.registry.names(),
        },
    )

    try:
        yield
    finally:
        logger.info("attestation_shutdown_begin")

        try:
            await app.state.http_client.aclose()
        except Exception:
            logger.warning("http_client_shutdown_failed")


def create_app() -> FastAPI:
    """
    Application factory for the typed-data attestation service.
    """
    app = FastAPI(
        title="Typed-Data Attestation",
        description=(
            "Publishes healthcare records to IPFS and returns EIP-712 "
            "signatures committing to them."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # CORS enforced at ingress
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(submission_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness and readiness check",
    )
    async def health_check():
        """
        Verifies that the runtime is alive.

        NOTE:
        - Does NOT call the content store
        - Does NOT contact the key holder
        """
        return ORJSONResponse(
            content={
                "status": "ok",
                "service": "attestation",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
            }
        )

    return app


app = create_app()
