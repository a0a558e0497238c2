# app/main.py
from typing import Optional

from fastapi import FastAPI
from app.core.config import Settings, settings as default_settings
from app.core.version import VERSION
from app.api.endpoints import content, streams
from app.paygate.audit import AuditLog
from app.paygate.decision import AccessDecisionEngine, GateConfig
from app.paygate.ledger import InMemoryLedgerReader, LedgerReader, RpcLedgerReader
from app.paygate.middleware import PaymentGateMiddleware
from app.paygate.routes import RoutePolicyTable, load_route_table
from app.paygate.vocabulary import get_vocabulary
import logging

logger = logging.getLogger(__name__)


def build_ledger_reader(settings: Settings) -> LedgerReader:
    """Construct the ledger reader selected by PAYGATE_LEDGER_BACKEND."""
    if settings.PAYGATE_LEDGER_BACKEND == "memory":
        logger.warning("Using in-memory ledger: every stream reads as inactive and any tx hash is accepted")
        return InMemoryLedgerReader()
    return RpcLedgerReader(
        rpc_url=settings.PAYGATE_RPC_URL,
        contract_address=settings.PAYGATE_CONTRACT_ADDRESS,
        timeout=settings.PAYGATE_RPC_TIMEOUT,
    )


def create_app(
    settings: Optional[Settings] = None,
    ledger_reader: Optional[LedgerReader] = None,
    route_table: Optional[RoutePolicyTable] = None,
) -> FastAPI:
    """
    Build the gateway application.

    The ledger reader and route table are created from settings unless
    passed in, so tests can substitute their own.
    """
    if settings is None:
        settings = default_settings
    vocabulary = get_vocabulary(settings.PAYGATE_VOCABULARY)
    if ledger_reader is None:
        ledger_reader = build_ledger_reader(settings)
    if route_table is None:
        route_table = load_route_table(settings.PAYGATE_ROUTES_FILE)

    engine = AccessDecisionEngine(
        route_table=route_table,
        ledger=ledger_reader,
        config=GateConfig(
            contract_address=settings.PAYGATE_CONTRACT_ADDRESS,
            recipient_address=settings.PAYGATE_RECIPIENT_ADDRESS,
            vocabulary=vocabulary,
            currency=settings.PAYGATE_CURRENCY,
            api_key=settings.PAYGATE_API_KEY,
        ),
    )
    audit_log = AuditLog(settings.PAYGATE_AUDIT_LOG_PATH) if settings.PAYGATE_AUDIT_LOG_PATH else None

    app = FastAPI(title=settings.PROJECT_NAME, version=VERSION)
    app.state.ledger_reader = ledger_reader
    app.state.payment_engine = engine

    app.add_middleware(
        PaymentGateMiddleware,
        engine=engine,
        enabled=settings.PAYGATE_ENABLED,
        audit_log=audit_log,
    )

    app.include_router(content.router, prefix="/api", tags=["content"])
    app.include_router(streams.router, prefix="/api/streams", tags=["streams"])

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {
            "status": "ok",
            "message": f"Welcome to {settings.PROJECT_NAME}",
            "version": VERSION,
            "paymentGate": {
                "enabled": settings.PAYGATE_ENABLED,
                "vocabulary": vocabulary.name,
                "currency": engine.config.resolved_currency,
                "contract": settings.PAYGATE_CONTRACT_ADDRESS,
                "protectedRoutes": [rule.path_pattern for rule in route_table],
            },
        }

    logger.info(
        f"{vocabulary.log_tag}: gate {'enabled' if settings.PAYGATE_ENABLED else 'disabled'} "
        f"for {len(route_table)} route(s), contract {settings.PAYGATE_CONTRACT_ADDRESS or '<unset>'}"
    )
    return app


# Configure basic logging
logging.basicConfig(level=default_settings.LOG_LEVEL)

app = create_app()
