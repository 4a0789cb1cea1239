"""TipPerMeme API.

FastAPI application exposing:
- x402 tip submission (402 challenge, verification, settlement)
- Meme feed and registration
- Tip history per meme
"""

from typing import Optional

from fastapi import FastAPI, Header, Query
from fastapi.responses import JSONResponse

from src.config import Config, config, validate_config_for_service
from src.database import Database
from src.logging_utils import CorrelationIdContext, get_logger, setup_logging
from src.models import MemeCreateRequest
from src.tipper.fees import FeeCalculator
from src.tipper.offers import OfferGenerator
from src.tipper.settlement import SettlementBackend, create_settlement_backend
from src.tipper.signatures import SignatureVerifier
from src.tipper.tips import TipService
from src.tipper.verification import PaymentVerifier

logger = get_logger(__name__)


def build_tip_service(
    settings: Config,
    database: Database,
    settlement: Optional[SettlementBackend] = None,
) -> TipService:
    """Wire the verification pipeline and tip service from configuration.

    Args:
        settings: Validated configuration.
        database: Ledger used for lookups, nonce claims and tip records.
        settlement: Backend override; built from ``settings`` when omitted.
    """
    signature_verifier = SignatureVerifier(
        settings.network,
        domain_name=settings.usdc_domain_name,
        domain_version=settings.usdc_domain_version,
    )
    settlement = settlement or create_settlement_backend(settings, signature_verifier)
    logger.info(f"Using {settlement.name} settlement backend")

    verifier = PaymentVerifier(
        network=settings.network,
        asset=settings.usdc_contract,
        signature_verifier=signature_verifier,
        settlement=settlement,
        nonce_guard=database.claim_payment_nonce,
    )
    return TipService(
        settings=settings,
        database=database,
        verifier=verifier,
        offers=OfferGenerator(asset=settings.usdc_contract, network=settings.network),
        fees=FeeCalculator(settings.platform_fee),
    )


def create_app(
    settings: Optional[Config] = None,
    database: Optional[Database] = None,
    settlement: Optional[SettlementBackend] = None,
) -> FastAPI:
    """Create the API application.

    Raises:
        ConfigError: If the configuration is missing or invalid.
    """
    settings = settings or config
    validate_config_for_service("api", settings)
    setup_logging(settings.log_level, settings.log_format)

    database = database or Database(settings.database_path)
    tips = build_tip_service(settings, database, settlement)

    app = FastAPI(title="TipPerMeme", description="x402 micropayment tips for memes")
    app.state.settings = settings
    app.state.db = database
    app.state.tips = tips

    @app.on_event("startup")
    async def startup():
        """Initialize database on startup."""
        logger.info("Initializing TipPerMeme API...")
        await database.initialize()
        logger.info(f"Network: {settings.network}, settlement: {settings.settlement_backend}")

    @app.on_event("shutdown")
    async def shutdown():
        await tips.verifier.settlement.close()

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "service": "tipermeme", "network": settings.network}

    @app.get("/api/memes")
    async def list_memes(
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ):
        logger.info(f"Fetching memes (limit: {limit}, offset: {offset})")
        memes = await database.get_memes(limit, offset)
        return {
            "memes": [m.model_dump(mode="json") for m in memes],
            "count": len(memes),
            "limit": limit,
            "offset": offset,
        }

    @app.get("/api/memes/{meme_id}")
    async def get_meme(meme_id: str):
        meme = await database.get_meme(meme_id)
        if not meme:
            return JSONResponse({"error": "Meme not found"}, status_code=404)
        await database.increment_meme_views(meme_id)
        return meme.model_dump(mode="json")

    @app.post("/api/memes", status_code=201)
    async def create_meme(request: MemeCreateRequest):
        """Register a meme whose image is already hosted."""
        meme = await database.create_meme(
            creator_wallet=request.creator_wallet,
            image_url=request.image_url,
            caption=request.caption,
            category=request.category,
        )
        return {"success": True, "meme": meme.model_dump(mode="json")}

    @app.post("/api/tips/{meme_id}")
    async def submit_tip(
        meme_id: str,
        x_payment: Optional[str] = Header(None, alias="X-PAYMENT"),
        x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id"),
    ):
        """Tip a meme via x402.

        Without X-PAYMENT the response is 402 with the payment offer; with it,
        the payment is verified and settled before the tip is recorded.
        """
        with CorrelationIdContext(x_correlation_id) as correlation_id:
            try:
                submission = await tips.submit_tip(meme_id, x_payment)
            except Exception as e:
                logger.error(f"Error processing tip: {e}", exc_info=True)
                return JSONResponse(
                    {"error": "Internal server error", "message": str(e)},
                    status_code=500,
                    headers={"X-Correlation-Id": correlation_id},
                )
            return JSONResponse(
                submission.body,
                status_code=submission.status_code,
                headers={"X-Correlation-Id": correlation_id},
            )

    @app.get("/api/tips/{meme_id}")
    async def list_tips(meme_id: str):
        tip_records = await tips.list_tips(meme_id)
        return {"meme_id": meme_id, "tips": [t.model_dump(mode="json") for t in tip_records]}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting TipPerMeme API on {config.api_host}:{config.api_port}")
    uvicorn.run(
        app,
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
    )
