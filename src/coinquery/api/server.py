"""FastAPI boundary for the analysis pipeline.

Exposes ``POST /analyze`` (x-api-key protected when keys are configured)
and ``GET /health``. Every error body has the shape
``{"success": false, "error": {"message", ...}}``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coinquery import __version__
from coinquery.config import CoreConfig
from coinquery.contracts import AnalysisRequest
from coinquery.orchestrator.runtime import AnalysisOrchestrator, build_orchestrator


logger = logging.getLogger(__name__)


def create_app(
    config: CoreConfig | None = None,
    orchestrator: AnalysisOrchestrator | None = None,
) -> FastAPI:
    """Build the API application.

    Args:
        config: Pipeline configuration (read from the environment when None)
        orchestrator: Pre-built orchestrator; built and closed with the app when None
    """
    config = config or (orchestrator.config if orchestrator else CoreConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.orchestrator is None
        if owned:
            app.state.orchestrator = build_orchestrator(config)
        try:
            yield
        finally:
            if owned:
                await app.state.orchestrator.aclose()
                app.state.orchestrator = None

    app = FastAPI(title="coinquery API", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.orchestrator = orchestrator

    # CORS open to all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        error = exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": error})

    def require_api_key(request: Request) -> None:
        if not config.api_keys:
            return
        api_key = request.headers.get("x-api-key")
        if not api_key:
            logger.warning("Request received without API key")
            raise HTTPException(status_code=401, detail={"message": "API key is required", "code": "AUTH_REQUIRED"})
        if api_key not in config.api_keys:
            logger.warning("Invalid API key used: %s...", api_key[:5])
            raise HTTPException(status_code=403, detail={"message": "Invalid API key", "code": "INVALID_AUTH"})

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "default_model": config.default_model,
            "models": sorted(config.routes),
        }

    @app.post("/analyze", dependencies=[Depends(require_api_key)])
    async def analyze(body: AnalysisRequest, request: Request) -> JSONResponse:
        """Resolve one question through compile, execute and synthesize."""
        pipeline: AnalysisOrchestrator | None = request.app.state.orchestrator
        if pipeline is None:
            raise HTTPException(status_code=503, detail={"message": "Pipeline not initialized", "code": "NOT_READY"})

        logger.info(
            "Processing analysis request: query=%r model=%s",
            (body.user_input or "")[:100],
            body.model or config.default_model,
        )
        try:
            result = await pipeline.analyze(body)
        except Exception as e:
            logger.exception("Unexpected error while analyzing")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": {"message": str(e)[:500] or "Internal server error", "code": "INTERNAL_ERROR"}},
            )

        status_code = 200
        if not result.success and result.error and (result.error.details or {}).get("stage") == "validate":
            status_code = 400
        return JSONResponse(status_code=status_code, content=result.to_response())

    return app


def main(host: str = "0.0.0.0", port: int = 3004) -> None:
    """Run the API with uvicorn, reading configuration from the environment and .env."""
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
