"""
Postcode Finder - bulk Korean postal code lookup
Run with: uvicorn main:app --reload --port 8000

Supports two modes:
- LITE MODE: No JUSO_API_KEY - lookups against the local postcode dataset, file job snapshots
- FULL MODE: With JUSO_API_KEY (POSTAL_PROVIDER=juso) - juso.go.kr address API
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()  # Must be before importing config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from postcode_finder import __version__
from postcode_finder.address_resolver import AddressResolver
from postcode_finder.address_router import router as address_router, configure_router
from postcode_finder.candidate_verifier import CandidateVerifier
from postcode_finder.config import Config
from postcode_finder.export import ExportShaper, create_renderer
from postcode_finder.geocoder import BaseGeocoder, create_geocoder, get_available_providers
from postcode_finder.jobs.orchestrator import JobOrchestrator
from postcode_finder.jobs.retention import RetentionSweeper
from postcode_finder.jobs.store import JobStore, create_job_store
from postcode_finder.upload.document_parser import DocumentParserService
from postcode_finder.upload.router import router as file_router, configure_file_routes
from postcode_finder.upload.upload_handler import UploadHandler
from postcode_finder.utils.resilience import CircuitBreaker

cfg = Config()  # Fresh instance after dotenv loaded

logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Globals
_geocoder: BaseGeocoder = None
_breaker: CircuitBreaker = None
_store: JobStore = None
_orchestrator: JobOrchestrator = None
_sweeper_task: asyncio.Task = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _geocoder, _breaker, _store, _orchestrator, _sweeper_task

    print("\n" + "=" * 50)
    print("  Postcode Finder Startup")
    print("=" * 50 + "\n")

    _geocoder = create_geocoder(cfg)
    _breaker = CircuitBreaker(
        name=_geocoder.provider,
        threshold=cfg.circuit_breaker_threshold,
        reset_timeout=cfg.circuit_breaker_reset,
    )
    resolver = AddressResolver(
        _geocoder,
        verifier=CandidateVerifier(fallback_query_limit=cfg.fallback_query_limit),
        breaker=_breaker,
        page_size=cfg.geocoder_page_size,
    )
    configure_router(resolver)
    print(f"  Geocoder: {_geocoder.provider} (available: {', '.join(get_available_providers(cfg))})")

    _store = create_job_store(cfg)
    restored = await _store.load_all()
    print(f"  Job store: {_store.backend} ({restored} job(s) restored)")

    uploads = UploadHandler(
        upload_dir=cfg.upload_dir,
        output_dir=cfg.output_dir,
        max_file_size=cfg.max_file_size,
        allowed_extensions=cfg.allowed_extensions,
    )
    renderer = create_renderer(cfg.output_format)
    _orchestrator = JobOrchestrator(
        store=_store,
        resolver=resolver,
        parser=DocumentParserService(),
        uploads=uploads,
        shaper=ExportShaper(include_road_address=cfg.include_road_address),
        renderer=renderer,
        max_rows=cfg.max_rows,
        batch_size=cfg.batch_size,
        inter_batch_delay=cfg.inter_batch_delay,
        lease_seconds=cfg.job_lease_seconds,
    )
    configure_file_routes(_orchestrator, uploads, process_on_upload=cfg.process_on_upload)
    print(f"  Jobs: max {cfg.max_rows} rows, batches of {cfg.batch_size}, output {renderer.extension}")

    sweeper = RetentionSweeper(
        _store,
        uploads,
        retention_seconds=cfg.job_retention_seconds,
        interval_seconds=cfg.job_cleanup_interval,
    )
    _sweeper_task = asyncio.create_task(sweeper.run(), name="retention-sweeper")

    mode = "FULL" if _geocoder.provider == "juso" and cfg.is_juso_available() else "LITE"
    print("\n" + "=" * 50)
    print(f"  Postcode Finder Running in {mode} MODE")
    print("=" * 50)
    if mode == "LITE":
        print("  (Set POSTAL_PROVIDER=juso and JUSO_API_KEY in .env for the juso.go.kr API)")
    print(f"\n  API: http://localhost:8000")
    print(f"  Docs: http://localhost:8000/docs\n")

    yield

    # Shutdown
    _sweeper_task.cancel()
    await asyncio.gather(_sweeper_task, return_exceptions=True)
    await _orchestrator.shutdown()
    await _geocoder.aclose()
    await _store.close()


app = FastAPI(title="Postcode Finder", version=__version__, lifespan=lifespan)
app.include_router(address_router)
app.include_router(file_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Sanitized global exception handler - exception text only with DEBUG_ERRORS."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    message = str(exc) if cfg.debug_errors else "An unexpected error occurred. Please try again later."
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_SERVER_ERROR",
                "message": message,
            },
        },
    )


@app.get("/api/health")
async def health():
    """Health check with provider and store status"""
    jobs = await _store.list_jobs() if _store else []
    return {
        "status": "healthy",
        "version": __version__,
        "geocoder": _geocoder.get_info() if _geocoder else None,
        "circuit": _breaker.get_state() if _breaker else None,
        "store": _store.backend if _store else None,
        "jobs": len(jobs),
        "config": cfg.get_geocoder_config(),
    }
