# packages/voting_gateway/main.py

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import sentry_sdk
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from pythonjsonlogger import jsonlogger

from .config import Settings
from .chain import ChainConnector
from .errors import MESSAGES, ErrorKind, GatewayError
from .read_model import ReadModelTranslator
from .transactions import TransactionOrchestrator
from .schemas import (
    AddCandidateInput,
    CastVoteInput,
    AddCandidateSchema,
    CandidateListSchema,
    VoteSchema,
    WinnerSchema,
    StatusSchema,
    LifecycleSchema,
    HasVotedSchema,
    HealthSchema,
)

settings = Settings.from_env()

handler = logging.StreamHandler()
handler.setFormatter(jsonlogger.JsonFormatter())
logging.basicConfig(level=settings.log_level, handlers=[handler])
logger = logging.getLogger(__name__)

sentry_sdk.init(dsn=settings.sentry_dsn)


# -----------------------------------------------------------------------------
# Startup: one connector per process, initialised before serving.
# -----------------------------------------------------------------------------
def build_services(settings: Settings) -> tuple[ChainConnector, ReadModelTranslator, TransactionOrchestrator]:
    connector = ChainConnector(abi_path=settings.abi_path, receipt_timeout=settings.receipt_timeout)
    connector.initialize(
        settings.rpc_url,
        settings.contract_address,
        settings.owner_private_key,
        expected_network_id=settings.network_id,
        expected_owner=settings.owner_address,
    )
    read_model = ReadModelTranslator(connector)
    return connector, read_model, TransactionOrchestrator(connector, read_model)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing Voting API server")
    settings.validate()
    try:
        connector, read_model, orchestrator = build_services(settings)
    except GatewayError as exc:
        logger.error("Failed to start server: %s", exc, extra={"detail": exc.detail})
        raise
    app.state.connector = connector
    app.state.read_model = read_model
    app.state.orchestrator = orchestrator
    logger.info("Server ready", extra={"env": settings.node_env, "port": settings.port})
    yield


app = FastAPI(title="Voting API", lifespan=lifespan)
app.add_middleware(SentryAsgiMiddleware)

Instrumentator().instrument(app).expose(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "SAMEORIGIN",
    "x-dns-prefetch-control": "off",
    "referrer-policy": "no-referrer",
    "cross-origin-opener-policy": "same-origin",
}
if settings.is_production:
    SECURITY_HEADERS["strict-transport-security"] = "max-age=15552000; includeSubDomains"


def cors_origin_for(origin):
    allowed = settings.allowed_origins
    if "*" in allowed:
        return "*"
    if origin in allowed:
        return origin
    return None


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception as exc:
        # unhandled errors bypass CORSMiddleware, so build the 500 here
        logger.exception("Unclassified error on %s %s", request.method, request.url.path)
        response = JSONResponse(error_body(str(exc) or MESSAGES[ErrorKind.UNCLASSIFIED]), status_code=500)
        allow_origin = cors_origin_for(request.headers.get("origin"))
        if allow_origin:
            response.headers.setdefault("access-control-allow-origin", allow_origin)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# -----------------------------------------------------------------------------
# Error responses
# -----------------------------------------------------------------------------
def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def error_body(message: str) -> dict:
    return {"success": False, "error": message, "timestamp": timestamp()}


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.warning(
        "%s %s failed with %s",
        request.method,
        request.url.path,
        exc.kind.value,
        extra={"detail": exc.detail},
    )
    return JSONResponse(error_body(exc.message), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    missing = [str(e["loc"][-1]) for e in errors if e.get("type") == "missing"]
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
    else:
        problems = "; ".join(f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in errors)
        message = f"{MESSAGES[ErrorKind.INVALID_REQUEST]}: {problems}"
    return JSONResponse(error_body(message), status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(
            {"success": False, "error": "Route not found", "path": request.url.path},
            status_code=404,
        )
    return JSONResponse(error_body(str(exc.detail)), status_code=exc.status_code)


@app.exception_handler(Exception)
async def unclassified_error_handler(request: Request, exc: Exception):
    logger.exception("Unclassified error on %s %s", request.method, request.url.path)
    return JSONResponse(error_body(str(exc) or MESSAGES[ErrorKind.UNCLASSIFIED]), status_code=500)


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
def get_read_model(request: Request) -> ReadModelTranslator:
    read_model = getattr(request.app.state, "read_model", None)
    if read_model is None:
        raise GatewayError(ErrorKind.NOT_INITIALIZED)
    return read_model


def get_orchestrator(request: Request) -> TransactionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise GatewayError(ErrorKind.NOT_INITIALIZED)
    return orchestrator


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
@app.get("/health", response_model=HealthSchema)
def health(request: Request):
    connector = getattr(request.app.state, "connector", None)
    return {
        "message": "Voting API is running",
        "timestamp": timestamp(),
        "network": settings.rpc_url,
        "contract": settings.contract_address,
        "initialized": bool(connector is not None and connector.initialized),
    }


router = APIRouter(prefix="/api")


@router.post("/candidates", response_model=AddCandidateSchema, status_code=201)
def add_candidate(payload: AddCandidateInput, orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    result = orchestrator.add_candidate(payload.name)
    logger.info("Candidate added", extra={"candidate": result.name, "index": result.candidateIndex})
    return {
        "candidateIndex": result.candidateIndex,
        "name": result.name,
        "transactionHash": result.transactionHash,
        "blockNumber": result.blockNumber,
        "gasUsed": result.gasUsed,
    }


@router.get("/candidates", response_model=CandidateListSchema)
def list_candidates(read_model: ReadModelTranslator = Depends(get_read_model)):
    candidates = read_model.list_candidates()
    return {"totalCandidates": len(candidates), "candidates": [c.as_dict() for c in candidates]}


@router.post("/vote", response_model=VoteSchema)
def cast_vote(payload: CastVoteInput, orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    result = orchestrator.cast_vote(payload.voterAddress, payload.candidateIndex)
    return {
        "voter": result.voter,
        "candidateIndex": result.candidateIndex,
        "transactionHash": result.transactionHash,
        "blockNumber": result.blockNumber,
        "gasUsed": result.gasUsed,
    }


@router.get("/winner", response_model=WinnerSchema)
def get_winner(read_model: ReadModelTranslator = Depends(get_read_model)):
    result = read_model.get_winner()
    return {
        "winner": result.winner,
        "winnerIndexes": list(result.winnerIndexes),
        "voteCount": result.voteCount,
        "isTie": result.isTie,
        "message": result.message,
    }


@router.get("/status", response_model=StatusSchema)
def get_status(read_model: ReadModelTranslator = Depends(get_read_model)):
    snapshot = read_model.get_voting_state()
    return {"state": snapshot.state, "stateName": snapshot.stateName}


@router.post("/start", response_model=LifecycleSchema)
def start_voting(orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    result = orchestrator.start_voting()
    return {"message": result.message, "transactionHash": result.transactionHash, "blockNumber": result.blockNumber}


@router.post("/end", response_model=LifecycleSchema)
def end_voting(orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    result = orchestrator.end_voting()
    return {"message": result.message, "transactionHash": result.transactionHash, "blockNumber": result.blockNumber}


@router.get("/has-voted/{address}", response_model=HasVotedSchema)
def has_voted(address: str, read_model: ReadModelTranslator = Depends(get_read_model)):
    return {"address": address, "hasVoted": read_model.has_voted(address)}


app.include_router(router)
