"""
FastAPI application for the real-time voting API.

Candidate CRUD, voter registration and login, vote casting, and a WebSocket
channel that pushes the full candidate list after every change.
"""
import functools
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    Header,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .auth import (
    Authenticator,
    SessionAuthenticator,
    TokenAuthenticator,
    extract_credential,
    require_voter,
)
from .broadcaster import ConnectionManager
from .config import Settings, settings
from .database import Database
from .errors import InternalError, ValidationError, VotingError
from .generator import generate_candidate
from .models import (
    AuthResponse,
    CandidateCreate,
    CandidateResponse,
    CandidateUpdate,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    SessionStatus,
    VoterCredentials,
)
from .registry import InMemoryVoterRegistry, PostgresVoterRegistry, VoterRegistry
from .sessions import InMemorySessionStore, RedisSessionStore
from .store import CandidateStore, InMemoryCandidateStore, PostgresCandidateStore

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast = Counter(
    "votes_cast_total",
    "Total number of votes recorded"
)
vote_errors = Counter(
    "vote_errors_total",
    "Total number of rejected or failed votes",
    ["error_type"]
)
candidate_mutations = Counter(
    "candidate_mutations_total",
    "Total number of candidate mutations",
    ["operation"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiting: endpoints register here, each app wraps them with its own Limiter
RATE_LIMITED_ENDPOINTS = {}


def rate_limited(func):
    """Apply the calling app's rate limit to an endpoint."""
    RATE_LIMITED_ENDPOINTS[func.__name__] = func

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        endpoint = kwargs["request"].app.state.rate_limited[func.__name__]
        return await endpoint(*args, **kwargs)

    return wrapper


def build_rate_limits(config: Settings) -> tuple:
    """Create a Limiter for one app and wrap every rate limited endpoint with it."""
    limiter = Limiter(key_func=get_remote_address, enabled=config.RATE_LIMIT_ENABLED)
    wrapped = {
        name: limiter.limit(config.RATE_LIMIT)(endpoint)
        for name, endpoint in RATE_LIMITED_ENDPOINTS.items()
    }
    return limiter, wrapped


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid payload"},
    401: {"model": ErrorResponse, "description": "Missing or invalid credential"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}

router = APIRouter(prefix="/api")
service_router = APIRouter()


# ═══════════════════════════════════════════════════════════════════
# BACKENDS
# ═══════════════════════════════════════════════════════════════════

def build_authenticator(config: Settings) -> Authenticator:
    """Create the authentication policy selected by AUTH_MODE."""
    if config.AUTH_MODE == "token":
        return TokenAuthenticator(
            config.SECRET_KEY,
            algorithm=config.JWT_ALGORITHM,
            expire_minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    if config.AUTH_MODE != "session":
        raise ValueError(f"Unknown AUTH_MODE: {config.AUTH_MODE}")

    if config.SESSION_BACKEND == "redis":
        store = RedisSessionStore.from_url(config.redis_url, config.SESSION_TTL_SECONDS)
    elif config.SESSION_BACKEND == "memory":
        store = InMemorySessionStore(config.SESSION_TTL_SECONDS)
    else:
        raise ValueError(f"Unknown SESSION_BACKEND: {config.SESSION_BACKEND}")
    return SessionAuthenticator(store)


async def build_storage(app: FastAPI) -> None:
    """Create the candidate store and voter registry selected by STORAGE_BACKEND."""
    config: Settings = app.state.settings
    if config.STORAGE_BACKEND == "postgres":
        database = Database(config)
        await database.initialize()
        app.state.database = database
        app.state.candidates = PostgresCandidateStore(database)
        app.state.voters = PostgresVoterRegistry(database)
    elif config.STORAGE_BACKEND == "memory":
        candidates = InMemoryCandidateStore()
        app.state.candidates = candidates
        app.state.voters = InMemoryVoterRegistry(candidates)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")
    logger.info(f"Storage backend: {config.STORAGE_BACKEND}")


async def seed_candidates(app: FastAPI) -> None:
    """Insert generated candidates when the store starts out empty."""
    count = app.state.settings.SEED_CANDIDATES
    store: CandidateStore = app.state.candidates
    if count <= 0 or await store.list_candidates():
        return
    for _ in range(count):
        await store.create_candidate(**generate_candidate())
    logger.info(f"Seeded {count} generated candidates")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    config: Settings = app.state.settings
    logger.info(f"Starting {config.SERVICE_NAME} service...")

    try:
        if app.state.candidates is None:
            await build_storage(app)
        await seed_candidates(app)
        logger.info(f"{config.SERVICE_NAME} started successfully")

    except Exception as e:
        logger.error(f"Failed to start {config.SERVICE_NAME}: {e}")
        raise

    yield

    logger.info(f"Shutting down {config.SERVICE_NAME} service...")

    try:
        await app.state.manager.close_all()
        await app.state.manager.drain()
        await app.state.authenticator.close()
        if app.state.database is not None:
            await app.state.database.close()
        logger.info(f"{config.SERVICE_NAME} shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


async def notify(request: Request) -> None:
    """Push the post-mutation candidate list to every open socket.

    The mutation has already succeeded, so a failure here is logged and not
    reported to the caller.
    """
    state = request.app.state
    try:
        await state.manager.publish(state.candidates)
    except Exception as e:
        logger.error(f"Failed to broadcast candidates: {e}")


# ═══════════════════════════════════════════════════════════════════
# VOTER ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "Voter already registered"},
        429: {"description": "Rate limit exceeded"}
    }
)
@rate_limited
async def register(request: Request, credentials: VoterCredentials) -> AuthResponse:
    """
    Register a new voter and open a session for them.

    - **cnp**: National identifier (exactly 13 digits)
    """
    state = request.app.state
    # A voter is stored only after their credential is issued
    try:
        session_id = await state.authenticator.issue(credentials.cnp)
    except Exception as e:
        logger.error(f"Error issuing credential during registration: {e}")
        raise InternalError("Failed to register user")

    try:
        voter = await state.voters.register(credentials.cnp)
    except Exception as e:
        await state.authenticator.revoke(session_id)
        if isinstance(e, VotingError):
            raise
        logger.error(f"Error registering user: {e}")
        raise InternalError("Failed to register user")

    return AuthResponse(
        message="User registered successfully",
        session_id=session_id,
        token_type=state.authenticator.token_type,
        has_voted=voter.has_voted
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={**ERROR_RESPONSES, 429: {"description": "Rate limit exceeded"}}
)
@rate_limited
async def login(request: Request, credentials: VoterCredentials) -> AuthResponse:
    """Open a session for an existing voter."""
    state = request.app.state
    try:
        voter = await state.voters.authenticate(credentials.cnp)
        session_id = await state.authenticator.issue(voter.cnp)
    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error logging in: {e}")
        raise InternalError("Failed to login")

    return AuthResponse(
        message="Login successful",
        session_id=session_id,
        token_type=state.authenticator.token_type,
        has_voted=voter.has_voted
    )


@router.post("/logout", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def logout(
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None)
) -> MessageResponse:
    """End the caller's session (or revoke their token)."""
    credential = extract_credential(x_session_id, authorization)
    if credential is None:
        raise ValidationError("Session ID required")

    try:
        await request.app.state.authenticator.revoke(credential)
    except Exception as e:
        logger.error(f"Error logging out: {e}")
        raise InternalError("Failed to logout")

    return MessageResponse(message="Logout successful")


@router.get("/check-session", response_model=SessionStatus, response_model_exclude_none=True)
async def check_session(
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None)
) -> SessionStatus:
    """Report whether the credential is valid and whether its voter has voted."""
    state = request.app.state
    credential = extract_credential(x_session_id, authorization)
    if credential is None:
        return SessionStatus(is_authenticated=False)

    try:
        cnp = await state.authenticator.resolve(credential)
        voter = await state.voters.get_voter(cnp) if cnp else None
    except Exception as e:
        logger.error(f"Error checking session: {e}")
        raise InternalError("Failed to check session")

    if voter is None:
        return SessionStatus(is_authenticated=False)
    return SessionStatus(is_authenticated=True, has_voted=voter.has_voted)


@router.post(
    "/vote/{candidate_id}",
    response_model=MessageResponse,
    responses={
        **ERROR_RESPONSES,
        404: {"model": ErrorResponse, "description": "Candidate not found"},
        409: {"model": ErrorResponse, "description": "Voter has already voted"},
        429: {"description": "Rate limit exceeded"}
    }
)
@rate_limited
async def cast_vote(
    request: Request,
    candidate_id: str,
    cnp: str = Depends(require_voter)
) -> MessageResponse:
    """
    Cast the caller's single vote.

    - **candidate_id**: Candidate identifier
    """
    try:
        candidate = await request.app.state.voters.record_vote(cnp, candidate_id)

    except VotingError as e:
        vote_errors.labels(error_type=e.error).inc()
        raise
    except Exception as e:
        vote_errors.labels(error_type="internal_error").inc()
        logger.error(f"Error voting: {e}")
        raise InternalError("Failed to record vote")

    votes_cast.inc()
    logger.info(f"Vote recorded: candidate={candidate.id}, count={candidate.vote_count}")

    await notify(request)
    return MessageResponse(message="Vote recorded successfully")


# ═══════════════════════════════════════════════════════════════════
# CANDIDATE ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@router.get(
    "/candidates",
    response_model=list[CandidateResponse],
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_voter)]
)
async def list_candidates(request: Request) -> list:
    """Get all candidates in insertion order."""
    try:
        candidates = await request.app.state.candidates.list_candidates()
        return [candidate.to_dict() for candidate in candidates]
    except Exception as e:
        logger.error(f"Error fetching candidates: {e}")
        raise InternalError("Failed to fetch candidates")


@router.post(
    "/candidates",
    response_model=CandidateResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_voter)]
)
async def create_candidate(request: Request, payload: CandidateCreate) -> dict:
    """Create a candidate with a new id and zero votes."""
    try:
        candidate = await request.app.state.candidates.create_candidate(
            name=payload.name,
            party=payload.party,
            description=payload.description,
            image_url=payload.image_url
        )
    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error creating candidate: {e}")
        raise InternalError("Failed to create candidate")

    candidate_mutations.labels(operation="create").inc()
    logger.info(f"Candidate created: id={candidate.id}")
    await notify(request)
    return candidate.to_dict()


@router.post(
    "/candidates/generate",
    response_model=CandidateResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_voter)]
)
async def generate(request: Request) -> dict:
    """Create a candidate with randomized name, party, description and portrait."""
    try:
        candidate = await request.app.state.candidates.create_candidate(**generate_candidate())
    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error generating candidate: {e}")
        raise InternalError("Failed to generate candidate")

    candidate_mutations.labels(operation="generate").inc()
    logger.info(f"Candidate generated: id={candidate.id}")
    await notify(request)
    return candidate.to_dict()


@router.put(
    "/candidates/{candidate_id}",
    response_model=CandidateResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Candidate not found"}},
    dependencies=[Depends(require_voter)]
)
async def update_candidate(request: Request, candidate_id: str, payload: CandidateUpdate) -> dict:
    """Update a candidate's name, party, description or image."""
    try:
        candidate = await request.app.state.candidates.update_candidate(
            candidate_id, payload.model_dump(exclude_unset=True)
        )
    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error updating candidate: {e}")
        raise InternalError("Failed to update candidate")

    candidate_mutations.labels(operation="update").inc()
    logger.info(f"Candidate updated: id={candidate_id}")
    await notify(request)
    return candidate.to_dict()


@router.delete(
    "/candidates/{candidate_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Candidate not found"}},
    dependencies=[Depends(require_voter)]
)
async def delete_candidate(request: Request, candidate_id: str) -> Response:
    """Delete a candidate."""
    try:
        await request.app.state.candidates.delete_candidate(candidate_id)
    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error deleting candidate: {e}")
        raise InternalError("Failed to delete candidate")

    candidate_mutations.labels(operation="delete").inc()
    logger.info(f"Candidate deleted: id={candidate_id}")
    await notify(request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check(request: Request) -> JSONResponse:
    """
    Check health of the service and its dependencies.

    Verifies the storage backend and the session/token backend.
    """
    state = request.app.state
    services = {}

    try:
        storage_healthy = await state.candidates.check_health()
        services["storage"] = "connected" if storage_healthy else "disconnected"
    except Exception as e:
        logger.error(f"Storage health check error: {e}")
        services["storage"] = "error"

    try:
        sessions_healthy = await state.authenticator.check_health()
        services["sessions"] = "connected" if sessions_healthy else "disconnected"
    except Exception as e:
        logger.error(f"Session backend health check error: {e}")
        services["sessions"] = "error"

    services["websocket_clients"] = str(len(state.manager.active))

    all_healthy = services["storage"] == "connected" and services["sessions"] == "connected"
    response = HealthResponse(
        status="healthy" if all_healthy else "unhealthy",
        services=services,
        timestamp=datetime.utcnow()
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


# ═══════════════════════════════════════════════════════════════════
# REAL-TIME CHANNEL
# ═══════════════════════════════════════════════════════════════════

@service_router.websocket("/ws")
async def candidates_feed(websocket: WebSocket):
    """Push the candidate list on connect and after every change.

    The credential comes from X-Session-ID / Authorization headers, or the
    `session_id` / `token` query parameter for browser clients.
    """
    state = websocket.app.state
    credential = (
        extract_credential(
            websocket.headers.get("x-session-id"),
            websocket.headers.get("authorization")
        )
        or websocket.query_params.get("session_id")
        or websocket.query_params.get("token")
    )
    cnp = await state.authenticator.resolve(credential) if credential else None
    if cnp is None:
        logger.warning("Rejected WebSocket connection without a valid session")
        await websocket.close(
            code=status.WS_1008_POLICY_VIOLATION,
            reason="Invalid or expired session"
        )
        return

    manager: ConnectionManager = state.manager
    try:
        await manager.connect(websocket, state.candidates)
        while True:
            # Inbound messages carry no meaning; reading detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)


@service_router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@service_router.get("/")
async def root(request: Request):
    """Root endpoint with API information."""
    config: Settings = request.app.state.settings
    return {
        "service": config.SERVICE_NAME,
        "version": config.API_VERSION,
        "status": "running",
        "endpoints": {
            "register": "/api/register",
            "login": "/api/login",
            "logout": "/api/logout",
            "check_session": "/api/check-session",
            "candidates": "/api/candidates",
            "generate_candidate": "/api/candidates/generate",
            "vote": "/api/vote/{candidate_id}",
            "health": "/api/health",
            "realtime": "/ws",
            "metrics": "/metrics"
        }
    }


# ═══════════════════════════════════════════════════════════════════
# ERROR HANDLERS
# ═══════════════════════════════════════════════════════════════════

async def voting_error_handler(request: Request, exc: VotingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(**exc.to_dict()).model_dump()
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error=ValidationError.error,
            message="Invalid request payload",
            details={"errors": jsonable_encoder(exc.errors())}
        ).model_dump()
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=ErrorResponse(
            error="RateLimitExceeded",
            message=f"Rate limit exceeded: {exc.detail}"
        ).model_dump()
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=InternalError.error, message="Internal server error").model_dump()
    )


# ═══════════════════════════════════════════════════════════════════
# APPLICATION
# ═══════════════════════════════════════════════════════════════════

def create_app(
    config: Optional[Settings] = None,
    candidates: Optional[CandidateStore] = None,
    voters: Optional[VoterRegistry] = None,
    authenticator: Optional[Authenticator] = None,
    manager: Optional[ConnectionManager] = None
) -> FastAPI:
    """Build the application.

    Backends passed in are used as-is. Otherwise the in-memory backends are
    created here and PostgreSQL is connected during startup.
    """
    config = config or settings

    app = FastAPI(
        title="Real-time Voting API",
        description="Candidate management, one-vote-per-voter casting and live results",
        version=config.API_VERSION,
        lifespan=lifespan
    )

    if candidates is None and voters is None and config.STORAGE_BACKEND == "memory":
        candidates = InMemoryCandidateStore()
        voters = InMemoryVoterRegistry(candidates)
    elif (candidates is None) != (voters is None):
        raise ValueError("candidates and voters must be provided together")

    app.state.settings = config
    app.state.database = None
    app.state.candidates = candidates
    app.state.voters = voters
    app.state.authenticator = authenticator or build_authenticator(config)
    app.state.manager = manager or ConnectionManager()

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=config.CORS_ALLOW_METHODS,
        allow_headers=config.CORS_ALLOW_HEADERS,
    )

    # Add rate limiter
    app.state.limiter, app.state.rate_limited = build_rate_limits(config)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    app.add_exception_handler(VotingError, voting_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        start = time.perf_counter()
        response = await call_next(request)

        # Route template, so candidate ids do not become label values
        route = request.scope.get("route")
        request_duration.labels(
            method=request.method,
            endpoint=getattr(route, "path", request.url.path),
            status=response.status_code
        ).observe(time.perf_counter() - start)

        return response

    app.include_router(router)
    app.include_router(service_router)
    return app


app = create_app()


def run():
    """Console entry point."""
    uvicorn.run(
        "voting_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
