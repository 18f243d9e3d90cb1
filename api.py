# api.py
"""
FastAPI service for Code Roast.

Interactive routes use a server-side session cookie; /api/v1 uses bearer
API keys; /api/webhooks/stripe receives signed billing events.

Run with: uvicorn api:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from starlette.concurrency import run_in_threadpool

from code_roast import __version__
from code_roast import auth, teams
from code_roast.api_keys import create_api_key, delete_api_key, list_api_keys
from code_roast.billing import StripeWebhookHandler, resolve_entitlement
from code_roast.client import ReviewClient
from code_roast.config import Settings, load_settings
from code_roast.db import create_session_factory, init_db
from code_roast.entities import User
from code_roast.errors import CodeRoastError, Unauthenticated, ValidationError
from code_roast.models import (
    ApiKeyCreated,
    ApiKeyInfo,
    ApiReviewRequest,
    ReviewRequest,
)
from code_roast.quota import monthly_usage
from code_roast.reviewer import ReviewPipeline

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_id"
PUBLIC_API_PREFIX = "/api/v1/"
PUBLIC_API_FAILURE = "Failed to process code review"

# ── Request / Response models ───────────────────────────────────────────────


class SignupRequest(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class ApiKeyRequest(BaseModel):
    name: str = ""


class TeamRequest(BaseModel):
    name: str = ""


class InviteRequest(BaseModel):
    email: str = ""
    role: str = "member"


class HealthResponse(BaseModel):
    status: str
    version: str
    provider: str


# ── Error rendering ─────────────────────────────────────────────────────────


def _error_response(request: Request, exc: CodeRoastError) -> JSONResponse:
    if request.url.path.startswith(PUBLIC_API_PREFIX):
        if exc.http_status >= 500:
            logger.warning("Public API review failed: %s", exc.message)
            return JSONResponse({"error": PUBLIC_API_FAILURE}, status_code=500)
        return JSONResponse({"error": exc.message}, status_code=exc.http_status)

    error = exc.field_errors if isinstance(exc, ValidationError) else exc.message
    return JSONResponse(
        {"error": error, "upgradeRequired": exc.upgrade_required},
        status_code=exc.http_status,
    )


def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    if request.url.path.startswith(PUBLIC_API_PREFIX):
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    field_errors = {}
    for err in exc.errors():
        field = str(err["loc"][-1]) if err.get("loc") else "_form"
        field_errors.setdefault(field, []).append(err.get("msg", "Invalid value"))
    return JSONResponse({"error": field_errors, "upgradeRequired": False}, status_code=400)


def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    if request.url.path.startswith(PUBLIC_API_PREFIX):
        return JSONResponse({"error": PUBLIC_API_FAILURE}, status_code=500)
    return JSONResponse({"error": "Something went wrong. Please try again.", "upgradeRequired": False},
                        status_code=500)


# ── Dependencies ────────────────────────────────────────────────────────────


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def current_user(request: Request) -> User:
    """Signed-in user, looked up in a session of its own.

    The session is closed before the route runs so no connection is held
    while a review waits on the model.
    """
    db = request.app.state.session_factory()
    try:
        user = auth.get_user_by_session(db, request.cookies.get(SESSION_COOKIE))
    finally:
        db.close()
    if user is None:
        raise Unauthenticated("You must be logged in")
    return user


def _parse_api_body(raw: bytes) -> ApiReviewRequest:
    if not raw.strip() or raw.strip() == b"null":
        return ApiReviewRequest()
    try:
        return ApiReviewRequest.model_validate_json(raw)
    except SchemaError as e:
        raise ValidationError({"body": ["Invalid request body"]}) from e


# ── App factory ─────────────────────────────────────────────────────────────


def create_app(
    settings: Optional[Settings] = None,
    session_factory=None,
    client: Optional[ReviewClient] = None,
    webhooks: Optional[StripeWebhookHandler] = None,
) -> FastAPI:
    settings = settings or load_settings()
    session_factory = session_factory or create_session_factory(settings.database_url)
    client = client or ReviewClient.from_settings(settings)
    webhooks = webhooks or StripeWebhookHandler(
        session_factory,
        webhook_secret=settings.stripe_webhook_secret,
        price_plans=settings.price_plans(),
        stripe_api_key=settings.stripe_secret_key,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(session_factory)
        yield

    app = FastAPI(
        title="Code Roast",
        description="Sarcastic but helpful AI code reviews",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.pipeline = ReviewPipeline(
        session_factory, client, free_monthly_limit=settings.free_monthly_reviews
    )
    app.state.webhooks = webhooks

    app.add_exception_handler(CodeRoastError, _error_response)
    app.add_exception_handler(RequestValidationError, _invalid_body)
    app.add_exception_handler(Exception, _unexpected_error)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    pipeline: ReviewPipeline = app.state.pipeline

    @app.get("/", response_model=HealthResponse)
    @app.get("/health", response_model=HealthResponse)
    def health():
        return {"status": "ok", "version": __version__, "provider": settings.llm_provider}

    # ── Accounts ──

    @app.post("/auth/signup", status_code=201)
    def signup(body: SignupRequest, db=Depends(get_db)):
        user = auth.signup(db, body.name, body.email, body.password)
        return {"success": True, "user": {"id": user.id, "name": user.name, "email": user.email}}

    @app.post("/auth/login")
    def login(body: LoginRequest, response: Response, db=Depends(get_db)):
        token = auth.login(db, body.email, body.password, session_days=settings.session_days)
        response.set_cookie(
            SESSION_COOKIE, token,
            max_age=settings.session_days * 24 * 3600,
            httponly=True, samesite="lax",
        )
        return {"success": True}

    @app.post("/auth/logout")
    def logout(request: Request, response: Response, db=Depends(get_db)):
        auth.logout(db, request.cookies.get(SESSION_COOKIE))
        response.delete_cookie(SESSION_COOKIE)
        return {"success": True}

    # ── Reviews ──

    @app.post("/reviews")
    def submit_review(body: ReviewRequest, user: User = Depends(current_user)):
        review = pipeline.submit(user.id, body.code, body.language)
        return {"success": True, "review": review.model_dump(by_alias=True)}

    @app.get("/reviews")
    def recent_reviews(limit: int = 5, user: User = Depends(current_user)):
        reviews = pipeline.recent_reviews(user.id, limit=max(1, min(limit, 50)))
        return [r.model_dump(by_alias=True, mode="json") for r in reviews]

    @app.get("/reviews/{review_id}")
    def get_review(review_id: str, user: User = Depends(current_user)):
        return pipeline.get_review(user.id, review_id).model_dump(by_alias=True, mode="json")

    @app.get("/subscription")
    def subscription(user: User = Depends(current_user), db=Depends(get_db)):
        entitlement = resolve_entitlement(db, user.id)
        usage = monthly_usage(db, user.id, entitlement, limit=settings.free_monthly_reviews)
        return {
            "entitlement": entitlement.model_dump(by_alias=True, mode="json"),
            "usage": usage.model_dump(by_alias=True, mode="json"),
        }

    # ── API keys ──

    @app.get("/api-keys")
    def get_api_keys(user: User = Depends(current_user), db=Depends(get_db)):
        return [
            ApiKeyInfo(
                id=row.id, name=row.name, key_prefix=row.key_prefix,
                created_at=row.created_at, last_used_at=row.last_used_at,
            ).model_dump(by_alias=True, mode="json")
            for row in list_api_keys(db, user.id)
        ]

    @app.post("/api-keys", status_code=201)
    def new_api_key(body: ApiKeyRequest, user: User = Depends(current_user), db=Depends(get_db)):
        entitlement = resolve_entitlement(db, user.id)
        row, key = create_api_key(db, user.id, body.name, entitlement, prefix=settings.api_key_prefix)
        created = ApiKeyCreated(
            id=row.id, name=row.name, key_prefix=row.key_prefix,
            created_at=row.created_at, last_used_at=row.last_used_at, key=key,
        )
        return {"success": True, "apiKey": created.model_dump(by_alias=True, mode="json")}

    @app.delete("/api-keys/{key_id}")
    def remove_api_key(key_id: str, user: User = Depends(current_user), db=Depends(get_db)):
        delete_api_key(db, user.id, key_id)
        return {"success": True}

    # ── Teams ──

    @app.get("/teams")
    def get_teams(user: User = Depends(current_user), db=Depends(get_db)):
        return [t.model_dump() for t in teams.list_user_teams(db, user.id)]

    @app.post("/teams", status_code=201)
    def new_team(body: TeamRequest, user: User = Depends(current_user), db=Depends(get_db)):
        entitlement = resolve_entitlement(db, user.id)
        team = teams.create_team(db, user.id, body.name, entitlement)
        return {"success": True, "team": {"id": team.id, "name": team.name, "slug": team.slug}}

    @app.get("/teams/{team_id}/members")
    def get_team_members(team_id: str, user: User = Depends(current_user), db=Depends(get_db)):
        return [m.model_dump(by_alias=True) for m in teams.list_team_members(db, user.id, team_id)]

    @app.post("/teams/{team_id}/members", status_code=201)
    def invite(team_id: str, body: InviteRequest, user: User = Depends(current_user), db=Depends(get_db)):
        teams.invite_member(db, user.id, team_id, body.email, body.role)
        return {"success": True}

    @app.delete("/teams/{team_id}/members/{member_id}")
    def remove_member(team_id: str, member_id: str, user: User = Depends(current_user), db=Depends(get_db)):
        teams.remove_member(db, user.id, team_id, member_id)
        return {"success": True}

    # ── Public API ──

    @app.post("/api/v1/review")
    async def api_review(request: Request, authorization: Optional[str] = Header(None)):
        # Credentials are checked before the body is read
        user_id = await run_in_threadpool(pipeline.authenticate_api_caller, authorization)
        body = _parse_api_body(await request.body())
        result = await run_in_threadpool(
            pipeline.submit_for_api_caller, user_id, body.code, body.language
        )
        return result.model_dump(by_alias=True)

    # ── Billing webhook ──

    @app.post("/api/webhooks/stripe")
    async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(None)):
        payload = await request.body()
        try:
            await run_in_threadpool(app.state.webhooks.handle, payload, stripe_signature)
        except ValidationError as e:
            return Response(e.message, status_code=400, media_type="text/plain")
        return Response(status_code=200)


logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

app = create_app()
