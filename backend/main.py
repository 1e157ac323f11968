# backend/main.py
import logging
import os
from typing import Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import our modules
import auth, crud, entitlements, models, schemas, stats, upgrades
from database import SessionLocal, create_db_tables
from errors import EntitlementDenied, Forbidden, NotFound, RateLimited, ServiceError, Unauthorized, UpstreamFailure
from generator import CVGenerator
from ratelimit import RateLimiter, client_ip

logger = logging.getLogger("cvforge.api")

# OAuth2 Scheme definition; tokens come from the external identity provider
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
]


def parse_cors_origins(value: Optional[str]) -> list[str]:
    if not value:
        return DEFAULT_CORS_ORIGINS
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    return origins or DEFAULT_CORS_ORIGINS


def dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


# Database Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_claims(token: Optional[str] = Depends(oauth2_scheme)):
    claims = auth.get_token_claims(token) if token else None
    if claims is None:
        raise Unauthorized()
    return claims

# Dependency to get the current user from a token; entitlement always comes from the database
def get_current_user(claims: dict = Depends(get_claims), db: Session = Depends(get_db)):
    user = crud.get_user(db, claims["sub"])
    if user is None:
        raise NotFound("User not found")
    return user

def get_current_admin(user: models.User = Depends(get_current_user)):
    if not entitlements.can_administer(user).allowed:
        raise Forbidden("Admin access required")
    return user

def get_stats(request: Request) -> stats.StatsAggregator:
    return request.app.state.stats

def get_upgrade_limiter(request: Request) -> RateLimiter:
    return request.app.state.upgrade_limiter

def get_generator(request: Request) -> CVGenerator:
    return request.app.state.generator

def ensure_same_user(claimed_user_id: Optional[str], current_user: models.User):
    """A userId sent by the client may only name the authenticated caller."""
    if claimed_user_id and claimed_user_id != current_user.id:
        raise Forbidden("Unauthorized")


router = APIRouter()


# --- Users ---

@router.post("/users/sync")
def sync_user(claims: dict = Depends(get_claims), db: Session = Depends(get_db)):
    user, created = crud.sync_user(db, claims["sub"], claims["email"], claims.get("name"), auth.ADMIN_EMAIL)
    return {"success": True, "created": created, "user": dump(schemas.User.model_validate(user))}

@router.get("/users/me")
def read_current_user(current_user: models.User = Depends(get_current_user)):
    return {
        "success": True,
        "user": dump(schemas.User.model_validate(current_user)),
        "tokensRemaining": entitlements.tokens_remaining(current_user),
    }


# --- CV storage ---

@router.post("/cv")
def save_cv(
    payload: schemas.CVCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    ensure_same_user(payload.user_id, current_user)
    record = crud.create_cv(db, current_user.id, payload)
    return {"success": True, "cvId": record.id, "message": "CV saved successfully"}

@router.get("/cv")
def read_user_cvs(
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    ensure_same_user(user_id, current_user)
    records = crud.get_user_cvs(db, current_user.id)
    return {"success": True, "cvs": [dump(schemas.CVSummary.model_validate(r)) for r in records]}

@router.get("/cv/{cv_id}/download")
def download_cv(cv_id: str, db: Session = Depends(get_db)):
    record, html = crud.download_cv(db, cv_id)
    return dump(schemas.CVDownload(
        html=html,
        content_available=html is not None,
        title=record.title,
        template=record.template,
        industry=record.industry,
    ))

@router.get("/cv/{cv_id}")
def read_cv(
    cv_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    ensure_same_user(user_id, current_user)
    record, html = crud.get_cv(db, cv_id, current_user.id)
    cv = schemas.CVDetail.model_validate(record).model_copy(
        update={"html_content": html, "content_available": html is not None}
    )
    return {"success": True, "cv": dump(cv)}

@router.delete("/cv/{cv_id}")
def delete_cv(
    cv_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    ensure_same_user(user_id, current_user)
    crud.delete_cv(db, cv_id, current_user.id)
    return {"success": True, "message": "CV deleted successfully"}


# --- Generation ---

@router.post("/generate-cv")
def generate_cv(
    payload: schemas.GenerateRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    generator: CVGenerator = Depends(get_generator),
):
    decision = entitlements.can_consume_generation(current_user)
    if not decision.allowed:
        raise EntitlementDenied(decision.reason, "Insufficient tokens. Upgrade to Pro or purchase tokens.")

    html = generator.generate(payload.form_data, payload.template, payload.industry)
    # Charged only once the document exists
    user = crud.charge_generation(db, current_user)

    cv_id = None
    if payload.save and user.is_pro:
        try:
            record = crud.create_cv(db, user.id, schemas.CVCreate(
                htmlContent=html,
                title=payload.title or f"{payload.template.capitalize()} CV",
                industry=payload.industry,
                template=payload.template,
                formData=payload.form_data,
            ))
            cv_id = record.id
        except (ValidationError, SQLAlchemyError):
            db.rollback()
            logger.exception("Generated CV for user %s could not be saved", user.id)

    return {
        "success": True,
        "html": html,
        "cvId": cv_id,
        "saved": cv_id is not None,
        "template": payload.template,
        "industry": payload.industry,
        "tokensRemaining": entitlements.tokens_remaining(user),
        "message": "Professional CV generated successfully",
    }


# --- Upgrade requests ---

@router.post("/upgrade-requests")
def submit_upgrade_request(
    payload: schemas.UpgradeRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    limiter: RateLimiter = Depends(get_upgrade_limiter),
):
    if not limiter.check(client_ip(request)):
        raise RateLimited("Too many upgrade requests. Please try again later.")
    ensure_same_user(payload.user_id, current_user)
    upgrade = upgrades.submit_request(db, current_user.id, payload)
    return {"success": True, "message": "Upgrade request submitted successfully", "requestId": upgrade.id}

@router.get("/upgrade-requests")
def read_upgrade_requests(
    status: Optional[Literal["pending", "approved", "rejected"]] = None,
    db: Session = Depends(get_db),
    admin: models.User = Depends(get_current_admin),
):
    requests = upgrades.list_requests(db, status)
    return {"success": True, "requests": [dump(schemas.UpgradeRequest.model_validate(r)) for r in requests]}

@router.post("/upgrade-requests/{request_id}")
def review_upgrade_request(
    request_id: str,
    review: schemas.ReviewAction,
    db: Session = Depends(get_db),
    admin: models.User = Depends(get_current_admin),
):
    if review.action == "approve":
        upgrade = upgrades.approve_request(db, request_id, admin.email)
    else:
        upgrade = upgrades.reject_request(db, request_id, admin.email, review.reason)
    return {"success": True, "request": dump(schemas.UpgradeRequest.model_validate(upgrade))}


# --- Admin users ---

@router.get("/admin/users")
def read_users(db: Session = Depends(get_db), admin: models.User = Depends(get_current_admin)):
    return {"success": True, "users": [dump(schemas.User.model_validate(u)) for u in crud.list_users(db)]}

@router.post("/admin/users/{user_id}/tokens")
def grant_tokens(
    user_id: str,
    grant: schemas.TokenGrant,
    db: Session = Depends(get_db),
    admin: models.User = Depends(get_current_admin),
):
    user = crud.add_tokens(db, user_id, grant.amount)
    logger.info("Admin %s added %s tokens to user %s", admin.email, grant.amount, user_id)
    return {"success": True, "user": dump(schemas.User.model_validate(user))}


# --- Stats ---

CACHE_CONTROL = {
    stats.CACHE_HIT: "public, s-maxage=300, stale-while-revalidate=60",
    stats.CACHE_MISS: "public, s-maxage=300, stale-while-revalidate=60",
    stats.CACHE_STALE: "public, max-age=60",
    stats.CACHE_FALLBACK: "no-store",
}

@router.get("/stats/public")
def read_public_stats(db: Session = Depends(get_db), aggregator: stats.StatsAggregator = Depends(get_stats)):
    snapshot, cache_state = aggregator.get(db)
    return JSONResponse(
        {"success": True, **snapshot},
        headers={"Cache-Control": CACHE_CONTROL[cache_state], "X-Cache": cache_state},
    )

@router.get("/stats/all")
def read_all_stats(
    db: Session = Depends(get_db),
    aggregator: stats.StatsAggregator = Depends(get_stats),
    admin: models.User = Depends(get_current_admin),
):
    try:
        snapshot = aggregator.compute(db)
    except stats.StatsUnavailable as e:
        raise UpstreamFailure("Failed to fetch stats") from e
    return {"success": True, **snapshot, "users": stats.user_summaries(db)}

@router.get("/stats/daily")
def read_daily_stats(db: Session = Depends(get_db)):
    try:
        return {"success": True, "dailyStats": stats.daily_cv_counts(db)}
    except SQLAlchemyError:
        logger.exception("Error fetching daily stats")
        return {"success": False, "dailyStats": []}

@router.get("/stats/cv-count")
def read_cv_count(db: Session = Depends(get_db)):
    try:
        return {"count": stats.count_cvs(db)}
    except SQLAlchemyError:
        logger.exception("Error counting CVs")
        return {"count": 0}


@router.get("/")
def root():
    return {"status": "ok", "service": "CVForge API"}


# --- Error rendering ---

async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )

HTTP_ERROR_CODES = {
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # Routing errors (unknown path, wrong method) raised before any route runs
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": HTTP_ERROR_CODES.get(exc.status_code, "INTERNAL"), "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )

async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=400, content={"success": False, "error": "VALIDATION", "message": message})

async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "INTERNAL", "message": "Internal server error"})


def create_app(generator: CVGenerator = None, aggregator: stats.StatsAggregator = None, upgrade_limiter: RateLimiter = None):
    """Builds the API with its process-lifetime state attached to app.state."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # This creates the tables if they don't exist
    create_db_tables()

    app = FastAPI(title="CVForge API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(os.getenv("CORS_ALLOW_ORIGINS")),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.state.generator = generator or CVGenerator.from_env()
    app.state.stats = aggregator or stats.StatsAggregator(
        ttl_seconds=float(os.getenv("STATS_CACHE_TTL_SECONDS", "300")),
    )
    app.state.upgrade_limiter = upgrade_limiter or RateLimiter(
        max_requests=int(os.getenv("UPGRADE_RATE_LIMIT", "5")),
        window_seconds=int(os.getenv("UPGRADE_RATE_WINDOW_SECONDS", "3600")),
        namespace="upgrade-requests",
    )

    app.include_router(router)
    return app


app = create_app()
