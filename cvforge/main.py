"""FastAPI entrypoint for CVForge."""

import hmac
import logging
from datetime import datetime, timezone
from time import monotonic
from typing import Any
from uuid import UUID, uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cvforge.config import get_settings
from cvforge.database import close_engine, get_db_session, run_health_query
from cvforge.errors import InjectionAttemptError, InvalidInputError, SanitizationError
from cvforge.metrics import BoundedCounters
from cvforge.models import ACTIVITY_TYPES, ActivityEvent, CVDocument, UserProfile
from cvforge.rate_limit import RateLimitBackendError, RateLimitRule, create_rate_limiter
from cvforge.sanitization import prevent_nosql_injection, sanitize_object
from cvforge.validation import (
    CVValidationError,
    ValidatedCV,
    validate_cv_payload,
    validate_profile_update,
)

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
app = FastAPI(title=settings.app_name, version=settings.app_version)
started_at_monotonic = monotonic()
rate_limit_logger = logging.getLogger("cvforge.rate_limit")
rate_limiter, rate_limiter_is_shared = create_rate_limiter(
    backend=settings.rate_limit_backend,
    redis_url=settings.redis_url,
    prefix=settings.rate_limit_prefix,
    logger=rate_limit_logger,
)
if settings.environment.lower() not in {"development", "test"} and not rate_limiter_is_shared:
    raise RuntimeError(
        "Shared rate limiting is required outside development/test. "
        "Configure REDIS_URL or RATE_LIMIT_BACKEND=redis."
    )
request_logger = logging.getLogger("cvforge.request")
security_logger = logging.getLogger("cvforge.security")
activity_logger = logging.getLogger("cvforge.activity")
request_metrics = BoundedCounters(max_entries=settings.metrics_max_entries)
rejection_metrics = BoundedCounters(max_entries=64)


def _metric_route_label(request: Request) -> str:
    route = request.scope.get("route")
    if isinstance(route, APIRoute):
        return route.path
    return "_unmatched"


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def get_principal(request: Request) -> str:
    """Return the user id asserted by the upstream identity provider."""

    principal = (request.headers.get(settings.principal_header) or "").strip()
    if not principal or len(principal) > 255:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return principal


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next: Any) -> Response:
    limit = settings.max_request_body_bytes
    if limit > 0 and request.method.upper() not in {"GET", "HEAD", "OPTIONS"}:
        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                declared_size = int(content_length)
            except ValueError:
                return JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    content={"detail": "Invalid Content-Length header"},
                )
            if declared_size > limit:
                return JSONResponse(
                    status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                    content={"detail": "Request payload too large"},
                )

    return await call_next(request)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next: Any) -> Response:
    started = monotonic()
    method = request.method.upper()
    try:
        response = await call_next(request)
    except Exception:
        request_logger.exception(
            "request method=%s route=%s status=%s latency_ms=%s",
            method,
            _metric_route_label(request),
            500,
            int((monotonic() - started) * 1000),
        )
        request_metrics.increment(f"{method} {_metric_route_label(request)} 500")
        raise

    route_label = _metric_route_label(request)
    request_logger.info(
        "request method=%s route=%s status=%s latency_ms=%s",
        method,
        route_label,
        response.status_code,
        int((monotonic() - started) * 1000),
    )
    request_metrics.increment(f"{method} {route_label} {response.status_code}")
    return response


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await rate_limiter.close()
    await close_engine()


def _bad_request(exc: SanitizationError) -> HTTPException:
    rejection_metrics.increment(exc.error_type)
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "message": "Invalid input",
            "errors": [exc.to_detail()],
        },
    )


async def _read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except (ValueError, RecursionError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be valid JSON",
        ) from exc
    if not isinstance(payload, dict):
        raise _bad_request(InvalidInputError("Request body must be a JSON object"))
    return payload


def _guard_payload(payload: dict[str, Any], request: Request, principal: str, *, action: str) -> None:
    """Hard gate for operator keys; hits are logged as security events."""

    try:
        prevent_nosql_injection(payload, max_depth=settings.sanitizer_max_depth)
    except InjectionAttemptError as exc:
        security_logger.warning(
            "injection_attempt action=%s key=%r field=%s principal=%r source_ip=%s",
            action,
            exc.key,
            exc.field or "body",
            principal,
            _client_ip(request),
        )
        raise _bad_request(exc) from exc
    except SanitizationError as exc:
        security_logger.warning(
            "malformed_payload action=%s error=%s principal=%r source_ip=%s",
            action,
            exc.error_type,
            principal,
            _client_ip(request),
        )
        raise _bad_request(exc) from exc


def _clean_cv_payload(payload: dict[str, Any], request: Request, principal: str, *, action: str) -> ValidatedCV:
    _guard_payload(payload, request, principal, action=action)
    try:
        cleaned = sanitize_object(payload, max_depth=settings.sanitizer_max_depth)
    except SanitizationError as exc:
        raise _bad_request(exc) from exc

    try:
        return validate_cv_payload(cleaned)
    except CVValidationError as exc:
        rejection_metrics.increment("cv_validation")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Invalid CV",
                "errors": exc.errors,
            },
        ) from exc


async def _enforce_rate_limit(rule: RateLimitRule, subject: str) -> None:
    try:
        result = await rate_limiter.hit(rule, subject)
    except RateLimitBackendError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiting unavailable",
        ) from exc
    if result.allowed:
        return
    rate_limit_logger.info(
        "rate_limited rule=%s retry_after=%s",
        rule.name,
        result.retry_after_seconds,
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded",
        headers={"Retry-After": str(result.retry_after_seconds)},
    )


async def _enforce_cv_write_rate_limits(request: Request, principal: str) -> None:
    window = settings.cv_write_rate_limit_window_seconds
    await _enforce_rate_limit(
        RateLimitRule("cv_write:user", settings.cv_write_rate_limit_per_user, window),
        principal,
    )
    await _enforce_rate_limit(
        RateLimitRule("cv_write:ip", settings.cv_write_rate_limit_per_ip, window),
        _client_ip(request),
    )


async def _enforce_profile_rate_limits(principal: str) -> None:
    await _enforce_rate_limit(
        RateLimitRule(
            "profile_update:user",
            settings.profile_update_rate_limit_per_user,
            settings.profile_update_rate_limit_window_seconds,
        ),
        principal,
    )


def _record_activity(
    session: AsyncSession,
    request: Request,
    principal: str,
    activity_type: str,
    details: dict[str, Any] | None = None,
) -> None:
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {activity_type}")
    session.add(
        ActivityEvent(
            principal_id=principal,
            activity_type=activity_type,
            details=details or {},
            ip_address=_client_ip(request),
        )
    )
    activity_logger.info(
        "activity type=%s principal=%r cv_id=%s",
        activity_type,
        principal,
        (details or {}).get("cv_id", "-"),
    )


async def _get_owned_cv(session: AsyncSession, cv_id: UUID, principal: str) -> CVDocument:
    cv = await session.scalar(
        select(CVDocument).where(CVDocument.id == cv_id, CVDocument.owner_id == principal)
    )
    if cv is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="CV not found")
    return cv


def _serialize_cv_summary(cv: CVDocument) -> dict[str, Any]:
    return {
        "id": str(cv.id),
        "title": cv.title,
        "template": cv.template,
        "status": cv.status,
        "cv_language": cv.cv_language,
        "view_count": cv.view_count,
        "created_at": cv.created_at.isoformat(),
        "updated_at": cv.updated_at.isoformat(),
    }


def _apply_validated_cv(cv: CVDocument, validated: ValidatedCV) -> None:
    cv.title = validated.cv.title
    cv.template = validated.cv.template
    cv.status = validated.cv.status
    cv.cv_language = validated.cv.cv_language
    cv.content = validated.document


@app.get("/api/v1", tags=["meta"])
async def api_root() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "ok",
    }


@app.get("/api/v1/cvs", tags=["cvs"])
async def list_cvs(
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> dict[str, Any]:
    cvs = list(
        (
            await session.scalars(
                select(CVDocument)
                .where(CVDocument.owner_id == principal)
                .order_by(CVDocument.updated_at.desc())
            )
        ).all()
    )
    return {
        "cvs": [_serialize_cv_summary(cv) for cv in cvs],
        "total": len(cvs),
    }


@app.post("/api/v1/cvs", status_code=status.HTTP_201_CREATED, tags=["cvs"])
async def create_cv(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> dict[str, Any]:
    await _enforce_cv_write_rate_limits(request, principal)
    payload = await _read_json_object(request)
    validated = _clean_cv_payload(payload, request, principal, action="cv_create")

    cv = CVDocument(id=uuid4(), owner_id=principal, view_count=0)
    _apply_validated_cv(cv, validated)
    session.add(cv)
    _record_activity(session, request, principal, "cv_create", {"cv_id": str(cv.id), "title": cv.title})
    await session.commit()
    await session.refresh(cv)

    return {
        "message": "CV created successfully",
        "cv": _serialize_cv_summary(cv),
    }


@app.get("/api/v1/cvs/{cv_id}", tags=["cvs"])
async def get_cv(
    cv_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> dict[str, Any]:
    cv = await _get_owned_cv(session, cv_id, principal)
    await session.execute(
        update(CVDocument)
        .where(CVDocument.id == cv.id)
        .values(view_count=CVDocument.view_count + 1)
        .execution_options(synchronize_session=False)
    )
    _record_activity(session, request, principal, "cv_view", {"cv_id": str(cv.id)})
    await session.commit()
    await session.refresh(cv)

    return {
        "cv": {
            **_serialize_cv_summary(cv),
            "content": cv.content,
        }
    }


@app.put("/api/v1/cvs/{cv_id}", tags=["cvs"])
async def update_cv(
    cv_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> dict[str, Any]:
    await _enforce_cv_write_rate_limits(request, principal)
    cv = await _get_owned_cv(session, cv_id, principal)
    payload = await _read_json_object(request)
    validated = _clean_cv_payload(payload, request, principal, action="cv_edit")

    _apply_validated_cv(cv, validated)
    _record_activity(session, request, principal, "cv_edit", {"cv_id": str(cv.id), "title": cv.title})
    await session.commit()
    await session.refresh(cv)

    return {
        "message": "CV updated successfully",
        "cv": {
            **_serialize_cv_summary(cv),
            "content": cv.content,
        },
    }


@app.delete("/api/v1/cvs/{cv_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["cvs"])
async def delete_cv(
    cv_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> Response:
    await _enforce_cv_write_rate_limits(request, principal)
    cv = await _get_owned_cv(session, cv_id, principal)
    await session.delete(cv)
    _record_activity(session, request, principal, "cv_delete", {"cv_id": str(cv_id)})
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _serialize_profile(profile: UserProfile) -> dict[str, Any]:
    return {
        "full_name": profile.full_name,
        "email": profile.email,
        "phone": profile.phone,
        "created_at": profile.created_at.isoformat(),
        "updated_at": profile.updated_at.isoformat(),
    }


@app.get("/api/v1/profile", tags=["profile"])
async def get_profile(
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> dict[str, Any]:
    profile = await session.get(UserProfile, principal)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return _serialize_profile(profile)


@app.put("/api/v1/profile", tags=["profile"])
async def update_profile(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    principal: str = Depends(get_principal),
) -> dict[str, Any]:
    await _enforce_profile_rate_limits(principal)
    payload = await _read_json_object(request)
    _guard_payload(payload, request, principal, action="profile_update")
    try:
        profile_update = validate_profile_update(payload)
    except SanitizationError as exc:
        raise _bad_request(exc) from exc

    email_owner = await session.scalar(
        select(UserProfile.principal_id).where(
            UserProfile.email == profile_update.email,
            UserProfile.principal_id != principal,
        )
    )
    if email_owner is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already in use")

    profile = await session.get(UserProfile, principal)
    if profile is None:
        profile = UserProfile(principal_id=principal)
        session.add(profile)
    profile.full_name = profile_update.full_name
    profile.email = profile_update.email
    profile.phone = profile_update.phone
    _record_activity(session, request, principal, "profile_update")
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already in use") from exc
    await session.refresh(profile)

    return {
        "message": "Profile updated successfully",
        "profile": _serialize_profile(profile),
    }


@app.get("/api/v1/metrics", tags=["observability"])
async def metrics(
    admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    if settings.admin_api_token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Endpoint not configured")
    if not hmac.compare_digest(admin_token or "", settings.admin_api_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return {
        "request_metrics": request_metrics.snapshot(),
        "rejections": rejection_metrics.snapshot(),
    }


@app.get("/api/v1/health/db", tags=["health"])
async def database_health_check(
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    try:
        await run_health_query(session)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is unavailable",
        ) from exc

    return {
        "status": "healthy",
        "database": "ok",
        "checked_at": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/api/v1/health", tags=["health"])
async def basic_health(
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, int | str]:
    try:
        await run_health_query(session)
        cvs_count = int((await session.scalar(select(func.count(CVDocument.id)))) or 0)
    except Exception:
        return {
            "status": "unhealthy",
            "version": settings.app_version,
            "cvs_count": 0,
            "uptime_seconds": int(monotonic() - started_at_monotonic),
        }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "cvs_count": cvs_count,
        "uptime_seconds": int(monotonic() - started_at_monotonic),
    }
