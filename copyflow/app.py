# copyflow/app.py
import hmac
import time
from contextlib import asynccontextmanager
from typing import Optional, Sequence

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from copyflow import monitoring
from copyflow.auth import SCOPE_BULK, SCOPE_GENERATE, Credential, has_permission, parse_bearer
from copyflow.config import Settings
from copyflow.errors import (
    AuthenticationError, AuthorizationError, CopyFlowError, NotFoundError, RateLimitError,
    ValidationError,
)
from copyflow.rate_limiter import tier_for_plan
from copyflow.schemas import (
    BulkSubmitRequest, GenerationItem, KeyCreateRequest, Language, TenantCreateRequest,
    UrlAnalysisRequest, WritingStyle,
)
from copyflow.services import Services, build_services
from copyflow.usage import PERIODS, DEFAULT_PERIOD, period_window

log = monitoring.get_logger("api")

ADMIN_KEY_HEADER = "x-admin-key"

PAID_PLANS = ("pro", "business", "enterprise")
BULK_PLANS = ("business", "enterprise")


def _services(request: Request) -> Services:
    return request.app.state.services


# ---------------------------------------------------------------------------
# Auth + permission + rate-limit dependencies
# ---------------------------------------------------------------------------
def authenticate(request: Request) -> Credential:
    credential = _services(request).credentials.resolve(
        parse_bearer(request.headers.get("authorization")))
    if credential is None:
        raise AuthenticationError("Invalid or missing API key")
    # picked up by the usage middleware
    request.state.credential = credential
    return credential


def require_scope(scope: str, plans: Optional[Sequence[str]] = None, plan_message: str = ""):
    """Dependency: resolve the bearer token, check scope and plan, then consume one rate-limit slot."""

    def dependency(request: Request, credential: Credential = Depends(authenticate)) -> Credential:
        if not has_permission(credential, scope):
            raise AuthorizationError("Insufficient permissions for this endpoint")
        if plans and credential.plan not in plans:
            raise AuthorizationError(plan_message or "Your plan does not include this endpoint")

        tier = tier_for_plan(credential.plan)
        decision = _services(request).limiter.check(credential.id, tier)
        request.state.rate_limit = decision
        if not decision.allowed:
            monitoring.inc_rate_limit_rejection(tier)
            log.info("Rate limit exceeded", extra={"api_key_id": credential.id, "tier": tier})
            raise RateLimitError("Rate limit exceeded",
                                 headers={"Retry-After": str(decision.retry_after())})
        return credential

    return dependency


def require_admin(request: Request) -> None:
    supplied = request.headers.get(ADMIN_KEY_HEADER) or ""
    allowed = _services(request).settings.admin_api_keys
    if not supplied or not any(hmac.compare_digest(supplied, k) for k in allowed):
        raise AuthenticationError("Invalid or missing admin key")


def _validation_details(errors):
    return [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg")), "type": e.get("type")}
        for e in errors
    ]


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    if services is None:
        services = build_services(settings or Settings.from_env())
    services.db.init_db()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.settings.resume_jobs_on_startup:
            resumed = await run_in_threadpool(services.pipeline.resume_interrupted)
            if resumed:
                log.info("Resumed interrupted bulk jobs", extra={"count": len(resumed)})
        yield
        dispatcher = services.pipeline.dispatcher
        if dispatcher is not None:
            dispatcher.shutdown(wait=False)

    app = FastAPI(title="CopyFlow API", lifespan=lifespan)
    app.state.services = services

    # -----------------------------------------------------------------------
    # Error handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(CopyFlowError)
    async def copyflow_error_handler(request: Request, exc: CopyFlowError):
        if exc.status_code >= 500:
            log.error("Request failed", extra={"path": request.url.path, "error_code": exc.error_code,
                                               "error": exc.message})
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationError("Invalid input data", details=_validation_details(exc.errors()))
        return JSONResponse(status_code=err.status_code, content=err.to_body())

    # -----------------------------------------------------------------------
    # Metrics + usage ledger + rate-limit headers
    # -----------------------------------------------------------------------
    @app.middleware("http")
    async def usage_and_metrics_middleware(request: Request, call_next):
        start = time.time()
        endpoint = request.url.path
        method = request.method
        try:
            response = await call_next(request)
        except Exception:
            log.exception("Unhandled exception in request", extra={"path": endpoint})
            response = JSONResponse(status_code=500, content={
                "error": "Internal server error", "error_code": "E_INTERNAL"})

        monitoring.observe_request(start, endpoint, method, str(response.status_code))

        decision = getattr(request.state, "rate_limit", None)
        if decision is not None:
            for name, value in decision.headers().items():
                response.headers[name] = value

        credential = getattr(request.state, "credential", None)
        if credential is not None:
            metered = decision is not None and decision.allowed
            await run_in_threadpool(services.ledger.record, credential.id, credential.tenant_id,
                                    endpoint, method, response.status_code, metered=metered)
        return response

    # -----------------------------------------------------------------------
    # Generation endpoints
    # -----------------------------------------------------------------------
    @app.post("/api/v1/generate")
    def generate(item: GenerationItem, credential: Credential = Depends(require_scope(SCOPE_GENERATE))):
        """
        POST /api/v1/generate
        Body: { "productName", "category", "writingStyle", "language" }
        """
        result = services.generator.generate(item)
        content = result.model_dump()
        services.ledger.record_generation(
            credential.tenant_id, credential.id, "product", content,
            product_name=item.productName, category=item.category.value,
            writing_style=item.writingStyle.value, language=item.language.value,
        )
        return content

    @app.post("/api/v1/generate/viral")
    def generate_viral(item: GenerationItem,
                       credential: Credential = Depends(require_scope(SCOPE_GENERATE))):
        result = services.generator.generate_viral(item)
        content = result.model_dump()
        services.ledger.record_generation(
            credential.tenant_id, credential.id, "viral", content,
            product_name=item.productName, category=item.category.value,
            writing_style=item.writingStyle.value, language=item.language.value,
        )
        return content

    @app.post("/api/v1/analyze-url")
    def analyze_url(req: UrlAnalysisRequest, credential: Credential = Depends(require_scope(
            SCOPE_GENERATE, PAID_PLANS, "URL analysis requires a Pro plan or higher"))):
        result = services.generator.analyze_competitor(req.url, req.writingStyle, req.language)
        content = result.model_dump()
        services.ledger.record_generation(
            credential.tenant_id, credential.id, "url_analysis", content,
            product_name=result.content.productTitle[:200],
            writing_style=req.writingStyle.value, language=req.language.value,
        )
        return content

    @app.post("/api/v1/analyze-image")
    def analyze_image(
        image: UploadFile = File(...),
        writingStyle: WritingStyle = Form(WritingStyle.PROFESSIONAL),
        language: Language = Form(Language.EN),
        credential: Credential = Depends(require_scope(
            SCOPE_GENERATE, PAID_PLANS, "Photo analysis requires a Pro plan or higher")),
    ):
        """
        POST /api/v1/analyze-image (multipart/form-data)
        Fields: image (jpeg/png/webp, max 10MB), writingStyle, language
        """
        data = image.file.read()
        result = services.generator.analyze_image(data, image.content_type, writingStyle, language)
        content = result.model_dump()
        services.ledger.record_generation(
            credential.tenant_id, credential.id, "image_analysis", content,
            product_name=result.content.productTitle[:200],
            writing_style=writingStyle.value, language=language.value,
        )
        return content

    # -----------------------------------------------------------------------
    # Bulk jobs
    # -----------------------------------------------------------------------
    @app.post("/api/v1/bulk")
    def submit_bulk(req: BulkSubmitRequest, credential: Credential = Depends(require_scope(
            SCOPE_BULK, BULK_PLANS, "Business or Enterprise plan required for bulk processing"))):
        """
        POST /api/v1/bulk
        Body: { "name": "...", "items": [GenerationItem, ...] }  (1..100 items)
        """
        job = services.pipeline.submit(credential.tenant_id, req.name, req.items,
                                       credential_id=credential.id)
        return {
            "jobId": job.jobId,
            "status": job.status.value,
            "totalItems": job.totalItems,
            "message": "Bulk processing job started",
        }

    @app.get("/api/v1/bulk")
    def bulk_status(jobId: Optional[str] = Query(None), credential: Credential = Depends(authenticate)):
        if not jobId:
            raise ValidationError("Job ID is required")
        snapshot = services.pipeline.get_status(jobId, credential.tenant_id)
        if snapshot is None:
            raise NotFoundError("Job not found")
        return snapshot.to_response()

    # -----------------------------------------------------------------------
    # Usage analytics
    # -----------------------------------------------------------------------
    @app.get("/api/v1/usage")
    def usage(period: str = Query(DEFAULT_PERIOD), credential: Credential = Depends(authenticate)):
        if period not in PERIODS:
            raise ValidationError(f"Invalid period; use one of {', '.join(PERIODS)}")
        start, end = period_window(period)
        summary = services.ledger.aggregate(credential.id, start, end)
        return {
            "period": period,
            "summary": {
                "totalRequests": summary.totalRequests,
                "successfulRequests": summary.successfulRequests,
                "failedRequests": summary.failedRequests,
                "generationsCount": services.ledger.count_generations(credential.id, start, end),
                "successRate": summary.success_rate,
            },
            "dailyUsage": [d.model_dump() for d in summary.dailyBreakdown],
            "endpointUsage": [e.model_dump() for e in summary.endpointBreakdown],
        }

    # -----------------------------------------------------------------------
    # Administration (X-Admin-Key)
    # -----------------------------------------------------------------------
    @app.post("/api/v1/admin/tenants", status_code=201, dependencies=[Depends(require_admin)])
    def create_tenant(req: TenantCreateRequest):
        tenant = services.credentials.create_tenant(req.name, req.plan, req.ownerEmail)
        return {
            "id": tenant.id,
            "name": tenant.name,
            "plan": tenant.plan,
            "ownerEmail": tenant.owner_email,
            "createdAt": tenant.created_at.isoformat(),
        }

    @app.post("/api/v1/admin/keys", status_code=201, dependencies=[Depends(require_admin)])
    def create_key(req: KeyCreateRequest):
        key, token = services.credentials.create_key(req.tenantId, req.name, req.permissions)
        return {
            "id": key.id,
            "name": key.name,
            "key": token,
            "permissions": list(key.permissions),
            "createdAt": key.created_at.isoformat(),
            "message": "Store this key securely; it will not be shown again",
        }

    @app.get("/api/v1/admin/keys", dependencies=[Depends(require_admin)])
    def list_keys(tenantId: str = Query(...)):
        return services.credentials.list_keys(tenantId)

    @app.post("/api/v1/admin/keys/{key_id}/deactivate", dependencies=[Depends(require_admin)])
    def deactivate_key(key_id: str, tenantId: str = Query(...)):
        services.credentials.deactivate(key_id, tenantId)
        return {"message": "API key deactivated"}

    @app.delete("/api/v1/admin/keys/{key_id}", dependencies=[Depends(require_admin)])
    def delete_key(key_id: str, tenantId: str = Query(...)):
        services.credentials.delete(key_id, tenantId)
        return {"message": "API key deleted"}

    # -----------------------------------------------------------------------
    # Health + metrics
    # -----------------------------------------------------------------------
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics():
        if not monitoring.PROMETHEUS_ENABLED:
            return PlainTextResponse("Prometheus disabled", status_code=404)
        payload, content_type = monitoring.prometheus_metrics_response()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app()
