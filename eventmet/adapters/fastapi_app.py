"""FastAPI surface: admin analytics, retention cron, retrieval diagnostics and chat."""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..chat import ChatHandler, CompletionClient
from ..corpus import load_corpus
from ..models import DAY_MS, Corpus, DeviceInfo, LocationInfo, PerformanceInfo, now_ms
from ..ports import EventStore, RateLimiter
from ..ratelimit import NoopRateLimiter, SlidingWindowRateLimiter, get_client_ip, verify_bearer
from ..search import Retriever
from ..service import AnalyticsService
from ..settings import Settings, build_store
from ..tracking import EventTracker, generate_session_id

logger = logging.getLogger("eventmet.api")

ANALYTICS_VIEWS = ("realtime", "daily", "events", "sessions", "users", "billing", "devices", "efficiency", "all")


@dataclass
class AppComponents:
    settings: Settings
    service: AnalyticsService
    tracker: EventTracker
    retriever: Retriever
    admin_limiter: RateLimiter
    chat_limiter: RateLimiter
    chat_handler: Optional[ChatHandler] = None


class ChatMessage(BaseModel):
    role: str
    content: str


class DevicePayload(BaseModel):
    type: str = "unknown"
    os: str = ""
    browser: str = ""
    browser_version: str = ""
    screen_size: str = ""
    viewport_size: str = ""
    touch_enabled: bool = False
    pixel_ratio: Optional[float] = None

    def to_info(self) -> DeviceInfo:
        return DeviceInfo(**self.model_dump())


class LocationPayload(BaseModel):
    timezone: str = "unknown"
    timezone_offset: int = 0
    language: str = "unknown"
    languages: List[str] = Field(default_factory=list)

    def to_info(self) -> LocationInfo:
        values = self.model_dump()
        values["languages"] = tuple(values["languages"])
        return LocationInfo(**values)


class PerformancePayload(BaseModel):
    page_load_time: Optional[float] = None
    connection_type: Optional[str] = None
    effective_type: Optional[str] = None
    downlink: Optional[float] = None
    rtt: Optional[float] = None
    save_data: bool = False

    def to_info(self) -> PerformanceInfo:
        return PerformanceInfo(**self.model_dump())


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    device: Optional[DevicePayload] = None
    location: Optional[LocationPayload] = None
    performance: Optional[PerformancePayload] = None


# -------- Dependency wiring --------

def get_components(request: Request) -> AppComponents:
    return request.app.state.eventmet


def _enforce_rate_limit(limiter: RateLimiter, request: Request) -> None:
    decision = limiter.check(get_client_ip(request.headers))
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail={
                "error": "Rate limit exceeded",
                "limit": decision.limit,
                "remaining": 0,
                "retry_after": decision.retry_after_seconds,
            },
            headers={
                "Retry-After": str(decision.retry_after_seconds),
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(decision.reset_ms),
            },
        )


def require_admin(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    components: AppComponents = Depends(get_components),
) -> AppComponents:
    _enforce_rate_limit(components.admin_limiter, request)
    if not verify_bearer(authorization, components.settings.admin_password):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return components


# -------- Routers --------

router = APIRouter()


@router.get("/health")
def health(components: AppComponents = Depends(get_components)) -> dict:
    return {
        "status": "ok",
        "service": components.settings.service_name,
        "pages": len(components.retriever.corpus.pages),
    }


@router.get("/api/admin/analytics")
def admin_analytics(
    view: str = Query("realtime", alias="type"),
    days: int = Query(7, ge=1, le=365),
    start_date: Optional[int] = None,
    end_date: Optional[int] = None,
    monthly_budget: Optional[float] = None,
    components: AppComponents = Depends(require_admin),
):
    if view not in ANALYTICS_VIEWS:
        raise HTTPException(status_code=400, detail="Invalid type parameter")

    service = components.service
    budget = monthly_budget if monthly_budget is not None else components.settings.monthly_budget

    if view == "realtime":
        return service.get_realtime_stats()
    if view == "daily":
        return service.get_daily_metrics(days)
    if view == "events":
        return service.get_events(start_date, end_date)
    if view == "sessions":
        return service.get_session_metrics()
    if view == "users":
        return service.get_user_metrics()
    if view == "billing":
        return service.get_billing_metrics(budget)
    if view == "devices":
        return service.get_device_analytics(days)
    if view == "efficiency":
        return service.get_cost_efficiency(days)
    return {
        "realtime": service.get_realtime_stats(),
        "daily": service.get_daily_metrics(days),
        "sessions": service.get_session_metrics(),
        "users": service.get_user_metrics(),
        "billing": service.get_billing_metrics(budget),
    }


@router.get("/api/admin/queries")
def admin_queries(
    limit: int = Query(10, ge=1, le=100),
    components: AppComponents = Depends(require_admin),
) -> dict:
    return {"queries": components.service.get_recent_queries(limit)}


@router.get("/api/admin/search")
def admin_search(
    q: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=50),
    components: AppComponents = Depends(require_admin),
) -> dict:
    results = components.retriever.search(q, limit)
    return {
        "query": q,
        "results": [
            {
                "title": result.page.title,
                "source": result.page.source,
                "category": result.page.category,
                "score": result.score,
            }
            for result in results
        ],
        "context": components.retriever.format(results),
    }


@router.get("/api/cron/cleanup")
def cron_cleanup(
    authorization: Optional[str] = Header(default=None),
    components: AppComponents = Depends(get_components),
) -> dict:
    secret = components.settings.effective_cron_secret
    if not secret:
        logger.error("Cron cleanup called but no CRON_SECRET is configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not verify_bearer(authorization, secret):
        logger.warning("Unauthorized cron cleanup attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")

    started = now_ms()
    result = components.service.cleanup_old_analytics()
    return {
        "success": True,
        "message": "Analytics cleanup completed",
        "duration_ms": now_ms() - started,
        **result,
    }


@router.post("/api/chat")
def chat(
    payload: ChatRequest,
    request: Request,
    components: AppComponents = Depends(get_components),
) -> dict:
    if components.chat_handler is None:
        raise HTTPException(status_code=503, detail="Chat is not configured")
    _enforce_rate_limit(components.chat_limiter, request)

    device = payload.device.to_info() if payload.device else None
    location = payload.location.to_info() if payload.location else None
    performance = payload.performance.to_info() if payload.performance else None

    session_id = payload.session_id or generate_session_id()
    try:
        completion = components.chat_handler.handle(
            session_id,
            [message.model_dump() for message in payload.messages],
            user_id=payload.user_id,
            device=device,
            location=location,
            performance=performance,
        )
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail="Failed to process chat request") from exc

    return {
        "session_id": session_id,
        "reply": completion.text,
        "model": completion.model,
        "usage": {"input": completion.input_tokens, "output": completion.output_tokens},
    }


# -------- App factory --------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EventStore] = None,
    corpus: Optional[Corpus] = None,
    completion_client: Optional[CompletionClient] = None,
    clock: Callable[[], int] = now_ms,
) -> FastAPI:
    settings = settings or Settings()
    store = store if store is not None else build_store(settings)
    corpus = corpus if corpus is not None else load_corpus(settings.corpus_path)

    executor = None
    if settings.tracking_background:
        # One worker keeps tracking jobs in submission order, so a response
        # never runs before the request that creates its session record.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="eventmet-tracking")
    if settings.rate_limit_enabled:
        admin_limiter = SlidingWindowRateLimiter(settings.admin_rate_limit, settings.rate_limit_window_seconds)
        chat_limiter = SlidingWindowRateLimiter(settings.chat_rate_limit, settings.rate_limit_window_seconds)
    else:
        admin_limiter = NoopRateLimiter(settings.admin_rate_limit)
        chat_limiter = NoopRateLimiter(settings.chat_rate_limit)

    retriever = Retriever(corpus)
    tracker = EventTracker(
        store,
        executor=executor,
        session_ttl_ms=settings.session_ttl_days * DAY_MS,
        clock=clock,
    )
    components = AppComponents(
        settings=settings,
        service=AnalyticsService(
            store,
            default_model=settings.default_model,
            retention_days=settings.retention_days,
            clock=clock,
        ),
        tracker=tracker,
        retriever=retriever,
        admin_limiter=admin_limiter,
        chat_limiter=chat_limiter,
    )
    if completion_client is not None:
        components.chat_handler = ChatHandler(retriever, tracker, completion_client, settings.search_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("%s starting with %d corpus pages", settings.service_name, len(corpus.pages))
        try:
            yield
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

    app = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    app.state.eventmet = components
    app.include_router(router)
    return app
