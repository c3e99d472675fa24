"""Inbound webhook trigger: bearer-token auth, fixed-window rate limit, token management."""

from __future__ import annotations

import hmac
import logging
import re
import secrets
import time
from typing import Any, Mapping

from taskline.core.config import WebhookConfig
from taskline.core.exceptions import PipelineNotFoundError, RateLimitExceededError, WebhookAuthError
from taskline.core.protocols import ICacheBackend, IPipelineCatalog
from taskline.core.types import Clock, utcnow
from taskline.models.pipeline import PipelineDefinition
from taskline.orchestration.router import RouteResult, StepRouter

logger = logging.getLogger(__name__)

AUTH_ERROR_MESSAGE = "Invalid or missing authorization."
TOKEN_PATTERN = re.compile(r"^[a-f0-9]{64}$")

SAFE_HEADERS = (
    "content-type",
    "user-agent",
    "x-github-event",
    "x-github-delivery",
    "x-hub-signature-256",
    "x-webhook-id",
    "x-request-id",
)


def generate_token() -> str:
    return secrets.token_hex(32)


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class FixedWindowRateLimiter:
    """Counts hits per key in a window that starts with the first hit."""

    def __init__(self, cache: ICacheBackend, key_prefix: str = "webhook_rate") -> None:
        self._cache = cache
        self._prefix = key_prefix

    def hit(self, key: str, limit: int, window: int) -> int:
        """Record one hit; raises RateLimitExceededError past ``limit``. ``limit <= 0`` disables."""
        if limit <= 0:
            return 0
        count = self._cache.incr(f"{self._prefix}:{key}", window)
        if count > limit:
            raise RateLimitExceededError(limit, window)
        return count


class WebhookTrigger:
    """Starts pipeline runs from authenticated HTTP calls."""

    def __init__(
        self,
        *,
        pipelines: IPipelineCatalog,
        router: StepRouter,
        limiter: FixedWindowRateLimiter,
        defaults: WebhookConfig | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._pipelines = pipelines
        self._router = router
        self._limiter = limiter
        self._defaults = defaults or WebhookConfig()
        self._clock = clock

    def _limits(self, pipeline: PipelineDefinition) -> tuple[int, int]:
        hook = pipeline.webhook
        limit = self._defaults.rate_limit_max if hook.rate_limit_max is None else hook.rate_limit_max
        window = self._defaults.rate_limit_window if hook.rate_limit_window is None else hook.rate_limit_window
        return limit, window

    def authenticate(self, pipeline_id: str, authorization: str | None) -> PipelineDefinition:
        """Every failure raises the same WebhookAuthError so callers learn nothing."""
        pipeline = self._pipelines.get_pipeline(pipeline_id)
        token = extract_bearer_token(authorization)
        if (
            pipeline is None
            or not pipeline.webhook.enabled
            or not pipeline.webhook.token
            or token is None
            or not TOKEN_PATTERN.match(token)
            or not hmac.compare_digest(token, pipeline.webhook.token)
        ):
            logger.warning("Webhook authentication failed", extra={"pipeline_id": pipeline_id})
            raise WebhookAuthError(AUTH_ERROR_MESSAGE)
        return pipeline

    def trigger(
        self,
        pipeline_id: str,
        *,
        authorization: str | None,
        payload: Any,
        headers: Mapping[str, str],
        remote_addr: str = "",
    ) -> RouteResult:
        pipeline = self.authenticate(pipeline_id, authorization)
        limit, window = self._limits(pipeline)
        self._limiter.hit(pipeline_id, limit, window)

        lowered = {k.lower(): v for k, v in headers.items()}
        forwarded = lowered.get("x-forwarded-for", "")
        remote_ip = forwarded.split(",")[0].strip() if forwarded else remote_addr
        initial_data = {
            "webhook_trigger": {
                "payload": payload,
                "received_at": utcnow(self._clock).isoformat(),
                "remote_ip": remote_ip,
                "headers": {h: lowered[h] for h in SAFE_HEADERS if h in lowered},
            },
        }
        result = self._router.run_flow(pipeline_id, initial_data=initial_data)
        logger.info("Webhook triggered flow", extra={"pipeline_id": pipeline_id, "job_id": result.job_id})
        return result

    # ---- token management ----

    def _require(self, pipeline_id: str) -> PipelineDefinition:
        pipeline = self._pipelines.get_pipeline(pipeline_id)
        if pipeline is None:
            raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")
        return pipeline

    def enable(self, pipeline_id: str) -> str:
        """Enable the trigger, keeping an existing token. Returns the token."""
        pipeline = self._require(pipeline_id)
        pipeline.webhook.enabled = True
        if not pipeline.webhook.token:
            pipeline.webhook.token = generate_token()
        self._pipelines.save_pipeline(pipeline)
        return pipeline.webhook.token

    def disable(self, pipeline_id: str) -> None:
        pipeline = self._require(pipeline_id)
        pipeline.webhook.enabled = False
        pipeline.webhook.token = ""
        self._pipelines.save_pipeline(pipeline)

    def regenerate(self, pipeline_id: str) -> str:
        """Issue a new token; the old one stops working immediately."""
        pipeline = self._require(pipeline_id)
        pipeline.webhook.enabled = True
        pipeline.webhook.token = generate_token()
        self._pipelines.save_pipeline(pipeline)
        return pipeline.webhook.token

    def set_rate_limit(self, pipeline_id: str, limit: int, window: int) -> None:
        if limit < 0:
            raise ValueError("Rate limit must be zero (disabled) or positive")
        if window < 1:
            raise ValueError("Rate limit window must be at least one second")
        pipeline = self._require(pipeline_id)
        pipeline.webhook.rate_limit_max = limit
        pipeline.webhook.rate_limit_window = window
        self._pipelines.save_pipeline(pipeline)

    def status(self, pipeline_id: str) -> dict[str, Any]:
        pipeline = self._require(pipeline_id)
        limit, window = self._limits(pipeline)
        return {
            "pipeline_id": pipeline_id,
            "enabled": pipeline.webhook.enabled,
            "token": pipeline.webhook.token,
            "rate_limit_max": limit,
            "rate_limit_window": window,
        }
