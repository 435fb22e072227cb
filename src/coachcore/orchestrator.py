"""
Request orchestration.

The Orchestrator is built once at process start and shared by request
handlers. It owns the quota limiter, the response cache, the provider
dispatcher and the usage accountant, and runs every artifact request
through them in a fixed order: validate, gate, look up, dispatch,
account, store.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

import structlog
from prometheus_client import REGISTRY, CollectorRegistry

from coachcore.accounting import UsageAccountant, UsageSink
from coachcore.artifacts import Artifact, ArtifactKind, ArtifactSpec, get_spec
from coachcore.cache import ResponseCache, make_fingerprint
from coachcore.config import Config
from coachcore.dispatcher import DispatchOutcome, ProviderDispatcher
from coachcore.errors import MalformedInput
from coachcore.logging import setup_logging
from coachcore.maintenance import Sweeper
from coachcore.metrics import MetricsUpdater
from coachcore.models import PromptPayload, Tier
from coachcore.provider.base import ChatProvider
from coachcore.provider.chat_completions import ChatCompletionsProvider
from coachcore.quota import QuotaLimiter
from coachcore.weights import build_personalization_context, normalize

logger = structlog.get_logger()


@dataclass(frozen=True)
class ArtifactRequest:
    user_id: "str"
    tier: "Tier | str"
    kind: "ArtifactKind | str"
    payload: "PromptPayload"
    # salient parameters, every value here feeds the fingerprint
    params: "Mapping[str, Any]" = field(default_factory=dict)
    # overrides the kind's cache lifetime, in seconds
    ttl: "float | None" = None
    # ordered list of labels or a weight map, see weights.normalize
    motivations: "Any" = None
    nutrition_goals: "Mapping[str, Any] | None" = None


@dataclass(frozen=True)
class ArtifactResponse:
    artifact: "Artifact"
    provider: "str"
    model: "str"
    tokens_in: "int"
    tokens_out: "int"
    fingerprint: "str"
    cached: "bool" = False

    def to_json(self) -> "str":
        return json.dumps(
            {
                "artifact": self.artifact.to_dict(),
                "provider": self.provider,
                "model": self.model,
                "tokens_in": self.tokens_in,
                "tokens_out": self.tokens_out,
                "fingerprint": self.fingerprint,
            }
        )

    @classmethod
    def from_cached(cls, raw: "str") -> "ArtifactResponse":
        """
        rebuilds a response from its cached form. No tokens are spent on a
        cache hit, so the counts are reported as zero.
        """
        data = json.loads(raw)
        return cls(
            artifact=Artifact.from_dict(data["artifact"]),
            provider=data["provider"],
            model=data["model"],
            tokens_in=0,
            tokens_out=0,
            fingerprint=data["fingerprint"],
            cached=True,
        )


class Orchestrator:
    def __init__(
        self,
        limiter: "QuotaLimiter",
        cache: "ResponseCache",
        dispatcher: "ProviderDispatcher",
        accountant: "UsageAccountant",
        metrics: "MetricsUpdater | None" = None,
        single_flight: "bool" = False,
        sweep_interval: "float" = 300.0,
    ) -> "None":
        self.limiter = limiter
        self.cache = cache
        self.dispatcher = dispatcher
        self.accountant = accountant
        self._metrics = metrics
        self._single_flight = single_flight
        self._sweep_interval = sweep_interval
        self._inflight: "dict[str, asyncio.Future[ArtifactResponse]]" = {}

    @classmethod
    def from_config(
        cls,
        config: "Config",
        registry: "CollectorRegistry" = REGISTRY,
        sink: "UsageSink | None" = None,
    ) -> "Orchestrator":
        """
        builds the orchestrator and its collaborators from config.
        Providers are ordered xAI first, OpenAI second; each one is only
        added when its API key is set.

        Raises:
            ValueError: no provider has an API key
        """
        providers: "list[ChatProvider]" = []
        if config.xai_enabled:
            providers.append(
                ChatCompletionsProvider(
                    name="xai",
                    api_key=config.xai_api_key,
                    model=config.xai_model,
                    base_url=config.xai_base_url,
                    timeout=config.provider_timeout,
                )
            )
            logger.info("provider_enabled", provider="xai", model=config.xai_model)
        if config.openai_enabled:
            providers.append(
                ChatCompletionsProvider(
                    name="openai",
                    api_key=config.openai_api_key,
                    model=config.openai_model,
                    base_url=config.openai_base_url,
                    timeout=config.provider_timeout,
                )
            )
            logger.info(
                "provider_enabled", provider="openai", model=config.openai_model
            )
        if not providers:
            raise ValueError(
                "No providers configured. Set XAI_API_KEY or OPENAI_API_KEY."
            )

        metrics = MetricsUpdater(registry=registry)
        return cls(
            limiter=QuotaLimiter(
                daily_limits=config.daily_limits,
                max_per_minute=config.max_requests_per_minute,
                window_seconds=config.rate_window_seconds,
            ),
            cache=ResponseCache(capacity=config.cache_capacity),
            dispatcher=ProviderDispatcher(
                providers,
                timeout=config.provider_timeout,
                max_tokens_cap=config.max_tokens,
                metrics=metrics,
            ),
            accountant=UsageAccountant(sink=sink, metrics=metrics),
            metrics=metrics,
            single_flight=config.single_flight,
            sweep_interval=config.sweep_interval,
        )

    @classmethod
    def from_env(
        cls,
        registry: "CollectorRegistry" = REGISTRY,
        sink: "UsageSink | None" = None,
    ) -> "Orchestrator":
        """
        process-start entry point: reads Config from the environment,
        configures logging at its level and builds the orchestrator.
        """
        config = Config.from_env()
        setup_logging(config.log_level)
        return cls.from_config(config, registry=registry, sink=sink)

    def sweeper(self) -> "Sweeper":
        return Sweeper(self.cache, self.limiter, self._sweep_interval)

    async def aclose(self) -> "None":
        await self.dispatcher.close()

    async def generate(self, request: "ArtifactRequest") -> "ArtifactResponse":
        """
        produces the artifact for a request.

        Raises:
            MalformedInput: the request cannot be served as given
            QuotaExceeded: the user's daily quota is used up
            RateLimited: the user's per-minute ceiling was hit
            ServiceUnavailable: every provider failed and the kind has no
                default artifact
        """
        spec, tier = self._validate(request)
        kind = spec.kind.value
        log = logger.bind(user_id=request.user_id, kind=kind)
        payload, fingerprint = self._personalize(request, spec)

        decision = self.limiter.check_and_consume(request.user_id, tier)
        if not decision.allowed:
            log.info(
                "quota_rejected",
                reason=decision.limit.value if decision.limit else None,
                retry_after=decision.retry_after,
            )
            if self._metrics is not None and decision.limit is not None:
                self._metrics.inc_quota_rejection(decision.limit.value)
            decision.raise_for_rejection()

        if spec.cacheable:
            cached = self.cache.get(fingerprint)
            if self._metrics is not None:
                self._metrics.inc_cache_lookup(kind, cached is not None)
            if cached is not None:
                log.debug("cache_hit", fingerprint=fingerprint)
                return ArtifactResponse.from_cached(cached)

        if not self._single_flight:
            return await self._produce(request, spec, tier, payload, fingerprint)
        return await self._produce_once(request, spec, tier, payload, fingerprint)

    async def _produce_once(
        self,
        request: "ArtifactRequest",
        spec: "ArtifactSpec",
        tier: "Tier",
        payload: "PromptPayload",
        fingerprint: "str",
    ) -> "ArtifactResponse":
        """
        lets the first caller for a fingerprint run the provider call while
        concurrent callers with the same fingerprint await its result.
        """
        pending = self._inflight.get(fingerprint)
        while pending is not None:
            logger.debug("joined_inflight_request", fingerprint=fingerprint)
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
            # the leader was cancelled, the first follower to wake up takes over
            pending = self._inflight.get(fingerprint)

        future: "asyncio.Future[ArtifactResponse]" = (
            asyncio.get_running_loop().create_future()
        )
        self._inflight[fingerprint] = future
        try:
            response = await self._produce(request, spec, tier, payload, fingerprint)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # mark retrieved, followers (if any) re-raise it themselves
            future.exception()
            raise
        else:
            future.set_result(response)
            return response
        finally:
            del self._inflight[fingerprint]

    async def _produce(
        self,
        request: "ArtifactRequest",
        spec: "ArtifactSpec",
        tier: "Tier",
        payload: "PromptPayload",
        fingerprint: "str",
    ) -> "ArtifactResponse":
        outcome = await self.dispatcher.execute(payload, spec)
        self._account(request, spec, tier, fingerprint, outcome)

        response = ArtifactResponse(
            artifact=outcome.artifact,
            provider=outcome.provider,
            model=outcome.model,
            tokens_in=outcome.tokens_in,
            tokens_out=outcome.tokens_out,
            fingerprint=fingerprint,
        )

        # defaults stand in for a failed generation and are never cached
        if spec.cacheable and not outcome.artifact.is_default:
            ttl = request.ttl if request.ttl is not None else spec.ttl
            try:
                self.cache.set(fingerprint, response.to_json(), ttl)
            except (TypeError, ValueError):
                logger.warning(
                    "cache_store_failed", fingerprint=fingerprint, exc_info=True
                )
        return response

    def _account(
        self,
        request: "ArtifactRequest",
        spec: "ArtifactSpec",
        tier: "Tier",
        fingerprint: "str",
        outcome: "DispatchOutcome",
    ) -> "None":
        for attempt in outcome.attempts:
            # only attempts that came back with a billed completion
            if attempt.result is None:
                continue
            self.accountant.record(
                user_id=request.user_id,
                endpoint=spec.kind.value,
                provider=attempt.provider,
                model=attempt.model,
                tokens_in=attempt.result.tokens_in,
                tokens_out=attempt.result.tokens_out,
                request_metadata={
                    "fingerprint": fingerprint,
                    "kind": spec.kind.value,
                    "tier": tier.value,
                    "success": attempt.success,
                },
                response_metadata={"response_id": attempt.result.response_id},
            )

    def _personalize(
        self,
        request: "ArtifactRequest",
        spec: "ArtifactSpec",
    ) -> "tuple[PromptPayload, str]":
        """
        applies the motivation bias to the payload and computes the request
        fingerprint from its salient parameters.

        Raises:
            MalformedInput: the parameters have no canonical form
        """
        salient = dict(request.params)
        payload = request.payload
        if spec.personalized:
            weights = normalize(request.motivations)
            salient["motivation_weights"] = weights.as_dict()
            payload = payload.with_context(
                build_personalization_context(weights, request.nutrition_goals)
            )
        try:
            fingerprint = make_fingerprint(request.user_id, spec.kind.value, salient)
        except (TypeError, ValueError) as exc:
            raise MalformedInput(f"parameters cannot be fingerprinted: {exc}") from exc
        return payload, fingerprint

    def _validate(self, request: "ArtifactRequest") -> "tuple[ArtifactSpec, Tier]":
        if not isinstance(request.user_id, str) or not request.user_id.strip():
            raise MalformedInput("user_id is required")
        try:
            tier = Tier(request.tier)
        except ValueError:
            raise MalformedInput(f"unknown subscription tier: {request.tier!r}") from None
        try:
            spec = get_spec(request.kind)
        except ValueError:
            raise MalformedInput(f"unknown artifact kind: {request.kind!r}") from None
        if request.payload.is_empty:
            raise MalformedInput("prompt payload is empty")

        missing = [
            name
            for name in spec.required_params
            if request.params.get(name) in (None, "", [], {})
        ]
        if missing:
            raise MalformedInput(
                f"{spec.kind.value} requires parameters: {', '.join(missing)}"
            )
        if request.ttl is not None and request.ttl <= 0:
            raise MalformedInput("ttl must be > 0")
        return spec, tier
