import asyncio
import time
from dataclasses import dataclass, field
from typing import Sequence

import structlog

from coachcore.artifacts import Artifact, ArtifactSpec
from coachcore.errors import (
    ProviderBadResponse,
    ProviderError,
    ProviderTransportError,
    ServiceUnavailable,
)
from coachcore.metrics import MetricsUpdater
from coachcore.models import PromptPayload, ProviderResult
from coachcore.provider.base import ChatProvider

logger = structlog.get_logger()

DEFAULT_PROVIDER = "default"


@dataclass(frozen=True, slots=True)
class ProviderAttempt:
    provider: "str"
    model: "str"
    success: "bool"
    # set whenever the provider returned a billed completion
    result: "ProviderResult | None" = None
    error: "str" = ""


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    artifact: "Artifact"
    # name of the provider that produced the artifact, "default" when the
    # kind's default was served
    provider: "str"
    model: "str"
    result: "ProviderResult | None"
    attempts: "tuple[ProviderAttempt, ...]" = field(default=())

    @property
    def tokens_in(self) -> "int":
        return self.result.tokens_in if self.result else 0

    @property
    def tokens_out(self) -> "int":
        return self.result.tokens_out if self.result else 0


class ProviderDispatcher:
    """
    ProviderDispatcher sends a built prompt to the configured providers in
    priority order. Any failure of an attempt (transport error, timeout,
    bad status, unparseable envelope or content that does not fit the
    artifact kind) moves on to the next provider. When every provider has
    failed, the kind's default artifact is served if it has one, otherwise
    ServiceUnavailable is raised.
    """

    def __init__(
        self,
        providers: "Sequence[ChatProvider]",
        timeout: "float" = 30.0,
        max_tokens_cap: "int | None" = None,
        metrics: "MetricsUpdater | None" = None,
    ) -> "None":
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self._providers = list(providers)
        self._timeout = timeout
        self._max_tokens_cap = max_tokens_cap
        self._metrics = metrics

    @property
    def providers(self) -> "list[ChatProvider]":
        return list(self._providers)

    async def close(self) -> "None":
        """
        closes all provider sessions.
        """
        for p in self._providers:
            await p.close()

    async def execute(
        self,
        payload: "PromptPayload",
        spec: "ArtifactSpec",
    ) -> "DispatchOutcome":
        kind = spec.kind.value
        max_tokens = spec.max_tokens
        if self._max_tokens_cap is not None:
            max_tokens = min(max_tokens, self._max_tokens_cap)

        attempts: "list[ProviderAttempt]" = []
        for provider in self._providers:
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    provider.complete(payload, spec.temperature, max_tokens),
                    timeout=self._timeout,
                )
                try:
                    artifact = spec.parse(result.content)
                except ValueError as exc:
                    raise ProviderBadResponse(
                        provider.name, f"content rejected: {exc}", result=result
                    ) from exc
            except asyncio.TimeoutError:
                error: "ProviderError" = ProviderTransportError(
                    provider.name, f"timed out after {self._timeout}s"
                )
            except ProviderError as exc:
                error = exc
            except Exception as exc:
                logger.exception("provider_unexpected_error", provider=provider.name)
                error = ProviderTransportError(provider.name, repr(exc))
            else:
                self._observe(provider, kind, True, started)
                attempts.append(
                    ProviderAttempt(provider.name, provider.model, True, result)
                )
                logger.debug(
                    "provider_attempt_succeeded",
                    provider=provider.name,
                    kind=kind,
                    tokens_in=result.tokens_in,
                    tokens_out=result.tokens_out,
                )
                return DispatchOutcome(
                    artifact=artifact,
                    provider=provider.name,
                    model=provider.model,
                    result=result,
                    attempts=tuple(attempts),
                )

            self._observe(provider, kind, False, started)
            attempts.append(
                ProviderAttempt(
                    provider.name,
                    provider.model,
                    False,
                    result=error.result,
                    error=str(error),
                )
            )
            logger.warning(
                "provider_attempt_failed",
                provider=provider.name,
                kind=kind,
                error=str(error),
            )

        failures = [a.error for a in attempts]
        if spec.has_default:
            logger.warning("serving_default_artifact", kind=kind, failures=failures)
            if self._metrics is not None:
                self._metrics.inc_default_artifact(kind)
            return DispatchOutcome(
                artifact=spec.default(),
                provider=DEFAULT_PROVIDER,
                model="",
                result=None,
                attempts=tuple(attempts),
            )

        logger.error("all_providers_failed", kind=kind, failures=failures)
        raise ServiceUnavailable(kind, failures)

    def _observe(
        self,
        provider: "ChatProvider",
        kind: "str",
        success: "bool",
        started: "float",
    ) -> "None":
        if self._metrics is None:
            return
        self._metrics.observe_provider_call(
            provider.name,
            provider.model,
            kind,
            success,
            time.monotonic() - started,
        )
