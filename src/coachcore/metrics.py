from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from coachcore.models import UsageRecord


class MetricsUpdater:
    """
    applies provider calls, usage records, cache lookups and quota
    rejections to Prometheus metrics.
     - provider_requests_total: provider attempts, labeled by
     provider, model, kind, outcome (success/failure).
     - tokens_total: tokens billed, labeled by provider, model,
     direction (input/output).
     - cost_usd_total: derived cost in USD, labeled by provider, model.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._provider_requests: "Counter" = Counter(
            "coachcore_provider_requests_total",
            "Total provider attempts by outcome",
            ["provider", "model", "kind", "outcome"],
            registry=registry,
        )
        self._provider_duration: "Histogram" = Histogram(
            "coachcore_provider_duration_seconds",
            "Duration of provider attempts",
            ["provider"],
            registry=registry,
        )
        self._tokens: "Counter" = Counter(
            "coachcore_tokens_total",
            "Total tokens billed by providers",
            ["provider", "model", "direction"],
            registry=registry,
        )
        self._cost: "Counter" = Counter(
            "coachcore_cost_usd_total",
            "Total derived cost in USD",
            ["provider", "model"],
            registry=registry,
        )
        self._cache_lookups: "Counter" = Counter(
            "coachcore_cache_lookups_total",
            "Total response cache lookups by result",
            ["kind", "result"],
            registry=registry,
        )
        self._quota_rejections: "Counter" = Counter(
            "coachcore_quota_rejections_total",
            "Total requests rejected by the quota limiter",
            ["reason"],
            registry=registry,
        )
        self._default_artifacts: "Counter" = Counter(
            "coachcore_default_artifacts_total",
            "Total default artifacts served after all providers failed",
            ["kind"],
            registry=registry,
        )

    def observe_provider_call(
        self,
        provider: "str",
        model: "str",
        kind: "str",
        success: "bool",
        duration_seconds: "float",
    ) -> "None":
        outcome = "success" if success else "failure"
        self._provider_requests.labels(
            provider=provider, model=model, kind=kind, outcome=outcome
        ).inc()
        self._provider_duration.labels(provider=provider).observe(duration_seconds)

    def update_usage(self, record: "UsageRecord") -> "None":
        """
        updates the token and cost counters based on the usage
        record's data.
        """
        labels = {"provider": record.provider, "model": record.model}
        self._tokens.labels(**labels, direction="input").inc(record.prompt_tokens)
        self._tokens.labels(**labels, direction="output").inc(
            record.completion_tokens
        )
        self._cost.labels(**labels).inc(record.cost_usd)

    def inc_cache_lookup(self, kind: "str", hit: "bool") -> "None":
        self._cache_lookups.labels(kind=kind, result="hit" if hit else "miss").inc()

    def inc_quota_rejection(self, reason: "str") -> "None":
        self._quota_rejections.labels(reason=reason).inc()

    def inc_default_artifact(self, kind: "str") -> "None":
        self._default_artifacts.labels(kind=kind).inc()
