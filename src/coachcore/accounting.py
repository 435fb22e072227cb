"""
Usage and cost accounting.

Records one UsageRecord per billed provider call. Recording never fails
the request that triggered it: sink and metrics errors are logged and the
record is dropped.
"""

import threading
import time
from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from types import MappingProxyType
from typing import Any, Callable, Mapping, Protocol

import structlog

from coachcore.metrics import MetricsUpdater
from coachcore.models import UsageRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""

    prompt_cost_per_1k: "Decimal"
    completion_cost_per_1k: "Decimal"


@dataclass(frozen=True)
class PricingTable:
    prices: "Mapping[str, ModelPricing]"
    default: "ModelPricing"

    def get_pricing(self, model: "str") -> "ModelPricing":
        """
        returns the model's rates, or the default rates for models missing
        from the table.
        """
        return self.prices.get(model, self.default)

    def cost(self, model: "str", prompt_tokens: "int", completion_tokens: "int") -> "float":
        """
        computes the USD cost of a call, rounded up to 6 decimal places.
        """
        pricing = self.get_pricing(model)
        prompt_cost = (Decimal(prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
        completion_cost = (
            Decimal(completion_tokens) / Decimal("1000")
        ) * pricing.completion_cost_per_1k
        total = (prompt_cost + completion_cost).quantize(
            Decimal("0.000001"), rounding=ROUND_UP
        )
        return float(total)


PRICING_TABLE = PricingTable(
    prices={
        "grok-beta": ModelPricing(Decimal("0.002"), Decimal("0.002")),
        "grok-3": ModelPricing(Decimal("0.003"), Decimal("0.015")),
        "gpt-4": ModelPricing(Decimal("0.03"), Decimal("0.06")),
        "gpt-4o": ModelPricing(Decimal("0.0025"), Decimal("0.01")),
        "gpt-4o-mini": ModelPricing(Decimal("0.00015"), Decimal("0.0006")),
    },
    default=ModelPricing(Decimal("0.002"), Decimal("0.002")),
)


class UsageSink(Protocol):
    def append(self, record: "UsageRecord") -> "None": ...


class UsageLog:
    """
    UsageLog: Is a thread-safe, append-only in-memory usage sink.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._records: "list[UsageRecord]" = []

    def append(self, record: "UsageRecord") -> "None":
        with self._lock:
            self._records.append(record)

    def records(self, user_id: "str | None" = None) -> "tuple[UsageRecord, ...]":
        with self._lock:
            return tuple(
                r for r in self._records if user_id is None or r.user_id == user_id
            )

    def total_cost(self, user_id: "str | None" = None) -> "float":
        return sum(r.cost_usd for r in self.records(user_id))

    def total_tokens(self, user_id: "str | None" = None) -> "int":
        return sum(r.total_tokens for r in self.records(user_id))

    def __len__(self) -> "int":
        with self._lock:
            return len(self._records)


class UsageAccountant:
    def __init__(
        self,
        sink: "UsageSink | None" = None,
        pricing: "PricingTable" = PRICING_TABLE,
        metrics: "MetricsUpdater | None" = None,
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self.sink: "UsageSink" = sink if sink is not None else UsageLog()
        self._pricing = pricing
        self._metrics = metrics
        self._clock = clock

    def record(
        self,
        user_id: "str",
        endpoint: "str",
        provider: "str",
        model: "str",
        tokens_in: "int",
        tokens_out: "int",
        request_metadata: "Mapping[str, Any] | None" = None,
        response_metadata: "Mapping[str, Any] | None" = None,
    ) -> "UsageRecord | None":
        """
        builds, prices and stores a usage record. Returns None when the
        record could not be stored.
        """
        try:
            record = UsageRecord(
                user_id=user_id,
                endpoint=endpoint,
                provider=provider,
                model=model,
                prompt_tokens=tokens_in,
                completion_tokens=tokens_out,
                total_tokens=tokens_in + tokens_out,
                cost_usd=self._pricing.cost(model, tokens_in, tokens_out),
                timestamp=self._clock(),
                request_metadata=MappingProxyType(dict(request_metadata or {})),
                response_metadata=MappingProxyType(dict(response_metadata or {})),
            )
            self.sink.append(record)
        except Exception:
            logger.exception(
                "usage_record_failed",
                user_id=user_id,
                endpoint=endpoint,
                provider=provider,
            )
            return None

        if self._metrics is not None:
            try:
                self._metrics.update_usage(record)
            except Exception:
                logger.exception("usage_metrics_failed", provider=provider)

        logger.debug(
            "usage_recorded",
            user_id=user_id,
            endpoint=endpoint,
            model=model,
            total_tokens=record.total_tokens,
            cost_usd=record.cost_usd,
        )
        return record
