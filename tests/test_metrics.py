from prometheus_client import CollectorRegistry

from coachcore.metrics import MetricsUpdater
from coachcore.models import UsageRecord


class TestMetricsUpdater:
    def test_metric_families_registered(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        MetricsUpdater(registry=registry)
        # prometheus_client strips _total suffix from Counter family names
        metric_names = [m.name for m in registry.collect()]
        assert "coachcore_provider_requests" in metric_names
        assert "coachcore_provider_duration_seconds" in metric_names
        assert "coachcore_tokens" in metric_names
        assert "coachcore_cost_usd" in metric_names
        assert "coachcore_cache_lookups" in metric_names
        assert "coachcore_quota_rejections" in metric_names
        assert "coachcore_default_artifacts" in metric_names

    def test_observe_provider_call(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        updater.observe_provider_call("xai", "grok-beta", "chat", True, 0.5)
        updater.observe_provider_call("xai", "grok-beta", "chat", False, 1.5)
        updater.observe_provider_call("xai", "grok-beta", "chat", False, 2.0)

        labels = {"provider": "xai", "model": "grok-beta", "kind": "chat"}
        assert registry.get_sample_value(
            "coachcore_provider_requests_total", {**labels, "outcome": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "coachcore_provider_requests_total", {**labels, "outcome": "failure"}
        ) == 2.0
        assert registry.get_sample_value(
            "coachcore_provider_duration_seconds_count", {"provider": "xai"}
        ) == 3.0

    def test_update_usage_increments_counters(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        record = UsageRecord(
            user_id="u1",
            endpoint="chat",
            provider="xai",
            model="grok-beta",
            prompt_tokens=100,
            completion_tokens=50,
            total_tokens=150,
            cost_usd=0.0003,
            timestamp=1000.0,
        )
        updater.update_usage(record)
        updater.update_usage(record)

        labels = {"provider": "xai", "model": "grok-beta"}
        assert registry.get_sample_value(
            "coachcore_tokens_total", {**labels, "direction": "input"}
        ) == 200.0
        assert registry.get_sample_value(
            "coachcore_tokens_total", {**labels, "direction": "output"}
        ) == 100.0
        cost_value = registry.get_sample_value("coachcore_cost_usd_total", labels)
        assert cost_value is not None
        assert abs(cost_value - 0.0006) < 1e-9

    def test_cache_quota_and_default_counters(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        updater.inc_cache_lookup("meal-plan", hit=True)
        updater.inc_cache_lookup("meal-plan", hit=False)
        updater.inc_cache_lookup("meal-plan", hit=False)
        updater.inc_quota_rejection("daily")
        updater.inc_default_artifact("nutrition-tips")

        assert registry.get_sample_value(
            "coachcore_cache_lookups_total", {"kind": "meal-plan", "result": "miss"}
        ) == 2.0
        assert registry.get_sample_value(
            "coachcore_quota_rejections_total", {"reason": "daily"}
        ) == 1.0
        assert registry.get_sample_value(
            "coachcore_default_artifacts_total", {"kind": "nutrition-tips"}
        ) == 1.0
