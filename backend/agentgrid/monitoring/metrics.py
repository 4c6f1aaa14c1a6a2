"""
Prometheus metrics for event flow and agent dispatch
"""

from typing import Any, Dict, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = structlog.get_logger(__name__)


class CoordinationMetrics:
    """Counters and timings for the bus and dispatcher"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.events_published = Counter(
            "agentgrid_events_published_total",
            "Events published to the bus",
            ["event_type"],
            registry=self.registry,
        )

        self.events_dropped = Counter(
            "agentgrid_events_dropped_total",
            "Events evicted from a full queue",
            ["event_type"],
            registry=self.registry,
        )

        self.spawns = Counter(
            "agentgrid_agent_spawns_total",
            "Agent spawns by outcome",
            ["agent_type", "outcome"],
            registry=self.registry,
        )

        self.spawn_duration = Histogram(
            "agentgrid_agent_spawn_duration_seconds",
            "Agent execution time including lock wait",
            ["agent_type"],
            buckets=[0.1, 0.5, 1, 5, 15, 30, 60, 300, 900],
            registry=self.registry,
        )

        self.active_agents = Gauge(
            "agentgrid_active_agents",
            "Agents currently in flight",
            registry=self.registry,
        )

    def record_event_published(self, event_type: str):
        self.events_published.labels(event_type=event_type).inc()

    def record_event_dropped(self, event_type: str):
        self.events_dropped.labels(event_type=event_type).inc()

    def record_spawn_started(self):
        self.active_agents.inc()

    def record_spawn_finished(self, agent_type: str, success: bool, duration_seconds: float):
        self.active_agents.dec()
        self.spawns.labels(agent_type=agent_type, outcome="success" if success else "failure").inc()
        self.spawn_duration.labels(agent_type=agent_type).observe(duration_seconds)

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name.endswith(("_total", "_agents")):
                    label = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                    summary[f"{sample.name}{{{label}}}" if label else sample.name] = sample.value
        return summary

    def get_prometheus_metrics(self) -> str:
        return generate_latest(self.registry).decode("utf-8")
