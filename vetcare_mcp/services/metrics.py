"""Tool-invocation metrics: an in-process aggregate plus a batched
CloudWatch publisher.

Design
------
* Every completed ``tools/call`` is recorded once, success or failure,
  with its latency.
* The aggregate (totals, the last ``LATENCY_WINDOW`` latencies and
  per-tool counters) backs the ``/metrics`` endpoint.
* The same events are buffered as CloudWatch data points.  When
  ``CLOUDWATCH_ENABLED`` is on, ``server.py`` drains the buffer every
  ``FLUSH_INTERVAL_SECONDS`` and runs :meth:`MetricsCollector.publish` off
  the event loop; otherwise a flush only clears the buffer.
* Each ``put_metric_data`` call sends up to 1 000 metric data points
  (the CloudWatch API limit per request).

Usage
-----
>>> collector = MetricsCollector()
>>> collector.record_invocation("search_clients", success=True, latency_ms=123.4)
>>> collector.record_invocation("get_pet", success=False, latency_ms=80.0, error_type="UpstreamTimeoutError")
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from vetcare_mcp import config

logger = logging.getLogger(__name__)

NAMESPACE = "VetCareMCP"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call
LATENCY_WINDOW = 100
TOP_TOOLS = 10


@dataclass
class ToolStats:
    calls: int = 0
    success: int = 0
    failed: int = 0
    total_time_ms: float = 0.0


class MetricsCollector:
    """Aggregates per-tool counts and latencies and buffers them for CloudWatch."""

    def __init__(
        self,
        *,
        enabled: bool = config.METRICS_ENABLED,
        cloudwatch_enabled: bool = config.CLOUDWATCH_ENABLED,
    ) -> None:
        self.enabled = enabled
        self._cloudwatch_enabled = cloudwatch_enabled
        self._started = time.monotonic()
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._latencies: deque[float] = deque(maxlen=LATENCY_WINDOW)
        self._tools: dict[str, ToolStats] = {}
        self._buffer: list[dict[str, Any]] = []
        self._cw_client = None  # lazy-init

    @property
    def cloudwatch_enabled(self) -> bool:
        return self._cloudwatch_enabled

    # ── Lazy CloudWatch client ────────────────────────────────────────

    def _get_cw_client(self):
        """Create the boto3 CloudWatch client on first use."""
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ─────────────────────────────────────────────────────

    def register_tools(self, names: list[str]) -> None:
        """Pre-create counters so every registered tool shows up, even at zero."""
        for name in names:
            self._tools.setdefault(name, ToolStats())

    def record_invocation(
        self,
        tool: str,
        *,
        success: bool,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        """Record one completed tool invocation."""
        if not self.enabled:
            return

        self._total += 1
        if success:
            self._successful += 1
        else:
            self._failed += 1
        self._latencies.append(latency_ms)

        stats = self._tools.setdefault(tool, ToolStats())
        stats.calls += 1
        if success:
            stats.success += 1
        else:
            stats.failed += 1
        stats.total_time_ms += latency_ms

        self._buffer_datapoints(tool, success, latency_ms, error_type)
        logger.debug(
            "Metric: %s %s latency=%.1fms%s",
            tool,
            "success" if success else "failure",
            latency_ms,
            f" error={error_type}" if error_type else "",
        )

    def _buffer_datapoints(
        self,
        tool: str,
        success: bool,
        latency_ms: float,
        error_type: str | None,
    ) -> None:
        now = datetime.now(UTC)
        dims_tool = [{"Name": "Tool", "Value": tool}]

        self._buffer.append(
            {
                "MetricName": "Tool/InvocationCount",
                "Dimensions": dims_tool
                + [{"Name": "Status", "Value": "success" if success else "failure"}],
                "Timestamp": now,
                "Value": 1,
                "Unit": "Count",
            }
        )
        self._buffer.append(
            {
                "MetricName": "Tool/Latency",
                "Dimensions": dims_tool,
                "Timestamp": now,
                "Value": latency_ms,
                "Unit": "Milliseconds",
            }
        )
        if not success:
            self._buffer.append(
                {
                    "MetricName": "Tool/ErrorCount",
                    "Dimensions": dims_tool
                    + [{"Name": "ErrorType", "Value": error_type or "ToolFailure"}],
                    "Timestamp": now,
                    "Value": 1,
                    "Unit": "Count",
                }
            )

    # ── Reading ───────────────────────────────────────────────────────

    def snapshot(
        self,
        *,
        cache_stats: dict[str, Any] | None = None,
        rate_limiter_stats: dict[str, Any] | None = None,
        upstream_stats: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Return the aggregate as a JSON-serialisable dict."""
        success_rate = round(self._successful / self._total * 100, 2) if self._total else 0.0
        avg_latency = (
            round(sum(self._latencies) / len(self._latencies), 2) if self._latencies else 0.0
        )
        called = [(name, s) for name, s in self._tools.items() if s.calls]
        called.sort(key=lambda item: item[1].calls, reverse=True)

        result: dict[str, Any] = {
            "uptime_seconds": int(time.monotonic() - self._started),
            "requests": {
                "total": self._total,
                "successful": self._successful,
                "failed": self._failed,
            },
            "success_rate": success_rate,
            "avg_response_time_ms": avg_latency,
            "top_tools": [
                {
                    "name": name,
                    "calls": s.calls,
                    "success_rate": round(s.success / s.calls * 100, 2),
                    "avg_time_ms": round(s.total_time_ms / s.calls, 2),
                }
                for name, s in called[:TOP_TOOLS]
            ],
        }
        if cache_stats is not None:
            result["cache"] = cache_stats
        if rate_limiter_stats is not None:
            result["rate_limiter"] = rate_limiter_stats
        if upstream_stats is not None:
            result["upstream"] = upstream_stats
        return result

    def tool_stats(self, name: str) -> ToolStats | None:
        return self._tools.get(name)

    # ── Publishing ────────────────────────────────────────────────────

    def drain(self) -> list[dict[str, Any]]:
        """Take every buffered data point, leaving the buffer empty."""
        batch, self._buffer = self._buffer, []
        return batch

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        return self.publish(self.drain())

    def publish(self, batch: list[dict[str, Any]]) -> int:
        """Push *batch* to CloudWatch.  Returns count sent.

        Blocking (boto3); the background flusher drains on the event loop
        and runs this via ``asyncio.to_thread``.
        """
        if not batch:
            return 0

        if not self._cloudwatch_enabled:
            logger.debug("Metrics flush skipped (CloudWatch disabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            # CloudWatch accepts max 1000 metric data points per call
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent
