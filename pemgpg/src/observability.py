"""Observability helpers for pemgpg.

In-process metrics kept as plain counters and histograms and rendered in
Prometheus text exposition format by the ``/metrics`` route (see
server.py).

 - No prometheus_client dependency.
 - Labels are limited to low cardinality values (method, route template,
   status, algorithm, failure stage); PEM labels and user ids never
   become label values.
 - Updates are serialized by a single lock.

NOTE: under a multi-process server each worker keeps its own counters;
sum across targets at scrape time.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from time import perf_counter


@dataclass(slots=True)
class CounterMetric:
    name: str
    help: str
    # key: tuple(label_values) -> value
    values: dict[tuple[str, ...], float]
    label_names: tuple[str, ...]

    def inc(self, *label_values: str, amount: float = 1.0) -> None:
        if len(label_values) != len(self.label_names):
            raise ValueError("Label cardinality mismatch")
        key = tuple(label_values)
        self.values[key] = self.values.get(key, 0.0) + amount

    def dec(self, *label_values: str) -> None:
        key = tuple(label_values)
        if self.values.get(key):
            self.values[key] -= 1

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.help}", f"# TYPE {self.name} counter"]
        for labels, value in sorted(self.values.items()):
            lines.append(f"{self.name}{_label_block(self.label_names, labels)} {value}")
        return "\n".join(lines)


@dataclass(slots=True)
class HistogramMetric:
    name: str
    help: str
    label_names: tuple[str, ...]
    # ascending upper bounds; +Inf is implicit
    buckets: tuple[float, ...]
    # (labels, upper bound) -> cumulative count
    counts: dict[tuple[tuple[str, ...], float], int]
    sums: dict[tuple[str, ...], float]

    def observe(self, value: float, *label_values: str) -> None:
        if len(label_values) != len(self.label_names):
            raise ValueError("Label cardinality mismatch")
        labels = tuple(label_values)
        for b in self.buckets:
            if value <= b:
                self.counts[(labels, b)] = self.counts.get((labels, b), 0) + 1
        inf_key = (labels, float("inf"))
        self.counts[inf_key] = self.counts.get(inf_key, 0) + 1
        self.sums[labels] = self.sums.get(labels, 0.0) + value

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.help}", f"# TYPE {self.name} histogram"]
        label_sets = sorted({lbl for (lbl, _le) in self.counts.keys()})
        for labels in label_sets:
            pairs = list(zip(self.label_names, labels, strict=True))
            for b in self.buckets:
                c = self.counts.get((labels, b), 0)
                lines.append(
                    f"{self.name}_bucket{_render_pairs(pairs + [('le', repr(b))])} {c}"
                )
            total = self.counts.get((labels, float("inf")), 0)
            lines.append(
                f"{self.name}_bucket{_render_pairs(pairs + [('le', '+Inf')])} {total}"
            )
            lines.append(
                f"{self.name}_sum{_render_pairs(pairs)} {self.sums.get(labels, 0.0)}"
            )
            lines.append(f"{self.name}_count{_render_pairs(pairs)} {total}")
        return "\n".join(lines)


def _quote(v: str) -> str:
    return '"' + v.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _render_pairs(pairs: list[tuple[str, str]]) -> str:
    if not pairs:
        return ""
    return "{" + ",".join(f"{k}={_quote(v)}" for k, v in pairs) + "}"


def _label_block(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    return _render_pairs(list(zip(names, values, strict=True)))


_lock = Lock()

# ------------------ Metric registry ------------------
REQUESTS = CounterMetric(
    name="pemgpg_http_requests_total",
    help="Total HTTP requests",
    label_names=("method", "route", "status"),
    values={},
)
REQUEST_LATENCY = HistogramMetric(
    name="pemgpg_http_request_duration_seconds",
    help="Latency in seconds of HTTP requests",
    label_names=("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    counts={},
    sums={},
)
INFLIGHT = CounterMetric(
    name="pemgpg_http_requests_in_progress",
    help="In-flight HTTP requests",
    label_names=("route",),
    values={},
)
REQUEST_BODY_SIZE = HistogramMetric(
    name="pemgpg_http_request_body_bytes",
    help="Request body sizes in bytes (Content-Length if present)",
    label_names=("method", "route"),
    buckets=(100, 500, 1_000, 5_000, 10_000, 50_000, 100_000, 500_000, 1_000_000),
    counts={},
    sums={},
)
CHAINS_DECOMPOSED = CounterMetric(
    name="pemgpg_pem_chains_decomposed_total",
    help="PEM chains split into their elements",
    label_names=(),
    values={},
)
CHAIN_LENGTH = HistogramMetric(
    name="pemgpg_pem_chain_elements",
    help="Number of PEM elements per decomposed chain",
    label_names=(),
    buckets=(1, 2, 3, 4, 5, 8, 16, 32),
    counts={},
    sums={},
)
KEYS_CONVERTED = CounterMetric(
    name="pemgpg_keys_converted_total",
    help="Private keys converted to armored OpenPGP keys",
    label_names=("algorithm",),
    values={},
)
FAILURES = CounterMetric(
    name="pemgpg_failures_total",
    help="Rejected decompositions and conversions by failing stage",
    label_names=("operation", "stage"),
    values={},
)
CONVERSION_LATENCY = HistogramMetric(
    name="pemgpg_conversion_duration_seconds",
    help="Duration of a full key conversion",
    label_names=("algorithm",),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
    counts={},
    sums={},
)

_ALL = [
    REQUESTS,
    REQUEST_LATENCY,
    INFLIGHT,
    REQUEST_BODY_SIZE,
    CHAINS_DECOMPOSED,
    CHAIN_LENGTH,
    KEYS_CONVERTED,
    FAILURES,
    CONVERSION_LATENCY,
]


def record_request(method: str, route: str, status: int, duration: float) -> None:
    with _lock:
        REQUESTS.inc(method, route, str(status))
        REQUEST_LATENCY.observe(duration, method, route)
        INFLIGHT.dec(route)


def inc_inflight(route: str) -> None:
    with _lock:
        INFLIGHT.inc(route)


def observe_request_size(method: str, route: str, size: int | None) -> None:
    if size is None or size < 0:
        return
    with _lock:
        REQUEST_BODY_SIZE.observe(float(size), method, route)


def inc_chain_decomposed(elements: int) -> None:
    with _lock:
        CHAINS_DECOMPOSED.inc()
        CHAIN_LENGTH.observe(float(elements))


def inc_key_converted(algorithm: str, duration: float) -> None:
    with _lock:
        KEYS_CONVERTED.inc(algorithm)
        CONVERSION_LATENCY.observe(duration, algorithm)


def inc_failure(operation: str, stage: str) -> None:
    with _lock:
        FAILURES.inc(operation, stage)


def render_prometheus() -> str:
    parts = [m.render() for m in _ALL]
    return "\n".join(parts) + "\n"


def reset_metrics() -> None:
    """Clear every metric (used by tests)."""
    with _lock:
        for metric in _ALL:
            if isinstance(metric, CounterMetric):
                metric.values.clear()
            else:
                metric.counts.clear()
                metric.sums.clear()


class Timer:
    def __enter__(self):
        self._start = perf_counter()
        self.elapsed = 0.0
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = perf_counter() - self._start
        return False
