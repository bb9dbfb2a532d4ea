from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "fashionai_http_requests_total",
    "HTTP requests by route and status",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "fashionai_http_request_latency_seconds",
    "HTTP handler latency until the response starts",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["path"],
)

server_errors_total = Counter(
    "fashionai_http_errors_total",
    "Error responses by LLM error kind",
    labelnames=["type"],
)

provider_requests_total = Counter(
    "llm_provider_requests_total",
    "Total LLM provider operations",
    labelnames=["provider", "operation", "status"],
)

provider_request_latency_seconds = Histogram(
    "llm_provider_request_latency_seconds",
    "LLM provider operation latency, retries included",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["provider", "operation"],
)

provider_retries_total = Counter(
    "llm_provider_retries_total",
    "Retries scheduled after a retryable failure",
    labelnames=["operation"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
