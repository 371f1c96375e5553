from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class InstrumentationMetrics:
    """
    records backend round trips as Prometheus metrics. The observe
    method matches the client's instrumentation callback signature:

        metrics = InstrumentationMetrics()
        await client.authorize(request, instrumentation_callback=metrics.observe)
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._request_duration: "Histogram" = Histogram(
            "threescale_client_request_duration_seconds",
            "Duration of requests to the 3scale backend",
            ["host", "status_code"],
            registry=registry,
        )
        self._responses: "Counter" = Counter(
            "threescale_client_responses_total",
            "Total responses received from the 3scale backend",
            ["host", "status_code"],
            registry=registry,
        )

    def observe(self, host: "str", status_code: "int", duration_seconds: "float") -> "None":
        labels = {"host": host, "status_code": str(status_code)}
        self._request_duration.labels(**labels).observe(duration_seconds)
        self._responses.labels(**labels).inc()
