from matchmaker.middleware.metrics import PrometheusMiddleware, setup_metrics

__all__ = ["PrometheusMiddleware", "setup_metrics"]
