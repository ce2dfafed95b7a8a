from fillrecon.journal.metrics import MetricsAccumulator

__all__ = ["MetricsAccumulator"]
