"""secmon: traffic anomaly scoring and suspicious-log alerting."""

__version__ = "0.1.0"
