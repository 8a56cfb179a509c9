"""EkoInk backend: API keys, usage metering and note style learning."""

__version__ = "1.0.0"
