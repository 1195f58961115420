"""VoxLedger - usage metering and billing for voice-AI resellers."""

__version__ = "0.1.0"
