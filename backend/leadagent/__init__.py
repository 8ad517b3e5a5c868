"""Lead generation agent: task engine and mission tuning."""

__version__ = "1.0.0"
