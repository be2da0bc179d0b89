"""Release workflow orchestration for mobile app releases."""

__version__ = "0.1.0"
