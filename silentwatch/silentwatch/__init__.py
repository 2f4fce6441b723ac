"""SilentWatch: silent-failure detection and telemetry delivery for asyncio applications."""

__version__ = "0.1.0"
