"""magdash: real-time telemetry hub for a magnetic object detector."""

__version__ = "0.3.0"
