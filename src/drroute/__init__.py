"""Dr. Route: a controllable background health poller."""

__version__ = "1.0.0"
