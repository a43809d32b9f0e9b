"""Switchboard - Gmail triage over a stateless cookie session."""

__version__ = "0.1.0"
