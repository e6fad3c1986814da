"""mtb-agent: polls a command server, runs the queued commands and reports back."""

__version__ = "0.1.2"
