"""watchdogd — periodic infrastructure watchdog."""

__version__ = "0.1.0"
