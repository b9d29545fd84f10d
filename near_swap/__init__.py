"""Price-triggered swap plans: persistence, pricing and scheduled execution."""

__version__ = "0.1.0"
