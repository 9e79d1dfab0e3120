"""Event-sourced project projections and token-budgeted context previews."""

__version__ = "0.1.0"
