"""Human.Farm marketplace service: task lifecycle, escrow tracking, and listings."""

__version__ = "0.1.0"
