"""
labflow: publish-transaction and attempt-telemetry lifecycle engine.

Tracks lab content from validation through activation, and every launch of
that content from attempt identity to its single terminal summary.
"""

__version__ = "0.1.0"
