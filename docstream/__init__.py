"""DocStream: role-gated, multi-stage approval workflows."""

__version__ = "1.0.0"
