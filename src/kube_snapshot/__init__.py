"""Diagnostic snapshot collector for Kubernetes clusters."""

__version__ = "0.1.0"
