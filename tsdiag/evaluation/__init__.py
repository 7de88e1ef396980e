"""Residual diagnostics, model comparison, and figures."""
