"""Declarative reconciliation of Cloudflare and GitHub resources."""

__version__ = "0.1.0"
