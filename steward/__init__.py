"""Steward: GitHub estate reconciliation for internal business automation.

Steward mirrors each tenant's GitHub repositories into a relational store and
an Airtable view, and enforces a minimal repository policy (default branch
protection, team write access) against the live GitHub API.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
