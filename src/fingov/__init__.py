"""Fingov: data-governance engine for personal finance data.

Manages user data exports, retention policy enforcement, deletion jobs,
consent tracking and account erasure.
"""

__version__ = "0.1.0"
