"""Audit trail for grading: hashes and structured log records."""

from .hashing import compute_grade_hash, compute_rules_hash, compute_standings_hash
from .logging import ScoringAuditLogger, get_audit_logger

__all__ = [
    "compute_grade_hash",
    "compute_rules_hash",
    "compute_standings_hash",
    "ScoringAuditLogger",
    "get_audit_logger",
]
