"""
Storage adapters for regmatrix.

Provides the relational store used by the analysis pipeline.
"""

from regmatrix.storage.store import ComplianceStore, get_compliance_store
from regmatrix.storage.tables import Base

__all__ = [
    "Base",
    "ComplianceStore",
    "get_compliance_store",
]
