"""Storage layer for Championship - keyed persistence for escrow entities.

This package provides:
- ChallengeStore: abstract keyed read/insert/update per entity type
- InMemoryChallengeStore: dict-backed tables with snapshot rollback
- SqlChallengeStore / SqlCustody: SQLAlchemy tables sharing one transaction
"""

from .base import ChallengeStore
from .memory import InMemoryChallengeStore
from .sql import SqlChallengeStore, SqlCustody, create_store_engine

__all__ = [
    "ChallengeStore",
    "InMemoryChallengeStore",
    "SqlChallengeStore",
    "SqlCustody",
    "create_store_engine",
]
