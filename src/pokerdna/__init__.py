"""XP permanence kernel and DNA profile cache synchronizer."""

from pokerdna.dna.background import BackgroundSync
from pokerdna.dna.mirror import RedisCacheMirror
from pokerdna.dna.schemas import CachedDNA
from pokerdna.dna.sync import DNASync, SyncStats
from pokerdna.errors import ConflictExhausted, IntegrityFault, PokerDNAError, StoreUnavailable
from pokerdna.integrity import IntegrityChannel
from pokerdna.store.base import ConditionalWrite, Store
from pokerdna.store.memory import InMemoryStore
from pokerdna.time_utils import relative_time
from pokerdna.xp.kernel import KernelStats, XPKernel
from pokerdna.xp.schemas import (
    CreditResult,
    ReasonCode,
    SecurityLogEntry,
    Severity,
    Tier,
    UserProfile,
    XPCreditIntent,
    XPSource,
)

__all__ = [
    "BackgroundSync",
    "CachedDNA",
    "ConditionalWrite",
    "ConflictExhausted",
    "CreditResult",
    "DNASync",
    "InMemoryStore",
    "IntegrityChannel",
    "IntegrityFault",
    "KernelStats",
    "PokerDNAError",
    "ReasonCode",
    "RedisCacheMirror",
    "SecurityLogEntry",
    "Severity",
    "Store",
    "StoreUnavailable",
    "SyncStats",
    "Tier",
    "UserProfile",
    "XPCreditIntent",
    "XPKernel",
    "XPSource",
    "relative_time",
]
