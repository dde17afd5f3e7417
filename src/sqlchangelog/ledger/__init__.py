"""
Per-target persistent state: execution ledger, changelog lock and the
statement executor they share.
"""

from sqlchangelog.ledger.executor import StatementExecutor
from sqlchangelog.ledger.ledger import ChangeSetState, ExecutionLedger
from sqlchangelog.ledger.lock import ChangelogLock, LockStatus

__all__ = [
    "StatementExecutor",
    "ExecutionLedger",
    "ChangeSetState",
    "ChangelogLock",
    "LockStatus",
]
