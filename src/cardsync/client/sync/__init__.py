"""Check and copy operations.

Architecture:
    AutoChecker → SyncOrchestrator → CardClient → Transfer

Components:
- **SyncOrchestrator**: Check phase, copy phase, stop and preview loading
- **AutoChecker**: Recurring auto check on an APScheduler interval job
- **Status / STATUS_BY_KIND**: Status texts and the failure mapping
"""

from cardsync.client.sync.auto import AutoChecker
from cardsync.client.sync.orchestrator import AUTO_THRESHOLD, SyncOrchestrator
from cardsync.client.sync.types import STATUS_BY_KIND, OperationState, Status

__all__ = [
    "AUTO_THRESHOLD",
    "AutoChecker",
    "OperationState",
    "STATUS_BY_KIND",
    "Status",
    "SyncOrchestrator",
]
