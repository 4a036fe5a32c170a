"""
ledger_modules.events
=====================

Idempotent event ingestion: inbound business events (orders, COGS,
inventory adjustments) become posted journal entries at most once per
event id.
"""

from ledger_modules.events.models import (
    InboundEvent,
    IngestionResult,
    IngestionStatus,
    PostingPlan,
    ProcessedEventInfo,
)
from ledger_modules.events.registry import PostingRuleRegistry, build_default_registry
from ledger_modules.events.rules import (
    BasePostingRule,
    COGSCalculatedRule,
    InventoryAdjustedRule,
    OrderCancelledRule,
    OrderCompletedRule,
    PostingContext,
    PostingRule,
)
from ledger_modules.events.service import EventIngestionService, LedgerPostingContext

__all__ = [
    "BasePostingRule",
    "COGSCalculatedRule",
    "EventIngestionService",
    "InboundEvent",
    "IngestionResult",
    "IngestionStatus",
    "InventoryAdjustedRule",
    "LedgerPostingContext",
    "OrderCancelledRule",
    "OrderCompletedRule",
    "PostingContext",
    "PostingPlan",
    "PostingRule",
    "PostingRuleRegistry",
    "ProcessedEventInfo",
    "build_default_registry",
]
