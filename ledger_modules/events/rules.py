"""
Posting rules for inbound business events.

Posting rules transform an event into a balanced line set.  Each rule is:
- Deterministic: the same event and ledger state produce the same plan
- Narrow: it sees the ledger only through ``PostingContext``
- Side-effect free: the ingestor performs every write

A rule returns ``None`` when the event has no ledger effect (zero amounts,
stock transfers, cancellations of orders that were never booked).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from ledger_kernel.domain.dtos import EntryMetadata, JournalEntryInfo, LineSpec
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntryStatus, JournalEntryType
from ledger_modules.events.models import InboundEvent, PostingPlan

logger = get_logger("modules.events.rules")

ORDER_SERVICE = "order-service"
INVENTORY_SERVICE = "inventory-service"

ZERO = Decimal("0")


@runtime_checkable
class PostingContext(Protocol):
    """Ledger capabilities a posting rule may use."""

    def account_code(self, role: str) -> str:
        """
        GL code configured for ``role``.

        Raises MissingAccountConfigurationError when the role is unset or
        the configured account does not exist.
        """
        ...

    def find_posted_entries(
        self, source_service: str, source_reference_id: str
    ) -> list[JournalEntryInfo]:
        ...

    def get_entry(self, entry_id: UUID) -> JournalEntryInfo | None:
        ...

    def has_reversal(self, entry_id: UUID) -> bool:
        ...


@runtime_checkable
class PostingRule(Protocol):
    """Protocol for event posting rules."""

    @property
    def event_type(self) -> str:
        ...

    @property
    def version(self) -> int:
        ...

    def business_date(self, event: InboundEvent) -> date:
        """Date whose fiscal period the resulting entry lands in."""
        ...

    def build(self, event: InboundEvent, ctx: PostingContext) -> PostingPlan | None:
        ...


class BasePostingRule(ABC):
    """Common plumbing for the shipped rules."""

    version: int = 1

    @property
    @abstractmethod
    def event_type(self) -> str:
        pass

    @abstractmethod
    def business_date(self, event: InboundEvent) -> date:
        pass

    @abstractmethod
    def build(self, event: InboundEvent, ctx: PostingContext) -> PostingPlan | None:
        pass

    def validate_event(self, event: InboundEvent) -> None:
        if event.event_type != self.event_type:
            raise ValidationError(
                f"Event type mismatch: expected {self.event_type}, "
                f"got {event.event_type}",
                field="eventType",
            )

    def _skip(self, event: InboundEvent, reason: str) -> None:
        logger.info(
            "posting_rule_skipped",
            extra={
                "event_id": event.event_id,
                "event_type": self.event_type,
                "reason": reason,
            },
        )
        return None


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


class OrderCompletedRule(BasePostingRule):
    """
    Completed sale.

        Dr Cash            grandTotal
        Dr Sales Discount  totalDiscount   (when > 0)
            Cr Revenue         subtotal
            Cr Tax Payable     totalTax    (when > 0)
    """

    event_type = "OrderCompleted"

    def business_date(self, event: InboundEvent) -> date:
        return event.date_field("orderDate")

    def build(self, event: InboundEvent, ctx: PostingContext) -> PostingPlan | None:
        self.validate_event(event)
        order_id = str(event.require("orderId"))
        order_number = str(event.get("orderNumber") or order_id)

        grand_total = event.amount("grandTotal")
        subtotal = event.amount("subtotal")
        discount = event.amount("totalDiscount", ZERO)
        tax = event.amount("totalTax", ZERO)

        # Resolve every account before building anything.
        cash = ctx.account_code("cash")
        revenue = ctx.account_code("revenue")
        discount_account = ctx.account_code("sales_discount") if discount > 0 else None
        tax_account = ctx.account_code("tax_payable") if tax > 0 else None

        dimensions = {
            "customer_id": event.get("customerId"),
            "sales_person_id": event.get("salesPersonId"),
            "warehouse_id": event.get("warehouseId"),
            "sales_channel": event.get("salesChannel"),
        }

        lines = [
            LineSpec.debit(
                cash, grand_total,
                memo=f"Payment for order {order_number}", dimensions=dimensions,
            ),
            LineSpec.credit(
                revenue, subtotal,
                memo=f"Sales revenue - {order_number}", dimensions=dimensions,
            ),
        ]
        if discount_account is not None:
            lines.append(
                LineSpec.debit(
                    discount_account, discount,
                    memo=f"Discount - {order_number}", dimensions=dimensions,
                )
            )
        if tax_account is not None:
            lines.append(
                LineSpec.credit(
                    tax_account, tax,
                    memo=f"Tax payable - {order_number}", dimensions=dimensions,
                )
            )

        description = f"Sales Order {order_number}"
        if event.get("customerName"):
            description += f" - {event.get('customerName')}"

        return PostingPlan(
            lines=tuple(lines),
            metadata=EntryMetadata(
                entry_date=self.business_date(event),
                description=description,
                entry_type=JournalEntryType.SYSTEM,
                reference=order_number,
                source_service=ORDER_SERVICE,
                source_reference_id=order_id,
            ),
        )


class OrderCancelledRule(BasePostingRule):
    """
    Cancelled sale: mirror-sign reversal of the order's posted entry, dated
    at the cancellation.  The original entry stays Posted.
    """

    event_type = "OrderCancelled"

    def business_date(self, event: InboundEvent) -> date:
        return event.date_field("cancelledAt")

    def _find_original(
        self, event: InboundEvent, ctx: PostingContext, order_id: str
    ) -> JournalEntryInfo | None:
        original_id = event.get("originalJournalEntryId")
        if original_id:
            try:
                return ctx.get_entry(UUID(str(original_id)))
            except ValueError as exc:
                raise ValidationError(
                    f"originalJournalEntryId is not a UUID: {original_id!r}",
                    field="originalJournalEntryId",
                ) from exc
        candidates = [
            e for e in ctx.find_posted_entries(ORDER_SERVICE, order_id)
            if e.reversal_of_id is None
        ]
        return candidates[0] if candidates else None

    def build(self, event: InboundEvent, ctx: PostingContext) -> PostingPlan | None:
        self.validate_event(event)
        order_id = str(event.require("orderId"))
        order_number = str(event.get("orderNumber") or order_id)

        original = self._find_original(event, ctx, order_id)
        if original is None:
            return self._skip(event, "Original journal entry not found")
        if original.status != JournalEntryStatus.POSTED.value:
            return self._skip(event, f"Original journal entry is {original.status}")
        if ctx.has_reversal(original.id):
            return self._skip(event, "Original journal entry already reversed")

        lines = tuple(
            LineSpec(
                side=line.side.opposite(),
                amount=line.amount,
                account_id=line.account_id,
                memo=f"Reversal: {line.memo or 'Order cancelled'}",
                dimensions=line.dimensions,
            )
            for line in original.lines
        )
        reason = event.get("cancelReason") or "no reason given"
        return PostingPlan(
            lines=lines,
            metadata=EntryMetadata(
                entry_date=self.business_date(event),
                description=f"Reversal: Order {order_number} cancelled - {reason}",
                entry_type=JournalEntryType.SYSTEM,
                reference=f"REV-{order_number}",
                source_service=ORDER_SERVICE,
                source_reference_id=f"cancel-{order_id}",
                reversal_of_id=original.id,
            ),
            actor=str(event.get("cancelledBy") or "system"),
        )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class COGSCalculatedRule(BasePostingRule):
    """Dr COGS / Cr Inventory for the cost of goods sold on an order."""

    event_type = "COGSCalculated"

    def business_date(self, event: InboundEvent) -> date:
        return event.date_field("orderDate")

    def build(self, event: InboundEvent, ctx: PostingContext) -> PostingPlan | None:
        self.validate_event(event)
        order_id = str(event.require("orderId"))
        order_number = str(event.get("orderNumber") or order_id)

        key = "totalCOGS" if "totalCOGS" in event.payload else "totalCogs"
        total = event.amount(key, ZERO)
        if total == 0:
            return self._skip(event, "Zero cost of goods sold")

        cogs = ctx.account_code("cogs")
        inventory = ctx.account_code("inventory")
        dimensions = {"warehouse_id": event.get("warehouseId")}

        return PostingPlan(
            lines=(
                LineSpec.debit(cogs, total, memo=f"COGS - {order_number}", dimensions=dimensions),
                LineSpec.credit(
                    inventory, total,
                    memo=f"Inventory relief - {order_number}", dimensions=dimensions,
                ),
            ),
            metadata=EntryMetadata(
                entry_date=self.business_date(event),
                description=f"Cost of goods sold - Order {order_number}",
                entry_type=JournalEntryType.SYSTEM,
                reference=order_number,
                source_service=INVENTORY_SERVICE,
                source_reference_id=f"cogs-{order_id}",
            ),
        )


# adjustmentType -> loss account role; INCREASE is handled separately.
_LOSS_ROLES = {
    "DECREASE": "inventory_shrinkage",
    "WRITE_OFF": "inventory_write_off",
    "RECOUNT": "inventory_recount",
}


class InventoryAdjustedRule(BasePostingRule):
    """
    Stock adjustment.

    INCREASE books a gain (Dr Inventory / Cr gain).  DECREASE, WRITE_OFF
    and RECOUNT book a loss on their own expense account (Dr loss /
    Cr Inventory).  TRANSFER moves stock between warehouses and has no
    ledger effect.
    """

    event_type = "InventoryAdjusted"

    def business_date(self, event: InboundEvent) -> date:
        return event.date_field("adjustmentDate")

    def build(self, event: InboundEvent, ctx: PostingContext) -> PostingPlan | None:
        self.validate_event(event)
        adjustment_type = str(event.require("adjustmentType")).upper()
        if adjustment_type == "TRANSFER":
            return self._skip(event, "Transfers have no ledger effect")
        if adjustment_type != "INCREASE" and adjustment_type not in _LOSS_ROLES:
            raise ValidationError(
                f"Unknown adjustmentType: {adjustment_type}", field="adjustmentType"
            )

        value = abs(event.amount("totalValue", ZERO))
        if value == 0:
            return self._skip(event, "Zero adjustment value")

        adjustment_id = str(event.require("adjustmentId"))
        number = str(event.get("adjustmentNumber") or adjustment_id)
        inventory = ctx.account_code("inventory")
        dimensions = {"warehouse_id": event.get("warehouseId")}

        if adjustment_type == "INCREASE":
            gain = ctx.account_code("inventory_gain")
            lines = (
                LineSpec.debit(inventory, value, memo=f"Stock increase - {number}", dimensions=dimensions),
                LineSpec.credit(gain, value, memo=f"Inventory gain - {number}", dimensions=dimensions),
            )
        else:
            loss = ctx.account_code(_LOSS_ROLES[adjustment_type])
            lines = (
                LineSpec.debit(
                    loss, value,
                    memo=f"Inventory {adjustment_type.lower().replace('_', ' ')} - {number}",
                    dimensions=dimensions,
                ),
                LineSpec.credit(inventory, value, memo=f"Stock decrease - {number}", dimensions=dimensions),
            )

        description = f"Inventory Adjustment {number}"
        if event.get("reason"):
            description += f" - {event.get('reason')}"

        return PostingPlan(
            lines=lines,
            metadata=EntryMetadata(
                entry_date=self.business_date(event),
                description=description,
                entry_type=JournalEntryType.SYSTEM,
                reference=number,
                source_service=INVENTORY_SERVICE,
                source_reference_id=adjustment_id,
            ),
            actor=str(event.get("performedBy") or "system"),
        )
