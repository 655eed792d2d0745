"""Refund approval workflow.

Refunds at or below the ops approval threshold are approved on the
spot; larger ones wait for manual review. Order-side effects go through
the state machine so they are locked and logged like any transition.
"""

import asyncio
import logging
import math
import uuid
import weakref

from .errors import InvalidTransition, NotFound, ValidationError
from .models import (
    Clock,
    DomainEvent,
    EventKind,
    OrderStatus,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
    money_exceeds,
    utc_now,
)
from .policy import Actor, Capability, PolicyGate
from .ports import NotificationPort, OrderStorePort, RefundPort
from .reason_codes import ReasonCategory, validate_reason
from .state_machine import APPROVE_REFUND, DECLINE_REFUND, REQUEST_REFUND, OrderEdit, OrderStateMachine

logger = logging.getLogger(__name__)

AUTO_REVIEWER = "auto"


class RefundWorkflow(RefundPort):
    """Core implementation of RefundPort."""

    def __init__(
        self,
        store: OrderStorePort,
        machine: OrderStateMachine,
        policy: PolicyGate | None = None,
        notification: NotificationPort | None = None,
        ops_approval_threshold: float = 100.0,
        daily_refund_limit: int | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize the refund workflow.

        Args:
            store: OrderStorePort implementation for refunds and orders.
            machine: State machine applying order-side refund effects.
            policy: Capability gate (defaults to the built-in role map).
            notification: Optional port for refund events.
            ops_approval_threshold: Amounts above this need manual review.
            daily_refund_limit: Max refunds one requester may submit per UTC
                day. None disables the cap.
            clock: Source of request and review timestamps.
        """
        if ops_approval_threshold < 0:
            raise ValueError("ops_approval_threshold must be non-negative")
        self.store = store
        self.machine = machine
        self.policy = policy or PolicyGate()
        self.notification = notification
        self.ops_approval_threshold = ops_approval_threshold
        self.daily_refund_limit = daily_refund_limit
        self.clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, refund_id: str) -> asyncio.Lock:
        lock = self._locks.get(refund_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[refund_id] = lock
        return lock

    def requires_ops_approval(self, amount: float) -> bool:
        return amount > self.ops_approval_threshold

    async def submit_refund(
        self,
        actor: Actor,
        order_id: str,
        amount: float,
        reason: str,
        notes: str | None = None,
    ) -> RefundRequest:
        """Create a refund request for an order.

        Raises:
            ValidationError: Amount out of range, bad reason code, missing
                notes, or daily limit reached.
            InvalidTransition: The order already has a pending refund or is
                fully refunded.
            NotFound: Unknown order.
        """
        self.policy.require(actor, Capability.REFUNDS_REQUEST)
        reason_code = validate_reason(ReasonCategory.REFUND, reason, notes)
        if not math.isfinite(amount) or amount <= 0:
            raise ValidationError(f"Refund amount must be positive, got {amount}")

        async with self.machine.edit(order_id) as edit:
            order = edit.order
            if order.refund_status == RefundStatus.PENDING_APPROVAL:
                raise InvalidTransition(
                    f"Order {order.order_number} already has a refund pending approval"
                )
            if order.status == OrderStatus.REFUNDED:
                raise InvalidTransition(f"Order {order.order_number} is already refunded")

            refundable = order.total - await self._approved_total(order.id)
            if money_exceeds(amount, refundable):
                raise ValidationError(
                    f"Refund amount must satisfy 0 < amount <= {refundable:.2f}, "
                    f"got {amount:.2f}"
                )
            await self._check_daily_limit(actor)

            now = self.clock()
            refund = RefundRequest(
                id=str(uuid.uuid4()),
                order_id=order.id,
                order_number=order.order_number,
                amount=amount,
                order_total=order.total,
                currency=order.currency,
                reason=reason_code.code,
                notes=notes or None,
                status=RefundStatus.PENDING_APPROVAL,
                requires_ops_approval=self.requires_ops_approval(amount),
                requested_by=actor.name,
                requested_at=now,
            )

            details = f"{amount:.2f} {order.currency} - {reason_code.label}"
            if notes:
                details += f": {notes}"
            updates = {
                "refund_status": RefundStatus.PENDING_APPROVAL,
                "refund_amount": amount,
                "refund_reason": reason_code.code,
            }
            if order.is_terminal:
                edit.record(actor.name, REQUEST_REFUND.name, details, updates)
            else:
                edit.apply(REQUEST_REFUND, actor.name, details, updates)

            if not refund.requires_ops_approval:
                self._resolve_on_order(edit, refund, approved=True, reviewer=AUTO_REVIEWER)
                refund.status = RefundStatus.APPROVED
                refund.reviewed_by = AUTO_REVIEWER
                refund.reviewed_at = now

            await self.store.save_refund(refund)

        logger.info(
            f"Refund {refund.id} for order {refund.order_number}: "
            f"{refund.amount:.2f} {refund.currency} ({refund.status.value})",
            extra={
                "refund_id": refund.id,
                "order_id": refund.order_id,
                "requires_ops_approval": refund.requires_ops_approval,
            },
        )
        if refund.requires_ops_approval:
            await self._publish(EventKind.REFUND_PENDING_APPROVAL, refund)
        else:
            await self._publish(EventKind.REFUND_RESOLVED, refund)
        return refund

    async def approve_refund(self, actor: Actor, refund_id: str) -> RefundRequest:
        return await self._review(actor, refund_id, approved=True)

    async def decline_refund(self, actor: Actor, refund_id: str) -> RefundRequest:
        return await self._review(actor, refund_id, approved=False)

    async def get_refund(self, refund_id: str) -> RefundRequest:
        refund = await self.store.get_refund(refund_id)
        if refund is None:
            raise NotFound(f"Refund {refund_id} not found")
        return refund

    async def list_refunds(
        self, order_id: str | None = None, status: RefundStatus | None = None
    ) -> list[RefundRequest]:
        return await self.store.list_refunds(order_id=order_id, status=status)

    async def _review(
        self, actor: Actor, refund_id: str, approved: bool
    ) -> RefundRequest:
        """Resolve a pending refund exactly once.

        Raises:
            InvalidTransition: The refund is already approved or declined.
            NotFound: Unknown refund.
        """
        self.policy.require(actor, Capability.REFUNDS_APPROVE)

        async with self._lock_for(refund_id):
            refund = await self.get_refund(refund_id)
            if refund.is_resolved:
                raise InvalidTransition(
                    f"Refund {refund_id} is already {refund.status.value}"
                )

            async with self.machine.edit(refund.order_id) as edit:
                self._resolve_on_order(edit, refund, approved=approved, reviewer=actor.name)
                refund.status = RefundStatus.APPROVED if approved else RefundStatus.DECLINED
                refund.reviewed_by = actor.name
                refund.reviewed_at = self.clock()
                await self.store.save_refund(refund)

        logger.info(
            f"Refund {refund.id} {refund.status.value} by {actor.name}",
            extra={"refund_id": refund.id, "order_id": refund.order_id},
        )
        await self._publish(EventKind.REFUND_RESOLVED, refund)
        return refund

    @staticmethod
    def _resolve_on_order(
        edit: OrderEdit, refund: RefundRequest, approved: bool, reviewer: str
    ) -> None:
        """Propagate a refund decision onto its order."""
        order = edit.order
        if approved:
            details = f"Refund of {refund.amount:.2f} {refund.currency} approved by {reviewer}"
            updates: dict[str, object] = {"refund_status": RefundStatus.APPROVED}
            if refund.refund_type == "full":
                updates["payment_status"] = PaymentStatus.REFUNDED
            transition = APPROVE_REFUND
        else:
            details = f"Refund of {refund.amount:.2f} {refund.currency} declined by {reviewer}"
            updates = {"refund_status": RefundStatus.DECLINED}
            transition = DECLINE_REFUND

        if order.status == OrderStatus.REFUND_REQUESTED:
            edit.apply(transition, reviewer, details, updates)
        else:
            edit.record(reviewer, transition.name, details, updates)

    async def _approved_total(self, order_id: str) -> float:
        approved = await self.store.list_refunds(
            order_id=order_id, status=RefundStatus.APPROVED
        )
        return sum(r.amount for r in approved)

    async def _check_daily_limit(self, actor: Actor) -> None:
        if self.daily_refund_limit is None:
            return
        today = self.clock().date()
        submitted_today = sum(
            1
            for r in await self.store.list_refunds()
            if r.requested_by == actor.name and r.requested_at.date() == today
        )
        if submitted_today >= self.daily_refund_limit:
            raise ValidationError(
                f"Daily refund limit reached for {actor.name} "
                f"({submitted_today}/{self.daily_refund_limit})"
            )

    async def _publish(self, kind: EventKind, refund: RefundRequest) -> None:
        if self.notification is None:
            return
        try:
            await self.notification.publish(
                DomainEvent(
                    kind=kind,
                    order_id=refund.order_id,
                    order_number=refund.order_number,
                    occurred_at=refund.reviewed_at or refund.requested_at,
                    attributes={
                        "refund_id": refund.id,
                        "amount": refund.amount,
                        "currency": refund.currency,
                        "reason": refund.reason,
                        "status": refund.status.value,
                        "reviewed_by": refund.reviewed_by,
                    },
                )
            )
        except Exception as e:
            logger.error(
                f"Failed to publish {kind.value} for refund {refund.id}: {e}",
                exc_info=True,
            )
