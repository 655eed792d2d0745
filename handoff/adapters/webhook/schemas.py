"""Pydantic request schemas for the webhook API.

These are external contracts, kept separate from the core dataclasses.
Each request model converts itself into core types; the core still
validates its own invariants.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from handoff.core.errors import ValidationError
from handoff.core.models import (
    ItemStatus,
    Modifier,
    OrderItem,
    OrderSubmission,
    PaymentStatus,
    StoreStatus,
)
from handoff.core.policy import Actor, StaffRole
from handoff.core.reason_codes import ReasonCategory


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class ModifierSchema(BaseModel):
    name: str
    price: float = 0.0


class OrderItemSchema(BaseModel):
    id: str
    menu_item_id: str
    name: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    modifiers: list[ModifierSchema] = []
    notes: str | None = None
    status: ItemStatus = ItemStatus.PENDING

    def to_item(self) -> OrderItem:
        return OrderItem(
            id=self.id,
            menu_item_id=self.menu_item_id,
            name=self.name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            modifiers=tuple(Modifier(name=m.name, price=m.price) for m in self.modifiers),
            notes=self.notes,
            status=self.status,
        )


class ActorSchema(BaseModel):
    """The caller as claimed in the request body.

    The role is taken on trust: the API key only proves the caller may use
    the API at all, not which role it holds. Deploy behind a gateway that
    sets or verifies the actor when staff roles must be enforced.
    """

    id: str
    name: str = Field(min_length=1)
    role: StaffRole

    def to_actor(self) -> Actor:
        try:
            return Actor(id=self.id, name=self.name, role=self.role)
        except ValueError as e:
            raise ValidationError(str(e)) from e


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------
class OrderSubmittedPayload(BaseModel):
    """The inbound "order submitted" message."""

    order_number: str = Field(min_length=1)
    shop_id: str = Field(min_length=1)
    items: list[OrderItemSchema] = Field(min_length=1)
    subtotal: float = Field(ge=0)
    discount: float = Field(default=0.0, ge=0)
    service_fee: float = Field(default=0.0, ge=0)
    total: float = Field(ge=0)
    currency: str = "AED"
    destination_gate: str = Field(min_length=1)
    destination_zone: str = ""
    passenger_alias: str = ""
    flight_number: str | None = None
    payment_method: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PAID
    notes: str | None = None
    coupon_code: str | None = None
    is_priority: bool = False

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_number": "SLP-1001",
                    "shop_id": "shop-001",
                    "items": [
                        {
                            "id": "oi-1",
                            "menu_item_id": "mi-latte",
                            "name": "Latte",
                            "quantity": 2,
                            "unit_price": 6.5,
                        }
                    ],
                    "subtotal": 13.0,
                    "service_fee": 1.5,
                    "total": 14.5,
                    "destination_gate": "B4",
                    "destination_zone": "Zone B - International",
                }
            ]
        }
    }

    def to_submission(self) -> OrderSubmission:
        """Convert to the core payload.

        Raises:
            ValidationError: If the totals do not add up.
        """
        try:
            return OrderSubmission(
                order_number=self.order_number,
                shop_id=self.shop_id,
                items=tuple(item.to_item() for item in self.items),
                subtotal=self.subtotal,
                discount=self.discount,
                service_fee=self.service_fee,
                total=self.total,
                currency=self.currency,
                destination_gate=self.destination_gate,
                destination_zone=self.destination_zone,
                passenger_alias=self.passenger_alias,
                flight_number=self.flight_number,
                payment_method=self.payment_method,
                payment_status=self.payment_status,
                notes=self.notes,
                coupon_code=self.coupon_code,
                is_priority=self.is_priority,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e


# ---------------------------------------------------------------------------
# Staff operation requests
# ---------------------------------------------------------------------------
class ActorRequest(BaseModel):
    actor: ActorSchema


class OrderActionRequest(ActorRequest):
    order_id: str = Field(min_length=1)


class RejectOrderRequest(OrderActionRequest):
    reason_code: str
    notes: str | None = None


class PickupRequest(OrderActionRequest):
    runner_id: str = Field(min_length=1)
    runner_name: str = Field(min_length=1)


class FailOrderRequest(OrderActionRequest):
    reason_code: str
    notes: str | None = None
    category: ReasonCategory = ReasonCategory.RUNNER_FAIL


class SubmitRefundRequest(OrderActionRequest):
    amount: float = Field(gt=0)
    reason: str
    notes: str | None = None


class RefundActionRequest(ActorRequest):
    refund_id: str = Field(min_length=1)


class UpdateCapacityRequest(ActorRequest):
    max_queue_length: int | None = Field(default=None, ge=0)
    avg_prep_time_minutes: int | None = Field(default=None, gt=0)
    is_accepting_orders: bool | None = None
    busy_auto_throttle_at: int | None = Field(default=None, ge=0)


class StoreStatusRequest(ActorRequest):
    status: StoreStatus
    reason: str | None = None
    estimated_reopen: datetime | None = None
