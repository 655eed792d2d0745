"""Demo order generator.

A test double for an external order source. It synthesizes random
airport orders and pushes them through IngestionPort exactly as a
point-of-sale integration would, and every third cycle moves one
accepted order to preparing to imitate the kitchen. Nothing in the core
depends on it.
"""

import logging
import random
from dataclasses import dataclass

from handoff.core.errors import AdmissionDenied
from handoff.core.models import OrderFilter, OrderItem, OrderStatus, OrderSubmission
from handoff.core.policy import SYSTEM_ACTOR, Actor
from handoff.core.ports import FulfillmentPort, IngestionPort

logger = logging.getLogger(__name__)

PASSENGER_NAMES = (
    "Alex T.", "Jordan M.", "Sam K.", "Riley P.",
    "Morgan B.", "Casey L.", "Quinn D.", "Avery S.",
)
GATES = ("A1", "A2", "A3", "A4", "A5", "B1", "B2", "B3", "B4", "B5", "B6", "B7", "B8")
ITEM_POOL: tuple[tuple[str, float], ...] = (
    ("Americano", 5.5),
    ("Cappuccino", 6.0),
    ("Latte", 6.5),
    ("Flat White", 6.0),
    ("Espresso", 4.5),
    ("Iced Latte", 7.0),
    ("Croissant", 4.0),
    ("Club Sandwich", 12.0),
    ("Caesar Salad", 11.0),
    ("Muffin", 5.0),
    ("Cookies (3)", 6.0),
    ("Sparkling Water", 3.0),
)
SERVICE_FEE = 1.5


@dataclass(frozen=True)
class DemoCycleResult:
    """What one generator cycle did."""

    cycle: int
    admitted: tuple[str, ...]
    denied: tuple[str, ...]
    advanced_order_id: str | None = None


class DemoOrderGenerator:
    """Random order source for demos and load tests."""

    def __init__(
        self,
        ingestion: IngestionPort,
        shop_id: str,
        fulfillment: FulfillmentPort | None = None,
        seed: int | None = None,
        start_sequence: int = 1000,
        bonus_order_probability: float = 0.3,
        advance_every_n_cycles: int = 3,
        actor: Actor = SYSTEM_ACTOR,
    ):
        """Initialize the generator.

        Args:
            ingestion: Port receiving the synthesized submissions.
            shop_id: Merchant the orders belong to.
            fulfillment: Port used to auto-advance accepted orders (optional).
            seed: Seed for reproducible runs.
            start_sequence: Order numbers continue from this value.
            bonus_order_probability: Chance of a second order in one cycle.
            advance_every_n_cycles: Auto-advance cadence.
            actor: Actor submitting orders and recorded on auto-advanced ones.
        """
        self.ingestion = ingestion
        self.fulfillment = fulfillment
        self.shop_id = shop_id
        self.bonus_order_probability = bonus_order_probability
        self.advance_every_n_cycles = advance_every_n_cycles
        self.actor = actor
        self._rng = random.Random(seed)
        self._sequence = start_sequence
        self._cycle = 0

    def make_submission(self) -> OrderSubmission:
        """Build one random, internally consistent order payload."""
        self._sequence += 1
        seq = self._sequence
        rng = self._rng

        item_count = rng.randint(2, 4) if rng.random() > 0.6 else 1
        items = []
        for i in range(item_count):
            name, price = rng.choice(ITEM_POOL)
            items.append(
                OrderItem(
                    id=f"oi-gen-{seq}-{i}",
                    menu_item_id=f"mi-gen-{i}",
                    name=name,
                    quantity=2 if rng.random() > 0.8 else 1,
                    unit_price=price,
                )
            )
        subtotal = round(sum(item.line_total for item in items), 2)
        gate = rng.choice(GATES)

        return OrderSubmission(
            order_number=f"SLP-{seq}",
            shop_id=self.shop_id,
            items=tuple(items),
            subtotal=subtotal,
            service_fee=SERVICE_FEE,
            total=round(subtotal + SERVICE_FEE, 2),
            destination_gate=gate,
            destination_zone=(
                "Zone A - Departures" if gate.startswith("A") else "Zone B - International"
            ),
            passenger_alias=rng.choice(PASSENGER_NAMES),
            flight_number=f"EK{rng.randint(100, 999)}",
            payment_method="card" if rng.random() > 0.5 else "wallet",
            is_priority=rng.random() < 0.1,
        )

    async def run_cycle(self) -> DemoCycleResult:
        """Submit one order (sometimes two) and maybe advance one accepted order."""
        self._cycle += 1
        admitted: list[str] = []
        denied: list[str] = []

        count = 2 if self._rng.random() < self.bonus_order_probability else 1
        for _ in range(count):
            submission = self.make_submission()
            try:
                order = await self.ingestion.submit_order(self.actor, submission)
                admitted.append(order.order_number)
            except AdmissionDenied as e:
                # Expected when the demo merchant is full or closed
                logger.debug(f"Demo order {submission.order_number} denied: {e}")
                denied.append(submission.order_number)

        advanced = None
        if self.fulfillment is not None and self._cycle % self.advance_every_n_cycles == 0:
            advanced = await self._advance_one(self.fulfillment)

        logger.info(
            f"Demo cycle #{self._cycle}: {len(admitted)} admitted, {len(denied)} denied"
            + (f", advanced {advanced}" if advanced else ""),
        )
        return DemoCycleResult(
            cycle=self._cycle,
            admitted=tuple(admitted),
            denied=tuple(denied),
            advanced_order_id=advanced,
        )

    async def _advance_one(self, fulfillment: FulfillmentPort) -> str | None:
        """Move one random accepted order to preparing."""
        accepted = await fulfillment.list_orders(
            OrderFilter(statuses=frozenset({OrderStatus.ACCEPTED}))
        )
        if not accepted:
            return None
        target = self._rng.choice(accepted)
        await fulfillment.start_preparing(self.actor, target.id)
        return target.id
