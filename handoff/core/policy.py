"""Centralized capability checks for mutating operations.

Every service method that changes state calls PolicyGate.require()
before it reads, locks or mutates anything, so permission failures
are uniform and never leave partial work behind.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from .errors import PermissionDenied

logger = logging.getLogger(__name__)


class Capability(Enum):
    ORDERS_VIEW = "orders.view"
    ORDERS_ACCEPT = "orders.accept"
    ORDERS_REJECT = "orders.reject"
    ORDERS_PREPARE = "orders.prepare"
    ORDERS_READY = "orders.ready"
    ORDERS_HANDOFF = "orders.handoff"
    ORDERS_DELIVER = "orders.deliver"
    ORDERS_FAIL = "orders.fail"
    ORDERS_SUBMIT = "orders.submit"
    REFUNDS_VIEW = "refunds.view"
    REFUNDS_REQUEST = "refunds.request"
    REFUNDS_APPROVE = "refunds.approve"
    CAPACITY_EDIT = "capacity.edit"


class StaffRole(Enum):
    MANAGER = "manager"
    CASHIER = "cashier"
    KITCHEN = "kitchen"
    DEVELOPER = "developer"
    RUNNER = "runner"
    OPS = "ops"
    SYSTEM = "system"


_C = Capability

ROLE_CAPABILITIES: Mapping[StaffRole, frozenset[Capability]] = MappingProxyType(
    {
        StaffRole.MANAGER: frozenset(
            {
                _C.ORDERS_VIEW,
                _C.ORDERS_ACCEPT,
                _C.ORDERS_REJECT,
                _C.ORDERS_PREPARE,
                _C.ORDERS_READY,
                _C.REFUNDS_VIEW,
                _C.REFUNDS_REQUEST,
                _C.CAPACITY_EDIT,
            }
        ),
        # No reject, refunds or capacity changes.
        StaffRole.CASHIER: frozenset(
            {_C.ORDERS_VIEW, _C.ORDERS_ACCEPT, _C.ORDERS_PREPARE, _C.ORDERS_READY}
        ),
        StaffRole.KITCHEN: frozenset(
            {_C.ORDERS_VIEW, _C.ORDERS_PREPARE, _C.ORDERS_READY}
        ),
        StaffRole.DEVELOPER: frozenset(Capability),
        StaffRole.RUNNER: frozenset(
            {_C.ORDERS_VIEW, _C.ORDERS_HANDOFF, _C.ORDERS_DELIVER, _C.ORDERS_FAIL}
        ),
        StaffRole.OPS: frozenset(
            {
                _C.ORDERS_VIEW,
                _C.ORDERS_FAIL,
                _C.REFUNDS_VIEW,
                _C.REFUNDS_REQUEST,
                _C.REFUNDS_APPROVE,
                _C.CAPACITY_EDIT,
            }
        ),
        StaffRole.SYSTEM: frozenset(
            {_C.ORDERS_VIEW, _C.ORDERS_SUBMIT, _C.ORDERS_PREPARE}
        ),
    }
)


@dataclass(frozen=True)
class Actor:
    """The caller of an operation, as recorded in the event log."""

    id: str
    name: str
    role: StaffRole
    extra_capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        """Validate actor invariants."""
        if not self.name or not self.name.strip():
            raise ValueError("actor name must be a non-empty string")


SYSTEM_ACTOR = Actor(id="system", name="system", role=StaffRole.SYSTEM)


class PolicyGate:
    """Single capability check invoked by the service layer."""

    def __init__(
        self,
        role_capabilities: Mapping[StaffRole, frozenset[Capability]] = ROLE_CAPABILITIES,
    ):
        self.role_capabilities = role_capabilities

    def capabilities_for(self, actor: Actor) -> frozenset[Capability]:
        return self.role_capabilities.get(actor.role, frozenset()) | actor.extra_capabilities

    def can(self, actor: Actor, capability: Capability) -> bool:
        return capability in self.capabilities_for(actor)

    def require(self, actor: Actor, capability: Capability) -> None:
        """Raise PermissionDenied unless the actor holds the capability."""
        if not self.can(actor, capability):
            logger.warning(
                f"Permission denied: {actor.name} ({actor.role.value}) "
                f"lacks {capability.value}",
                extra={"actor_id": actor.id, "capability": capability.value},
            )
            raise PermissionDenied(
                f"{actor.role.value} '{actor.name}' is not allowed to perform "
                f"{capability.value}"
            )
