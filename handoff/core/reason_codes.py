"""Reason-code taxonomy for rejections, failures and refunds."""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from .errors import ValidationError


class ReasonCategory(Enum):
    MERCHANT_REJECT = "merchant_reject"
    RUNNER_FAIL = "runner_fail"
    OPS_OVERRIDE = "ops_override"
    REFUND = "refund_reasons"


@dataclass(frozen=True)
class ReasonCode:
    code: str
    label: str
    requires_notes: bool = False


def _index(*codes: ReasonCode) -> Mapping[str, ReasonCode]:
    return MappingProxyType({c.code: c for c in codes})


REASON_CODES: Mapping[ReasonCategory, Mapping[str, ReasonCode]] = MappingProxyType(
    {
        ReasonCategory.MERCHANT_REJECT: _index(
            ReasonCode("out_of_stock", "Out of Stock"),
            ReasonCode("too_busy", "Too Busy / Capacity Exceeded"),
            ReasonCode("item_unavailable", "Item Unavailable"),
            ReasonCode("system_issue", "System Issue", requires_notes=True),
            ReasonCode("other", "Other", requires_notes=True),
        ),
        ReasonCategory.RUNNER_FAIL: _index(
            ReasonCode("passenger_not_found", "Passenger Not Found"),
            ReasonCode("gate_closed", "Gate Closed / Security Restriction"),
            ReasonCode("gate_changed_timeout", "Gate Changed and Time Exceeded"),
            ReasonCode(
                "handoff_verification_failed",
                "Could Not Verify Handoff",
                requires_notes=True,
            ),
            ReasonCode("other", "Other", requires_notes=True),
        ),
        ReasonCategory.OPS_OVERRIDE: _index(
            ReasonCode("sla_breach_mitigation", "SLA Breach Mitigation", requires_notes=True),
            ReasonCode("safety_risk", "Safety Risk", requires_notes=True),
            ReasonCode(
                "incorrect_merchant_action",
                "Incorrect Merchant Action",
                requires_notes=True,
            ),
            ReasonCode("runner_availability", "Runner Availability Issue"),
            ReasonCode(
                "customer_recovery", "Customer Experience Recovery", requires_notes=True
            ),
            ReasonCode("manual_correction", "Manual Correction", requires_notes=True),
            ReasonCode("other", "Other", requires_notes=True),
        ),
        ReasonCategory.REFUND: _index(
            ReasonCode("order_failed", "Order Failed"),
            ReasonCode("merchant_rejected", "Merchant Rejected"),
            ReasonCode("delay_beyond_threshold", "Delay Beyond Threshold"),
            ReasonCode("wrong_item", "Wrong Item Delivered", requires_notes=True),
            ReasonCode("quality_issue", "Quality Issue", requires_notes=True),
            ReasonCode("ops_goodwill", "Ops Goodwill Gesture", requires_notes=True),
            ReasonCode("other", "Other", requires_notes=True),
        ),
    }
)


def lookup(category: ReasonCategory, code: str) -> ReasonCode:
    """Return the reason code, or raise ValidationError if unknown."""
    try:
        return REASON_CODES[category][code]
    except KeyError:
        valid = ", ".join(REASON_CODES[category])
        raise ValidationError(
            f"Unknown {category.value} reason code '{code}' (expected one of: {valid})"
        ) from None


def validate_reason(
    category: ReasonCategory, code: str, notes: str | None
) -> ReasonCode:
    """Look up a reason code and enforce its requires_notes flag."""
    reason = lookup(category, code)
    if reason.requires_notes and not (notes and notes.strip()):
        raise ValidationError(f"Reason '{reason.label}' requires notes")
    return reason


def describe(reason: ReasonCode, notes: str | None) -> str:
    """Human-readable reason text for event logs and UI display."""
    if notes and notes.strip():
        return f"Reason: {reason.label} - {notes.strip()}"
    return f"Reason: {reason.label}"
