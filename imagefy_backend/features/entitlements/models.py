"""
Entitlement record model.

One record per email. `is_pro` is the only flag clients gate on; everything
else is provenance (`method`, Stripe references) or informational timestamps.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class GrantMethod(str, Enum):
    """How the current grant was obtained."""
    STRIPE = "stripe"
    SECRET_CODE = "secret_code"
    UNSET = "unset"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GrantMethod":
        try:
            return cls(value)
        except ValueError:
            return cls.UNSET


class SubscriptionStatus(str, Enum):
    """Stripe subscription statuses plus the two states this service writes itself."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    CANCELLING = "cancelling"


# Statuses that keep access on
ACCESS_GRANTING_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


@dataclass(frozen=True)
class Mutation:
    """
    A single-record state change.

    `upsert=True` creates the record when missing; `upsert=False` is an
    update that silently matches nothing when the record does not exist.
    `clear_fields` are reset to None.
    """
    email: str
    set_fields: Dict[str, Any]
    clear_fields: Tuple[str, ...] = ()
    upsert: bool = True


@dataclass(frozen=True)
class EntitlementRecord:
    email: str
    is_pro: bool = False
    method: GrantMethod = GrantMethod.UNSET
    subscription_status: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    lifetime_access: bool = False
    activated_at: Optional[datetime] = None
    last_payment: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_requested_at: Optional[datetime] = None
    code_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = field(default=None, compare=False)
    updated_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "EntitlementRecord":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in row.items() if key in known}
        values["method"] = GrantMethod.parse(values.get("method"))
        values["is_pro"] = bool(values.get("is_pro"))
        values["lifetime_access"] = bool(values.get("lifetime_access"))
        for name, value in values.items():
            # SQLite drops the offset; everything is stored in UTC
            if isinstance(value, datetime) and value.tzinfo is None:
                values[name] = value.replace(tzinfo=timezone.utc)
        return cls(**values)

    @property
    def is_lifetime(self) -> bool:
        return self.method is GrantMethod.SECRET_CODE

    def apply(self, mutation: Mutation) -> "EntitlementRecord":
        """Return the record as it would look after `mutation`."""
        changes: Dict[str, Any] = dict(mutation.set_fields)
        if "method" in changes:
            changes["method"] = GrantMethod.parse(changes["method"])
        for name in mutation.clear_fields:
            changes[name] = None
        return replace(self, **changes)
