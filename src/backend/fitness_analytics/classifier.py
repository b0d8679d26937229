from __future__ import annotations

from enum import Enum
from typing import Union

from .defaults import has_reference
from .models import CorporateSubscriptionRecord, PurchaseRecord, SubscriptionRecord

ACTIVE_STATUS = "active"

Classifiable = Union[SubscriptionRecord, CorporateSubscriptionRecord, PurchaseRecord]


class RevenueClass(str, Enum):
    PAID = "paid"
    COMPLIMENTARY = "complimentary"


def classify(record: Classifiable) -> RevenueClass:
    """
    Decide whether a record is backed by real money.

    Individual plans need an active status and a processor subscription id.
    Corporate plans additionally need a processor customer id. One-off
    purchases are always paid.
    """

    if isinstance(record, PurchaseRecord):
        return RevenueClass.PAID
    if isinstance(record, CorporateSubscriptionRecord):
        paid = (
            record.status == ACTIVE_STATUS
            and has_reference(record.payment_ref)
            and has_reference(record.customer_ref)
        )
    elif isinstance(record, SubscriptionRecord):
        paid = record.status == ACTIVE_STATUS and has_reference(record.payment_ref)
    else:
        raise TypeError(f"Cannot classify {type(record).__name__}")
    return RevenueClass.PAID if paid else RevenueClass.COMPLIMENTARY


def is_paid(record: Classifiable) -> bool:
    return classify(record) is RevenueClass.PAID
