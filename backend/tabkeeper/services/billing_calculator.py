"""Bill arithmetic on integer minor currency units.

Every amount here is an ``int`` count of the currency's smallest unit, so
splitting and summing never loses or invents a unit. Rates are percentages
and are applied once, with half-up rounding, to the subtotal.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence

from tabkeeper.models.table_session import ItemStatus, OrderStatus, SessionOrder, SessionOrderItem
from tabkeeper.services.errors import InvalidInputError


def _check_rate(name: str, rate) -> Decimal:
    value = Decimal(str(rate))
    if value < 0 or value > 100:
        raise InvalidInputError(f"{name} must be between 0 and 100, got {rate}")
    return value


def _check_amount(name: str, amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInputError(f"{name} must be an integer amount of minor units, got {amount!r}")
    if amount < 0:
        raise InvalidInputError(f"{name} cannot be negative, got {amount}")
    return amount


def percent_of(amount: int, rate_percent) -> int:
    """``amount * rate / 100`` rounded half-up to a whole minor unit."""
    rate = _check_rate("rate", rate_percent)
    return int((Decimal(amount) * rate / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def is_billable_item(item: SessionOrderItem) -> bool:
    return item.status != ItemStatus.CANCELLED.value


def is_billable_order(order: SessionOrder) -> bool:
    return order.status != OrderStatus.CANCELLED.value


def order_billable_total(order: SessionOrder) -> int:
    if not is_billable_order(order):
        return 0
    return sum(item.quantity * item.unit_price for item in order.items if is_billable_item(item))


def billable_subtotal(orders: Iterable[SessionOrder]) -> int:
    """Sum of quantity x unit price over non-cancelled items of non-cancelled orders."""
    return sum(order_billable_total(order) for order in orders)


@dataclass(frozen=True)
class BillTotals:
    subtotal: int
    tax_amount: int
    service_charge: int

    def total(self, discount: int = 0, deposit_credit: int = 0, tip: int = 0) -> int:
        return self.subtotal + self.tax_amount + self.service_charge - discount - deposit_credit + tip


def calculate_totals(orders: Iterable[SessionOrder], tax_rate_percent, service_charge_rate_percent) -> BillTotals:
    """Subtotal, tax and service charge for a session's orders.

    Tax and service are both taken from the subtotal; neither compounds on the other.
    """
    subtotal = billable_subtotal(orders)
    return BillTotals(
        subtotal=subtotal,
        tax_amount=percent_of(subtotal, tax_rate_percent),
        service_charge=percent_of(subtotal, service_charge_rate_percent),
    )


def invoice_total(
    subtotal: int,
    tax_amount: int,
    service_charge: int,
    discount_amount: int = 0,
    deposit_credit: int = 0,
) -> int:
    """Total for a single invoice; a discount or deposit may not push it below zero."""
    for name, amount in (
        ("subtotal", subtotal),
        ("tax_amount", tax_amount),
        ("service_charge", service_charge),
        ("discount_amount", discount_amount),
        ("deposit_credit", deposit_credit),
    ):
        _check_amount(name, amount)
    total = subtotal + tax_amount + service_charge - discount_amount - deposit_credit
    if total < 0:
        raise InvalidInputError(
            f"Discount ({discount_amount}) and deposit credit ({deposit_credit}) exceed the bill "
            f"({subtotal + tax_amount + service_charge})"
        )
    return total


def split_evenly(amount: int, parts: int) -> List[int]:
    """Floor-divide ``amount`` into ``parts`` shares; the last share takes the remainder.

    >>> split_evenly(215000, 3)
    [71666, 71666, 71668]
    """
    if parts < 1:
        raise InvalidInputError(f"Cannot split into {parts} parts")
    base = amount // parts
    return [base] * (parts - 1) + [amount - base * (parts - 1)]


@dataclass(frozen=True)
class SplitShare:
    index: int  # 1-based
    count: int
    subtotal: int
    tax_amount: int
    service_charge: int
    discount_amount: int
    tip_amount: int
    total_amount: int


def compute_split_shares(
    totals: BillTotals,
    split_count: int,
    discount_amount: int = 0,
    tip_amount: int = 0,
) -> List[SplitShare]:
    """Divide a bill into ``split_count`` invoices.

    Each component (subtotal, tax, service, discount, tip and the grand total)
    is split on its own with :func:`split_evenly`, so the shares of every
    component add back to the undivided amount exactly.
    """
    if split_count < 2:
        raise InvalidInputError(f"split_count must be at least 2, got {split_count}")
    _check_amount("discount_amount", discount_amount)
    _check_amount("tip_amount", tip_amount)

    full_total = totals.total(discount=discount_amount, tip=tip_amount)
    if full_total < 0:
        raise InvalidInputError(
            f"Discount ({discount_amount}) exceeds the bill ({totals.total(tip=tip_amount)})"
        )

    columns = [
        split_evenly(totals.subtotal, split_count),
        split_evenly(totals.tax_amount, split_count),
        split_evenly(totals.service_charge, split_count),
        split_evenly(discount_amount, split_count),
        split_evenly(tip_amount, split_count),
        split_evenly(full_total, split_count),
    ]
    return [
        SplitShare(i + 1, split_count, *(column[i] for column in columns))
        for i in range(split_count)
    ]


def split_invoice_number(base_number: str, index: int, count: int) -> str:
    return f"{base_number}-{index}/{count}"


def guest_for_split(guests: Optional[Sequence], index: int):
    """Guest info for 1-based split ``index``, or None when not supplied."""
    if not guests or index > len(guests):
        return None
    return guests[index - 1]
