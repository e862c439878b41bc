"""
Billing helpers for the CableDesk client.

Input validation for payments and balance adjustments, and a local preview of
the back end's pro-rata renewal charge.
"""

import math
import logging
from typing import Any, Dict, Optional, Union

from cabledesk_shared.exceptions import ValidationError, ErrorCode
from cabledesk_shared.models import (
    AdjustmentType, BalanceAdjustment, BillingBreakdown, Customer, Product
)

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30
DURATION_UNITS = ('days', 'months')


def _to_amount(value: Any, field_name: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field_name} must be a number",
            field_name=field_name,
            context={'provided_value': value, 'expected_type': 'number'}
        )
    if not math.isfinite(amount):
        raise ValidationError(
            f"{field_name} must be a finite number",
            field_name=field_name,
            context={'provided_value': value}
        )
    return amount


def validate_payment_amount(amount: Any) -> float:
    """
    Validate a payment amount.

    Args:
        amount: Amount entered by the operator

    Returns:
        Validated amount

    Raises:
        ValidationError: If amount is not a positive finite number
    """
    value = _to_amount(amount, 'amount')
    if value <= 0:
        raise ValidationError(
            "Amount must be greater than zero",
            field_name="amount",
            error_code=ErrorCode.VALIDATION_VALUE_OUT_OF_RANGE,
            context={'provided_value': value, 'min_value': 0}
        )
    return value


def compute_balance_adjustment(old_balance: Any, new_balance: Any,
                               note: Optional[str] = None) -> BalanceAdjustment:
    """
    Turn a target balance into the adjustment that reaches it.

    A higher balance is a credit, a lower one a debit.

    Raises:
        ValidationError: If either balance is invalid or they are equal
    """
    old_value = _to_amount(old_balance, 'old_balance')
    new_value = _to_amount(new_balance, 'new_balance')

    difference = round(new_value - old_value, 2)
    if difference == 0:
        raise ValidationError(
            "New balance is the same as the current balance",
            field_name="new_balance",
            context={'old_balance': old_value, 'new_balance': new_value}
        )

    adjustment_type = AdjustmentType.CREDIT if difference > 0 else AdjustmentType.DEBIT
    note = note.strip() if note else None
    return BalanceAdjustment(amount=abs(difference), type=adjustment_type, note=note or None)


def _interval_days(value: Any, unit: str, field_name: str) -> float:
    if unit not in DURATION_UNITS:
        raise ValidationError(
            f"{field_name} unit must be one of: {', '.join(DURATION_UNITS)}",
            field_name=field_name,
            context={'provided_value': unit}
        )
    count = _to_amount(value, field_name)
    if count <= 0:
        raise ValidationError(
            f"{field_name} must be greater than zero",
            field_name=field_name,
            error_code=ErrorCode.VALIDATION_VALUE_OUT_OF_RANGE,
            context={'provided_value': count}
        )
    return count * DAYS_PER_MONTH if unit == 'months' else count


def calculate_billing(
    product: Union[Product, Dict[str, Any]],
    duration_value: Any,
    duration_unit: str,
    price_override: Optional[Any] = None,
    customer: Optional[Union[Customer, Dict[str, Any]]] = None
) -> BillingBreakdown:
    """
    Preview the charge for renewing ``product`` for a given duration.

    Months count as 30 days. The price scales with the ratio of the renewal
    duration to the product's billing interval unless ``price_override`` is
    given; the customer's default extra charge and discount apply on top.

    Args:
        product: Product model or API record
        duration_value: Number of days or months
        duration_unit: ``days`` or ``months``
        price_override: Fixed base amount replacing the pro-rata price
        customer: Customer model or API record

    Returns:
        BillingBreakdown for the renewal
    """
    if isinstance(product, dict):
        product = Product.from_api(product)
    if isinstance(customer, dict):
        customer = Customer.from_api(customer)

    base_unit_days = _interval_days(product.billing_interval_value,
                                    product.billing_interval_unit, 'billing_interval')
    total_days = _interval_days(duration_value, duration_unit, 'duration')
    factor = total_days / base_unit_days

    if price_override is not None:
        base_amount = _to_amount(price_override, 'price_override')
    else:
        base_amount = product.customer_price * factor

    extra_charge = customer.default_extra_charge if customer else 0.0
    discount = customer.default_discount if customer else 0.0

    net_amount = base_amount + extra_charge - discount
    cost = product.operator_cost * factor

    logger.debug(f"Billing preview for {product.name}: factor={factor:.4f} net={net_amount:.2f}")
    return BillingBreakdown(
        base_amount=base_amount,
        extra_charge=extra_charge,
        discount=discount,
        net_amount=net_amount,
        cost_of_goods_sold=cost,
        profit=net_amount - cost
    )
