"""
Core data models for the CableDesk client.

This module defines the data structures exchanged with the billing back end:
users, customers, products, ledger transactions and balance adjustments.
The back end speaks camelCase JSON with MongoDB-style ``_id`` keys; each model
knows how to read itself from that shape.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Type, TypeVar
from enum import Enum

E = TypeVar("E", bound=Enum)


class Platform(Enum):
    """Where the client runs, which decides how the refresh credential travels."""
    NATIVE = "native"
    WEB = "web"


class UserRole(Enum):
    """Roles issued by the login endpoint."""
    ADMIN = "admin"
    OPERATOR = "operator"
    AGENT = "agent"


class AdjustmentType(Enum):
    """Direction of a manual balance adjustment."""
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionType(Enum):
    """Ledger entry types."""
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    REVERSAL = "REVERSAL"


class CustomerStatus(Enum):
    """Customer list filter values."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class SubscriptionStatus(Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (ValueError, AttributeError):
        return None


def _record_id(data: Dict[str, Any]) -> str:
    return str(data.get('_id') or data.get('id') or '')


def _parse_enum(enum_cls: Type[E], value: Any) -> Optional[E]:
    """Unknown or missing values map to None rather than failing the whole record."""
    try:
        return enum_cls(value)
    except ValueError:
        return None


@dataclass
class User:
    """The authenticated user returned by the login endpoint."""
    id: str
    name: str
    role: Optional[UserRole]
    email: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=_record_id(data),
            name=data.get('name', ''),
            role=_parse_enum(UserRole, str(data.get('role', '')).lower()),
            email=data.get('email')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name,
                'role': self.role.value if self.role else None, 'email': self.email}


@dataclass
class Customer:
    """A subscriber record."""
    id: str
    name: str
    customer_code: Optional[str] = None
    contact_number: Optional[str] = None
    locality: Optional[str] = None
    billing_address: Optional[str] = None
    balance_amount: float = 0.0
    default_extra_charge: float = 0.0
    default_discount: float = 0.0
    active: bool = True
    agent_id: Optional[str] = None
    connection_start_date: Optional[datetime] = None
    earliest_expiry: Optional[datetime] = None
    devices: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Customer':
        agent = data.get('agentId')
        if isinstance(agent, dict):
            agent = _record_id(agent)
        return cls(
            id=_record_id(data),
            name=data.get('name', ''),
            customer_code=data.get('customerCode'),
            contact_number=data.get('contactNumber'),
            locality=data.get('locality'),
            billing_address=data.get('billingAddress'),
            balance_amount=float(data.get('balanceAmount') or 0),
            default_extra_charge=float(data.get('defaultExtraCharge') or 0),
            default_discount=float(data.get('defaultDiscount') or 0),
            active=bool(data.get('active', True)),
            agent_id=agent,
            connection_start_date=_parse_datetime(data.get('connectionStartDate')),
            earliest_expiry=_parse_datetime(data.get('earliestExpiry')),
            devices=list(data.get('devices') or [])
        )


@dataclass
class Pagination:
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Pagination':
        return cls(
            total=int(data.get('total', 0)),
            page=int(data.get('page', 1)),
            limit=int(data.get('limit', 10)),
            total_pages=int(data.get('totalPages', 0))
        )


@dataclass
class CustomerPage:
    """One page of the customer list."""
    items: List[Customer]
    pagination: Pagination

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'CustomerPage':
        return cls(
            items=[Customer.from_api(item) for item in data.get('data') or []],
            pagination=Pagination.from_api(data.get('pagination') or {})
        )


@dataclass
class Product:
    """A channel package or add-on sold to subscribers."""
    id: str
    name: str
    customer_price: float = 0.0
    operator_cost: float = 0.0
    billing_interval_value: int = 1
    billing_interval_unit: str = "months"
    is_active: bool = True
    category: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Product':
        interval = data.get('billingInterval') or {}
        return cls(
            id=_record_id(data),
            name=data.get('name', ''),
            customer_price=float(data.get('customerPrice') or 0),
            operator_cost=float(data.get('operatorCost') or 0),
            billing_interval_value=int(interval.get('value', 1)),
            billing_interval_unit=interval.get('unit', 'months'),
            is_active=bool(data.get('is_active', data.get('isActive', True))),
            category=data.get('category')
        )


@dataclass
class Agent:
    """A field collector working under an operator."""
    id: str
    name: str
    mobile: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    status: str = "active"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Agent':
        return cls(
            id=_record_id(data),
            name=data.get('name', ''),
            mobile=data.get('mobile'),
            email=data.get('email'),
            address=data.get('address'),
            status=data.get('status', 'active')
        )


@dataclass
class Subscription:
    """A customer's plan, current or historical."""
    id: str
    customer_id: str
    product_id: str
    product_name: Optional[str] = None
    plan_type: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    customer_price: float = 0.0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Subscription':
        # productId and customerId arrive populated or as bare ids
        product = data.get('productId')
        product_name = None
        if isinstance(product, dict):
            product_name = product.get('name')
            product = _record_id(product)
        customer = data.get('customerId')
        if isinstance(customer, dict):
            customer = _record_id(customer)
        return cls(
            id=_record_id(data),
            customer_id=str(customer or ''),
            product_id=str(product or ''),
            product_name=product_name,
            plan_type=data.get('planType'),
            status=_parse_enum(SubscriptionStatus, str(data.get('status', '')).upper()),
            start_date=_parse_datetime(data.get('startDate')),
            expiry_date=_parse_datetime(data.get('expiryDate')),
            customer_price=float(data.get('customerPrice') or 0)
        )


@dataclass
class Transaction:
    """A ledger entry for a customer."""
    id: str
    type: Optional[TransactionType]
    amount: float
    balance_before: float
    balance_after: float
    note: Optional[str] = None
    invoice_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=_record_id(data),
            type=_parse_enum(TransactionType, str(data.get('type', '')).upper()),
            amount=float(data.get('amount') or 0),
            balance_before=float(data.get('balanceBefore') or 0),
            balance_after=float(data.get('balanceAfter') or 0),
            note=data.get('note'),
            invoice_id=data.get('invoiceId'),
            created_at=_parse_datetime(data.get('createdAt'))
        )


@dataclass
class BalanceAdjustment:
    """A manual balance change expressed as a positive amount and a direction."""
    amount: float
    type: AdjustmentType
    note: Optional[str] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError("Adjustment amount must be positive")

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == AdjustmentType.CREDIT else -self.amount

    def to_payload(self) -> Dict[str, Any]:
        payload = {'amount': self.amount, 'type': self.type.value}
        if self.note:
            payload['note'] = self.note
        return payload


@dataclass
class BillingBreakdown:
    """Preview of the charge for a renewal."""
    base_amount: float
    extra_charge: float
    discount: float
    net_amount: float
    cost_of_goods_sold: float
    profit: float
