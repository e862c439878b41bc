"""
Typed operations on the CableDesk back end.

Each method wraps one endpoint of the billing API and converts the response
into the shared models. All calls go through ``CableDeskAPIClient.request``
and so share its refresh-and-replay behavior.
"""

import logging
import mimetypes
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

from cabledesk_client.api_client import CableDeskAPIClient
from cabledesk_client.billing import validate_payment_amount
from cabledesk_shared.exceptions import ValidationError, APIError, ErrorCode
from cabledesk_shared.models import (
    Agent, BalanceAdjustment, Customer, CustomerPage, Product, Subscription, Transaction, CustomerStatus
)

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _records(response: Any) -> List[Dict[str, Any]]:
    """Accept both a bare JSON array and a ``{data: [...]}`` envelope."""
    if isinstance(response, list):
        return response
    if isinstance(response, dict) and isinstance(response.get('data'), list):
        return response['data']
    raise APIError("Expected a list of records", status_code=200,
                   error_code=ErrorCode.API_INVALID_RESPONSE,
                   context={'response_type': type(response).__name__})


def _require_id(value: str, field_name: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{field_name} is required", field_name=field_name,
                              error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD)
    return str(value).strip()


class CableDeskService:
    """Billing operations for operators and agents."""

    def __init__(self, api_client: CableDeskAPIClient):
        self.api_client = api_client

    # Account

    async def change_password(self, old_password: str, new_password: str) -> Dict[str, Any]:
        if not new_password:
            raise ValidationError("New password must not be empty", field_name="new_password")
        return await self.api_client.post('/auth/change-password', json={
            'oldPassword': old_password,
            'newPassword': new_password
        })

    async def get_operator_profile(self) -> Dict[str, Any]:
        return await self.api_client.get('/operator/profile')

    # Customers

    async def list_customers(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        status: Optional[Union[CustomerStatus, str]] = None,
        locality: Optional[str] = None
    ) -> CustomerPage:
        """
        Fetch one page of customers.

        Args:
            page: 1-based page number
            limit: Page size
            search: Free-text filter on name, code or contact number
            status: ``active`` or ``inactive``
            locality: Locality filter

        Returns:
            CustomerPage with records and pagination
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive",
                                  error_code=ErrorCode.VALIDATION_VALUE_OUT_OF_RANGE,
                                  context={'page': page, 'limit': limit})
        if isinstance(status, CustomerStatus):
            status = status.value
        response = await self.api_client.get('/customers', params={
            'page': page,
            'limit': limit,
            'search': search or None,
            'customerStatus': status,
            'locality': locality or None
        })
        return CustomerPage.from_api(response)

    async def get_customer(self, customer_id: str) -> Customer:
        customer_id = _require_id(customer_id, 'customer_id')
        return Customer.from_api(await self.api_client.get(f'/customers/{customer_id}'))

    async def create_customer(self, customer_data: Dict[str, Any]) -> Customer:
        if not customer_data.get('name'):
            raise ValidationError("Customer name is required", field_name="name",
                                  error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD)
        response = await self.api_client.post('/customers', json=customer_data)
        logger.info(f"Created customer {customer_data.get('name')}")
        return Customer.from_api(response)

    async def update_customer(self, customer_id: str, customer_data: Dict[str, Any]) -> Customer:
        customer_id = _require_id(customer_id, 'customer_id')
        response = await self.api_client.put(f'/customers/{customer_id}', json=customer_data)
        return Customer.from_api(response)

    async def delete_customer(self, customer_id: str) -> Dict[str, Any]:
        customer_id = _require_id(customer_id, 'customer_id')
        response = await self.api_client.delete(f'/customers/{customer_id}')
        logger.info(f"Deleted customer {customer_id}")
        return response

    async def get_customer_transactions(self, customer_id: str, page: Optional[int] = None) -> List[Transaction]:
        customer_id = _require_id(customer_id, 'customer_id')
        response = await self.api_client.get(f'/customers/{customer_id}/transactions',
                                             params={'page': page})
        return [Transaction.from_api(item) for item in _records(response)]

    async def adjust_balance(self, customer_id: str, adjustment: BalanceAdjustment) -> Dict[str, Any]:
        """
        Apply a manual credit or debit to a customer's balance.

        Use ``billing.compute_balance_adjustment`` to derive the adjustment
        from a target balance.
        """
        customer_id = _require_id(customer_id, 'customer_id')
        response = await self.api_client.post(f'/customers/{customer_id}/adjust-balance',
                                              json=adjustment.to_payload())
        logger.info(f"Adjusted balance of {customer_id}: {adjustment.signed_amount:+.2f}")
        return response

    async def import_customers(self, file_path: Union[str, Path]) -> Dict[str, Any]:
        """
        Upload a spreadsheet of customers.

        The file is read once; the multipart body is rebuilt for each send so
        the upload survives a token refresh.
        """
        response = await self._upload_spreadsheet('/customers/import', file_path)
        logger.info(f"Imported customers from {Path(file_path).name}")
        return response

    async def export_customers(self, destination: Optional[Union[str, Path]] = None) -> Path:
        """
        Download all customers as a spreadsheet.

        Args:
            destination: Target file or directory; defaults to
                ``customers_<date>.xlsx`` in the current directory

        Returns:
            Path of the written file
        """
        return await self._download_spreadsheet('/customers/export', 'customers', destination)

    async def _upload_spreadsheet(self, endpoint: str, file_path: Union[str, Path]) -> Dict[str, Any]:
        path = Path(file_path)
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ValidationError(f"Cannot read import file {path}: {e}", field_name="file", cause=e)

        content_type = mimetypes.guess_type(path.name)[0] or XLSX_CONTENT_TYPE

        def build_body():
            return self.api_client.build_form('file', path.name, content, content_type)

        return await self.api_client.post(endpoint, data=build_body)

    async def _download_spreadsheet(self, endpoint: str, prefix: str,
                                    destination: Optional[Union[str, Path]]) -> Path:
        content = await self.api_client.get(endpoint, expect='bytes')

        filename = f"{prefix}_{date.today().isoformat()}.xlsx"
        if destination is None:
            target = Path(filename)
        else:
            target = Path(destination)
            if target.is_dir():
                target = target / filename

        target.write_bytes(content)
        logger.info(f"Exported {prefix} to {target} ({len(content)} bytes)")
        return target

    # Products

    async def list_products(self) -> List[Product]:
        response = await self.api_client.get('/products')
        return [Product.from_api(item) for item in _records(response)]

    async def create_product(self, product_data: Dict[str, Any]) -> Product:
        if not product_data.get('name'):
            raise ValidationError("Product name is required", field_name="name",
                                  error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD)
        return Product.from_api(await self.api_client.post('/products', json=product_data))

    async def update_product(self, product_id: str, product_data: Dict[str, Any]) -> Product:
        product_id = _require_id(product_id, 'product_id')
        return Product.from_api(await self.api_client.put(f'/products/{product_id}', json=product_data))

    async def set_product_active(self, product_id: str, active: bool) -> Product:
        return await self.update_product(product_id, {'is_active': active})

    async def delete_product(self, product_id: str) -> Dict[str, Any]:
        product_id = _require_id(product_id, 'product_id')
        return await self.api_client.delete(f'/products/{product_id}')

    async def import_products(self, file_path: Union[str, Path]) -> Dict[str, Any]:
        response = await self._upload_spreadsheet('/products/import/excel', file_path)
        logger.info(f"Imported products from {Path(file_path).name}")
        return response

    async def export_products(self, destination: Optional[Union[str, Path]] = None) -> Path:
        return await self._download_spreadsheet('/products/export/excel', 'products', destination)

    # Agents

    async def list_agents(self) -> List[Agent]:
        response = await self.api_client.get('/operator/agents')
        return [Agent.from_api(item) for item in _records(response)]

    async def create_agent(self, name: str, mobile: str, password: str,
                           email: Optional[str] = None, address: Optional[str] = None) -> Agent:
        """
        Register a collector under the logged-in operator.

        Raises:
            ValidationError: If name, mobile or password is empty
        """
        if not password:
            raise ValidationError("Password is required", field_name="password",
                                  error_code=ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD)
        payload = {
            'name': _require_id(name, 'name'),
            'mobile': _require_id(mobile, 'mobile'),
            'password': password
        }
        if email:
            payload['email'] = email
        if address:
            payload['address'] = address
        agent = Agent.from_api(await self.api_client.post('/operator/agents', json=payload))
        logger.info(f"Created agent {agent.name} ({agent.id})")
        return agent

    async def update_agent(self, agent_id: str, agent_data: Dict[str, Any]) -> Agent:
        agent_id = _require_id(agent_id, 'agent_id')
        return Agent.from_api(await self.api_client.put(f'/operator/agents/{agent_id}', json=agent_data))

    async def delete_agent(self, agent_id: str) -> Dict[str, Any]:
        agent_id = _require_id(agent_id, 'agent_id')
        response = await self.api_client.delete(f'/operator/agents/{agent_id}')
        logger.info(f"Deleted agent {agent_id}")
        return response

    async def change_agent_password(self, agent_id: str, new_password: str) -> Dict[str, Any]:
        agent_id = _require_id(agent_id, 'agent_id')
        if not new_password:
            raise ValidationError("New password must not be empty", field_name="new_password")
        return await self.api_client.patch(f'/operator/agents/{agent_id}/change-password',
                                           json={'newPassword': new_password})

    # Subscriptions

    async def get_customer_subscriptions(self, customer_id: str) -> List[Subscription]:
        """Current and past subscriptions of a customer."""
        customer_id = _require_id(customer_id, 'customer_id')
        response = await self.api_client.get(f'/subscriptions/customer/{customer_id}')
        return [Subscription.from_api(item) for item in _records(response)]

    async def change_subscription(self, customer_id: str, product_id: str,
                                  effective_from: Optional[date] = None) -> Dict[str, Any]:
        """Move a customer to another plan from ``effective_from`` (default today)."""
        customer_id = _require_id(customer_id, 'customer_id')
        return await self.api_client.put(f'/subscriptions/{customer_id}/change', json={
            'productId': _require_id(product_id, 'product_id'),
            'effectiveFrom': (effective_from or date.today()).isoformat()
        })

    async def end_subscription(self, subscription_id: str, end_date: Optional[date] = None) -> Dict[str, Any]:
        subscription_id = _require_id(subscription_id, 'subscription_id')
        return await self.api_client.patch(f'/subscriptions/{subscription_id}/end', json={
            'endDate': (end_date or date.today()).isoformat()
        })

    async def remove_subscription(self, customer_id: str, subscription_id: str) -> Dict[str, Any]:
        response = await self.api_client.post('/subscriptions/remove', json={
            'customerId': _require_id(customer_id, 'customer_id'),
            'subscriptionId': _require_id(subscription_id, 'subscription_id')
        })
        logger.info(f"Removed subscription {subscription_id} of {customer_id}")
        return response

    # Transactions

    async def collect_payment(
        self,
        customer_id: str,
        amount: Any,
        discount: Any = 0,
        method: str = 'CASH',
        note: Optional[str] = None,
        recorded_at: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Record a payment against a customer's balance.

        Raises:
            ValidationError: If amount is not positive or discount is negative
        """
        customer_id = _require_id(customer_id, 'customer_id')
        amount = validate_payment_amount(amount)
        try:
            discount = float(discount or 0)
        except (TypeError, ValueError):
            raise ValidationError("Discount must be a number", field_name="discount")
        if discount < 0:
            raise ValidationError("Discount must not be negative", field_name="discount",
                                  error_code=ErrorCode.VALIDATION_VALUE_OUT_OF_RANGE)

        payload = {
            'customerId': customer_id,
            'amount': amount,
            'discount': discount,
            'method': method,
            'recordedAt': (recorded_at or datetime.now()).isoformat()
        }
        if note:
            payload['note'] = note

        response = await self.api_client.post('/transactions/collection', json=payload)
        logger.info(f"Collected {amount:.2f} from {customer_id}")
        return response

    async def bill_customer(
        self,
        customer_id: str,
        product_id: str,
        start_date: Optional[date] = None,
        duration_days: Optional[int] = None,
        note: Optional[str] = None
    ) -> Dict[str, Any]:
        """Bill a subscription or renewal for a product."""
        payload: Dict[str, Any] = {
            'customerId': _require_id(customer_id, 'customer_id'),
            'productId': _require_id(product_id, 'product_id')
        }
        if start_date:
            payload['startDate'] = start_date.isoformat()
        if duration_days is not None:
            if duration_days <= 0:
                raise ValidationError("Duration must be positive", field_name="duration_days",
                                      error_code=ErrorCode.VALIDATION_VALUE_OUT_OF_RANGE)
            payload['durationDays'] = duration_days
        if note:
            payload['note'] = note
        return await self.api_client.post('/transactions/billing', json=payload)

    async def bill_addon(
        self,
        customer_id: str,
        amount: Optional[Any] = None,
        item_index: Optional[int] = None,
        note: Optional[str] = None
    ) -> Dict[str, Any]:
        """Bill a one-off charge, either a stored add-on item or a free amount."""
        if (amount is None) == (item_index is None):
            raise ValidationError("Provide exactly one of amount or item_index", field_name="amount")

        payload: Dict[str, Any] = {'customerId': _require_id(customer_id, 'customer_id'), 'note': note or ''}
        if item_index is not None:
            payload['itemIndex'] = item_index
        else:
            payload['amount'] = validate_payment_amount(amount)
        return await self.api_client.post('/transactions/addon', json=payload)
