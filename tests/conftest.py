"""
Shared fixtures for the CableDesk client tests.

``FakeBillingServer`` is an in-process stand-in for the billing back end,
served by ``aiohttp.test_utils.TestServer``. It accepts only the access
tokens in ``valid_tokens`` and issues ``next_access_token`` on refresh.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from cabledesk_client.api_client import CableDeskAPIClient
from cabledesk_client.auth.terminator import AppNavigator
from cabledesk_client.auth.token_storage import SecureTokenStorage
from cabledesk_shared.interfaces import INotifier
from cabledesk_shared.models import Platform

XLSX_BYTES = b"PK\x03\x04fake-xlsx-content"


class RecordingNotifier(INotifier):
    """Collects notices instead of printing them."""

    def __init__(self):
        self.messages: List[tuple] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.messages.append((message, level))


class FakeBillingServer:
    """Minimal billing back end with token checks and a refresh endpoint."""

    def __init__(self):
        self.valid_tokens = set()
        self.next_access_token = "tok2"
        self.refresh_status = 200
        self.refresh_body: Optional[Dict[str, Any]] = None
        self.refresh_delay = 0.0
        self.password = "secret"

        self.refresh_calls: List[Dict[str, Any]] = []
        self.refresh_cookies: List[Optional[str]] = []
        self.requests: List[Dict[str, Any]] = []
        self.uploads: List[bytes] = []

        self.customers = {
            "c1": {
                "_id": "c1", "name": "Asha Verma", "customerCode": "CD-001",
                "contactNumber": "9876543210", "locality": "Ward 4",
                "balanceAmount": 450, "active": True,
                "defaultExtraCharge": 20, "defaultDiscount": 10
            },
            "c2": {
                "_id": "c2", "name": "Ravi Kumar", "customerCode": "CD-002",
                "contactNumber": "9123456780", "balanceAmount": -50, "active": False
            },
        }
        self.products = [
            {"_id": "p1", "name": "Basic Pack", "customerPrice": 300, "operatorCost": 200,
             "billingInterval": {"value": 1, "unit": "months"}, "is_active": True},
            {"_id": "p2", "name": "Sports Add-on", "customerPrice": 50, "operatorCost": 30,
             "billingInterval": {"value": 30, "unit": "days"}, "is_active": False},
        ]
        self.agents = {
            "a1": {"_id": "a1", "name": "Vikram Singh", "mobile": "9000000001", "status": "active"},
        }
        self.subscriptions = [
            {"_id": "s1", "customerId": "c1", "productId": {"_id": "p1", "name": "Basic Pack"},
             "planType": "BASE", "status": "ACTIVE", "startDate": "2024-03-01T00:00:00.000Z",
             "expiryDate": "2024-03-31T00:00:00.000Z", "customerPrice": 300},
            {"_id": "s0", "customerId": "c1", "productId": "p2", "planType": "ADDON",
             "status": "TERMINATED", "customerPrice": 50},
        ]

        self.base_url = ""

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post('/api/auth/login', self.login)
        app.router.add_post('/api/auth/refresh', self.refresh)
        app.router.add_get('/api/customers', self.list_customers)
        app.router.add_get('/api/customers/export', self.export_spreadsheet)
        app.router.add_post('/api/customers/import', self.import_spreadsheet)
        app.router.add_get('/api/customers/{id}', self.get_customer)
        app.router.add_get('/api/customers/{id}/transactions', self.customer_transactions)
        app.router.add_post('/api/customers/{id}/adjust-balance', self.echo)
        app.router.add_get('/api/products/export/excel', self.export_spreadsheet)
        app.router.add_post('/api/products/import/excel', self.import_spreadsheet)
        app.router.add_get('/api/products', self.list_products)
        app.router.add_put('/api/products/{id}', self.update_product)
        app.router.add_post('/api/auth/change-password', self.echo)
        app.router.add_post('/api/transactions/billing', self.echo)
        app.router.add_get('/api/operator/agents', self.list_agents)
        app.router.add_post('/api/operator/agents', self.create_agent)
        app.router.add_put('/api/operator/agents/{id}', self.update_agent)
        app.router.add_delete('/api/operator/agents/{id}', self.delete_agent)
        app.router.add_patch('/api/operator/agents/{id}/change-password', self.echo)
        app.router.add_get('/api/subscriptions/customer/{id}', self.customer_subscriptions)
        app.router.add_post('/api/subscriptions/remove', self.echo)
        app.router.add_put('/api/subscriptions/{id}/change', self.echo)
        app.router.add_patch('/api/subscriptions/{id}/end', self.echo)
        app.router.add_post('/api/transactions/collection', self.echo)
        app.router.add_post('/api/transactions/addon', self.echo)
        app.router.add_get('/api/operator/profile', self.operator_profile)
        app.router.add_get('/api/broken', self.broken)
        return app

    def expire_access_tokens(self) -> None:
        self.valid_tokens.clear()

    def _check(self, request: web.Request) -> Optional[web.Response]:
        header = request.headers.get('Authorization')
        self.requests.append({
            'method': request.method,
            'path': request.path,
            'authorization': header,
            'query': dict(request.query)
        })
        if header and header.startswith('Bearer ') and header[7:] in self.valid_tokens:
            return None
        return web.json_response({'message': 'Invalid or expired token'}, status=401)

    async def login(self, request: web.Request) -> web.Response:
        body = await request.json()
        identifier = body.get('email') or body.get('contactNumber')
        if not identifier or body.get('password') != self.password:
            return web.json_response({'message': 'Invalid credentials'}, status=401)

        self.valid_tokens.add("tok1")
        response = web.json_response({
            'message': 'Login successful',
            'accessToken': 'tok1',
            'refreshToken': 'ref1',
            'user': {'id': 'u1', 'name': 'Asha Operator', 'role': 'operator', 'email': body.get('email')}
        })
        response.set_cookie('refreshToken', 'ref1', httponly=True, path='/')
        return response

    async def refresh(self, request: web.Request) -> web.Response:
        body = await request.json() if request.can_read_body else {}
        self.refresh_calls.append(body)
        self.refresh_cookies.append(request.cookies.get('refreshToken'))
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)

        if self.refresh_status != 200:
            return web.json_response({'message': 'Invalid refresh token'}, status=self.refresh_status)
        if self.refresh_body is not None:
            return web.json_response(self.refresh_body)

        self.valid_tokens = {self.next_access_token}
        return web.json_response({'accessToken': self.next_access_token})

    async def list_customers(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        items = list(self.customers.values())
        status = request.query.get('customerStatus')
        if status:
            items = [c for c in items if c['active'] == (status == 'active')]
        return web.json_response({
            'data': items,
            'pagination': {'total': len(items), 'page': int(request.query.get('page', 1)),
                           'limit': int(request.query.get('limit', 10)), 'totalPages': 1}
        })

    async def get_customer(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        customer = self.customers.get(request.match_info['id'])
        if not customer:
            return web.json_response({'message': 'Customer not found.'}, status=404)
        return web.json_response(customer)

    async def customer_transactions(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.json_response([
            {'_id': 't1', 'type': 'INVOICE', 'amount': 300, 'balanceBefore': 150,
             'balanceAfter': 450, 'createdAt': '2024-03-01T10:00:00.000Z'},
            {'_id': 't2', 'type': 'PAYMENT', 'amount': 100, 'balanceBefore': 450,
             'balanceAfter': 350, 'note': 'cash'},
        ])

    async def export_spreadsheet(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.Response(
            body=XLSX_BYTES,
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )

    async def import_spreadsheet(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        form = await request.post()
        upload = form['file']
        content = upload.file.read()
        self.uploads.append(content)
        return web.json_response({'message': f'Imported {upload.filename} ({len(content)} bytes)'})

    async def list_products(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.json_response(self.products)

    async def update_product(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        for product in self.products:
            if product['_id'] == request.match_info['id']:
                product.update(await request.json())
                return web.json_response(product)
        return web.json_response({'message': 'Product not found.'}, status=404)

    async def list_agents(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.json_response(list(self.agents.values()))

    async def create_agent(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        body = await request.json()
        if not all(body.get(k) for k in ('name', 'mobile', 'password')):
            return web.json_response({'message': 'Name, mobile and password are required.'}, status=400)
        agent_id = f"a{len(self.agents) + 1}"
        agent = {k: v for k, v in body.items() if k != 'password'}
        agent.update({'_id': agent_id, 'status': 'active'})
        self.agents[agent_id] = agent
        return web.json_response(agent, status=201)

    async def update_agent(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        agent = self.agents.get(request.match_info['id'])
        if not agent:
            return web.json_response({'message': 'Agent not found.'}, status=404)
        agent.update(await request.json())
        return web.json_response(agent)

    async def delete_agent(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        if self.agents.pop(request.match_info['id'], None) is None:
            return web.json_response({'message': 'Agent not found.'}, status=404)
        return web.json_response({'message': 'Agent deleted successfully.'})

    async def customer_subscriptions(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        customer_id = request.match_info['id']
        return web.json_response([s for s in self.subscriptions if s['customerId'] == customer_id])

    async def operator_profile(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.json_response({'_id': 'op1', 'name': 'Sunrise Cable'})

    async def echo(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.json_response({'path': request.path, 'received': await request.json()})

    async def broken(self, request: web.Request) -> web.Response:
        denied = self._check(request)
        if denied:
            return denied
        return web.json_response({'message': 'boom'}, status=500)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def navigator():
    return AppNavigator(initial_path="/customers")


@pytest.fixture
def file_storage(tmp_path):
    """Encrypted-file token storage that never touches the system keyring."""
    return SecureTokenStorage(storage_path=tmp_path / "credentials.enc", use_keyring=False)


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    return unused_port()


@pytest_asyncio.fixture
async def fake_server():
    backend = FakeBillingServer()
    server = TestServer(backend.make_app())
    await server.start_server()
    backend.base_url = str(server.make_url('/api'))
    yield backend
    await server.close()


@pytest_asyncio.fixture
async def web_client(fake_server, notifier, navigator):
    client = CableDeskAPIClient(
        fake_server.base_url,
        platform=Platform.WEB,
        notifier=notifier,
        navigator=navigator
    )
    yield client
    await client.close()


@pytest_asyncio.fixture
async def native_client(fake_server, file_storage, notifier, navigator):
    client = CableDeskAPIClient(
        fake_server.base_url,
        platform=Platform.NATIVE,
        storage=file_storage,
        notifier=notifier,
        navigator=navigator
    )
    yield client
    await client.close()
