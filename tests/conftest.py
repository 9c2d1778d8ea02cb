# LedgerPOS API Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test database provisioning (ephemeral SQLite file per test run)
# - An httpx client bound to the Flask app in-process (WSGI transport)
# - Failure message formatting
# - Store / product / stock data factories

import os
import sys
import tempfile
import shutil
import itertools
from pathlib import Path
from typing import Generator, Optional, Dict, Any, List
from dataclasses import dataclass

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))

from ledgerpos import create_app  # noqa: E402
from ledgerpos.extensions import db  # noqa: E402
from ledgerpos.models import Product, Store  # noqa: E402


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    base_url: str = os.environ.get("TEST_BACKEND_URL", "http://ledgerpos.test")
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))

    # Database (ephemeral per run); set dynamically
    db_path: str = ""


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """

    __test__ = False

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}

        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_error: Optional[str] = None
):
    """
    Assert HTTP response status and optionally the error code in the body.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_error is not None:
        actual_error = response.json().get("error")
        if actual_error != expected_error:
            raise TestFailure(
                scenario=scenario,
                expected=f"error = {expected_error}",
                actual=f"error = {actual_error}",
                likely_cause="Wrong LedgerError subclass raised for this failure",
                code_location=code_location,
                response=response
            )


def _infer_cause(response: httpx.Response) -> str:
    """Infer likely cause from response status/body."""
    if response.status_code == 404:
        return "Resource not found - wrong store, sale or refund ID"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409:
        return "Conflict - insufficient stock, refund bound or sale state violated"
    elif response.status_code == 503:
        return "Transaction could not commit - lock contention exhausted the retries"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT
# =============================================================================

class APIClient:
    """
    httpx client wrapper bound to the Flask app through the WSGI transport.
    """

    def __init__(self, app, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            transport=httpx.WSGITransport(app=app),
            base_url=self.base_url,
            timeout=timeout,
        )

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        headers = {"Content-Type": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(path, headers=self._headers(), params=params, **kwargs)

    def post(self, path: str, json: Optional[Dict] = None, headers: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(path, headers=self._headers(headers), json=json, **kwargs)

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(path, headers=self._headers(), json=json, **kwargs)

    def close(self):
        """Close the HTTP client."""
        self.client.close()


# =============================================================================
# TEST DATA FACTORIES
# =============================================================================

class TestDataFactory:
    """
    Creates catalog rows directly and everything else through the API.
    """

    __test__ = False

    _counter = itertools.count(1)

    def __init__(self, app, client: APIClient):
        self.app = app
        self.client = client

    def create_store(self, tax_rate_bps: int = 0) -> int:
        n = next(self._counter)
        with self.app.app_context():
            store = Store(name=f"Test Store {n}", tax_rate_bps=tax_rate_bps)
            db.session.add(store)
            db.session.commit()
            return store.id

    def create_product(self, price_cents: int = 999) -> int:
        n = next(self._counter)
        with self.app.app_context():
            product = Product(sku=f"TEST-SKU-{n}", name=f"Test Product {n}", price_cents=price_cents)
            db.session.add(product)
            db.session.commit()
            return product.id

    def set_stock(self, store_id: int, product_id: int, quantity: int) -> Dict:
        response = self.client.put(f"/api/stock/{store_id}/{product_id}", json={"quantity": quantity})
        if response.status_code == 200:
            return response.json()["stock"]
        raise TestFailure(
            scenario="Set stock",
            expected="HTTP 200",
            actual=f"HTTP {response.status_code}",
            likely_cause="Stock update failed - check store/product exist",
            code_location="backend/ledgerpos/routes/stock.py:set_stock_route",
            response=response
        )

    def get_stock(self, store_id: int, product_id: int) -> int:
        return self.client.get(f"/api/stock/{store_id}/{product_id}").json()["quantity"]

    def create_sale(
        self,
        store_id: int,
        lines: List[Dict],
        customer_id: int = 7,
        headers: Optional[Dict] = None
    ) -> Dict:
        response = self.client.post("/api/sales", json={
            "store_id": store_id,
            "customer_id": customer_id,
            "lines": lines,
        }, headers=headers)
        if response.status_code == 201:
            return response.json()["sale"]
        raise TestFailure(
            scenario="Create sale",
            expected="HTTP 201",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location="backend/ledgerpos/routes/sales.py:create_sale_route",
            response=response
        )

    def get_sale(self, sale_id: int) -> Dict:
        return self.client.get(f"/api/sales/{sale_id}").json()["sale"]


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> Generator[TestConfig, None, None]:
    """Provide test configuration with an ephemeral database file."""
    config = TestConfig()
    temp_dir = tempfile.mkdtemp(prefix="ledgerpos_test_")
    config.db_path = str(Path(temp_dir) / "test_ledgerpos.sqlite3")
    yield config
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="session")
def api_app(test_config: TestConfig):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{test_config.db_path}",
        "CACHE_INVALIDATION_ASYNC": False,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture(scope="session")
def api_client(api_app, test_config: TestConfig) -> Generator[APIClient, None, None]:
    client = APIClient(api_app, test_config.base_url, timeout=test_config.request_timeout)
    yield client
    client.close()


@pytest.fixture
def factory(api_app, api_client: APIClient) -> TestDataFactory:
    """Provide test data factory."""
    return TestDataFactory(api_app, api_client)


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "sales: Sale workflow tests")
    config.addinivalue_line("markers", "refunds: Refund workflow tests")
    config.addinivalue_line("markers", "stock: Stock ledger tests")
    config.addinivalue_line("markers", "stress: Load/stress tests")
