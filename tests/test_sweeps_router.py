"""Unit tests for sweep and chain API routes."""

import unittest
from unittest.mock import AsyncMock
from uuid import uuid4

from fastapi import FastAPI
from fastapi.testclient import TestClient

from chainsettle.api.dependencies import (
    get_chain_registry,
    get_intake_service,
    get_sweep_coordinator,
)
from chainsettle.api.routers import chains, sweeps
from chainsettle.application.chain_registry import ChainRegistry
from chainsettle.application.deposit_address import DepositAddressResolver
from chainsettle.application.use_cases.intake import PaymentIntakeService
from chainsettle.domain.chains import KNOWN_CHAINS
from chainsettle.domain.entities import ReleaseType, SweepItemResult, SweepResult
from chainsettle.domain.errors import ErrorKind, InvalidPaymentStateError
from tests.fixtures import InMemoryPaymentRepository

SWEEP_TX = "0x" + "cd" * 32


class TestSweepsRouter(unittest.TestCase):
    """Test cases for sweeps router."""

    def setUp(self):
        """Set up test fixtures."""
        self.app = FastAPI()
        self.app.include_router(sweeps.router, prefix="/api/v1")

        self.mock_coordinator = AsyncMock()
        self.app.dependency_overrides[get_sweep_coordinator] = (
            lambda: self.mock_coordinator
        )

        self.client = TestClient(self.app)

    def tearDown(self):
        """Clean up after tests."""
        self.app.dependency_overrides.clear()

    def test_sweep_success(self):
        payment_id = uuid4()
        self.mock_coordinator.sweep.return_value = SweepResult(
            payment_id=payment_id,
            chain_id=8453,
            sweep_transaction_hash=SWEEP_TX,
            fee_bps=250,
            payout_amount=97_500_000,
            platform_fee=2_500_000,
        )

        response = self.client.post(
            "/api/v1/sweeps",
            json={"payment_id": str(payment_id), "fee_bps": 250, "release_type": "automatic"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["sweep_transaction_hash"], SWEEP_TX)
        self.assertEqual(response.json()["platform_fee"], "2500000")
        self.mock_coordinator.sweep.assert_called_once_with(
            payment_id, fee_bps=250, release_type=ReleaseType.AUTOMATIC
        )

    def test_sweep_unsettled_payment_conflicts(self):
        self.mock_coordinator.sweep.side_effect = InvalidPaymentStateError(
            "Payment is pending; sweep requires escrow or completed"
        )

        response = self.client.post("/api/v1/sweeps", json={"payment_id": str(uuid4())})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["kind"], "invalid_state")

    def test_sweep_rejects_out_of_range_fee(self):
        response = self.client.post(
            "/api/v1/sweeps", json={"payment_id": str(uuid4()), "fee_bps": 10_001}
        )

        self.assertEqual(response.status_code, 422)
        self.mock_coordinator.sweep.assert_not_called()

    def test_batch_sweep_reports_each_item(self):
        ok_id, bad_id = uuid4(), uuid4()
        self.mock_coordinator.batch_sweep.return_value = [
            SweepItemResult(payment_id=ok_id, success=True, sweep_transaction_hash=SWEEP_TX),
            SweepItemResult(
                payment_id=bad_id,
                success=False,
                error_kind=ErrorKind.INVALID_STATE,
                error_message="Payment is pending",
            ),
        ]

        response = self.client.post(
            "/api/v1/sweeps/batch",
            json={"items": [{"payment_id": str(ok_id)}, {"payment_id": str(bad_id)}]},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item["success"] for item in body], [True, False])
        self.assertEqual(body[1]["error_kind"], "invalid_state")
        (requests,) = self.mock_coordinator.batch_sweep.call_args.args
        self.assertEqual([r.payment_id for r in requests], [ok_id, bad_id])

    def test_batch_sweep_requires_items(self):
        response = self.client.post("/api/v1/sweeps/batch", json={"items": []})

        self.assertEqual(response.status_code, 422)


class TestChainsRouter(unittest.TestCase):
    """Test cases for chains router."""

    def setUp(self):
        """Set up test fixtures."""
        self.app = FastAPI()
        self.app.include_router(chains.router, prefix="/api/v1")

        self.registry = ChainRegistry.from_definitions(KNOWN_CHAINS, {})
        self.resolver = DepositAddressResolver(self.registry)
        self.intake = PaymentIntakeService(
            InMemoryPaymentRepository(), self.registry, self.resolver
        )
        self.app.dependency_overrides[get_chain_registry] = lambda: self.registry
        self.app.dependency_overrides[get_intake_service] = lambda: self.intake

        self.client = TestClient(self.app)

    def tearDown(self):
        """Clean up after tests."""
        self.app.dependency_overrides.clear()

    def test_list_chains(self):
        response = self.client.get("/api/v1/chains")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([c["chain_id"] for c in response.json()], [56, 8453, 42161])
        self.assertEqual(response.json()[1]["required_confirmations"], 20)

    def test_deposit_address_accepts_hex_chain_id(self):
        response = self.client.get("/api/v1/chains/0x2105/deposit-addresses/order-1001")

        self.assertEqual(response.status_code, 200)
        expected = self.resolver.derive_address(8453, "order-1001")
        self.assertEqual(response.json()["deposit_address"], expected.address)
        self.assertEqual(response.json()["chain_id"], 8453)

    def test_deposit_address_unsupported_chain(self):
        response = self.client.get("/api/v1/chains/1/deposit-addresses/order-1001")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["kind"], "unsupported_chain")


if __name__ == "__main__":
    unittest.main()
