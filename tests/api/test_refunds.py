# LedgerPOS API Tests - Refunds
#
# Tests for:
# - Full refund (stock restored, sale refunded)
# - Partial refund of a multi-line sale
# - Refund bounds (quantity left, terminal sale state)

import pytest

from tests.conftest import APIClient, TestFailure, assert_response, TestDataFactory


def _line(product_id: int, quantity: int, unit_price: float = 9.99):
    return {"product_id": product_id, "quantity": quantity, "unit_price": unit_price}


class TestRefunds:

    @pytest.mark.smoke
    @pytest.mark.refunds
    def test_full_refund(self, api_client: APIClient, factory: TestDataFactory):
        """
        SCENARIO: Refund a 3 x 9.99 sale in full
        EXPECTED: HTTP 201, refund total 29.97, sale refunded, stock back to 5
        """
        store_id = factory.create_store()
        product_id = factory.create_product()
        factory.set_stock(store_id, product_id, 5)
        sale = factory.create_sale(store_id, [_line(product_id, 3)])

        response = api_client.post("/api/refunds", json={"sale_id": sale["id"], "reason": "Changed mind"})

        assert_response(
            response, 201,
            scenario="Full refund",
            code_location="backend/ledgerpos/routes/refunds.py:create_refund_route"
        )
        refund = response.json()["refund"]
        if refund["total"] != 29.97 or refund["sale_status"] != "refunded":
            raise TestFailure(
                scenario="Full refund amounts",
                expected="total = 29.97, sale_status = refunded",
                actual=f"total = {refund['total']}, sale_status = {refund['sale_status']}",
                likely_cause="Refund priced off something other than the original line or status not derived",
                code_location="backend/ledgerpos/services/refund_service.py:submit_refund",
                response=response
            )
        assert factory.get_stock(store_id, product_id) == 5

    @pytest.mark.refunds
    def test_partial_refund_of_two_line_sale(self, api_client: APIClient, factory: TestDataFactory):
        """
        SCENARIO: Line A qty 2, line B qty 3; refund 1 unit of A
        EXPECTED: partially_refunded, A stock +1, B stock unchanged
        """
        store_id = factory.create_store()
        product_a = factory.create_product()
        product_b = factory.create_product()
        factory.set_stock(store_id, product_a, 5)
        factory.set_stock(store_id, product_b, 5)
        sale = factory.create_sale(store_id, [_line(product_a, 2), _line(product_b, 3, 3.49)])

        response = api_client.post("/api/refunds", json={
            "sale_id": sale["id"],
            "lines": [{"product_id": product_a, "quantity": 1}],
        })

        assert_response(response, 201, scenario="Partial refund",
                        code_location="backend/ledgerpos/services/refund_service.py:submit_refund")
        assert response.json()["refund"]["sale_status"] == "partially_refunded"
        assert factory.get_stock(store_id, product_a) == 4
        assert factory.get_stock(store_id, product_b) == 2

    @pytest.mark.refunds
    def test_refund_more_than_remains(self, api_client: APIClient, factory: TestDataFactory):
        """
        SCENARIO: Sale of 4, refund 2, then try to refund 4
        EXPECTED: HTTP 409 refund_exceeds_original, nothing changes
        """
        store_id = factory.create_store()
        product_id = factory.create_product()
        factory.set_stock(store_id, product_id, 5)
        sale = factory.create_sale(store_id, [_line(product_id, 4)])

        first = api_client.post("/api/refunds", json={
            "sale_id": sale["id"],
            "lines": [{"product_id": product_id, "quantity": 2}],
        })
        assert_response(first, 201, scenario="First partial refund",
                        code_location="backend/ledgerpos/services/refund_service.py:submit_refund")

        response = api_client.post("/api/refunds", json={
            "sale_id": sale["id"],
            "lines": [{"product_id": product_id, "quantity": 4}],
        })

        assert_response(
            response, 409,
            scenario="Refund beyond remaining quantity",
            code_location="backend/ledgerpos/services/refund_service.py:_allocate",
            expected_error="refund_exceeds_original"
        )
        assert factory.get_stock(store_id, product_id) == 3

        refunds = api_client.get("/api/refunds", params={"sale_id": sale["id"]}).json()["refunds"]
        assert len(refunds) == 1

    @pytest.mark.refunds
    def test_refunded_sale_is_closed(self, api_client: APIClient, factory: TestDataFactory):
        store_id = factory.create_store()
        product_id = factory.create_product()
        factory.set_stock(store_id, product_id, 5)
        sale = factory.create_sale(store_id, [_line(product_id, 1)])
        api_client.post("/api/refunds", json={"sale_id": sale["id"]})

        response = api_client.post("/api/refunds", json={"sale_id": sale["id"]})

        assert_response(
            response, 409,
            scenario="Refund a fully refunded sale",
            code_location="backend/ledgerpos/services/refund_service.py:submit_refund",
            expected_error="invalid_refund_state"
        )

    @pytest.mark.refunds
    def test_unknown_sale(self, api_client: APIClient):
        response = api_client.post("/api/refunds", json={"sale_id": 987654})

        assert_response(
            response, 404,
            scenario="Refund a sale that does not exist",
            code_location="backend/ledgerpos/services/sales_service.py:load_sale",
            expected_error="sale_not_found"
        )
