"""Tests for event and command smart constructors."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from factories import allocation_row, order_event_body, restock_event_body
from warehouse.commands import (
    AllocateOrderStockCommand,
    CompleteOrderPaymentAcceptedCommand,
    DeallocateOrderPaymentRejectedCommand,
    GetOrderAllocationCommand,
    ListSkusCommand,
    RestockSkuCommand,
)
from warehouse.events import (
    IncomingOrderCreatedEvent,
    IncomingOrderPaymentRejectedEvent,
    IncomingSkuRestockedEvent,
    OrderStockAllocatedEvent,
    OrderStockDepletedEvent,
    SkuRestockedEvent,
)
from warehouse.model import OrderAllocationData
from warehouse.result import FailureKind, is_failure_of_kind, is_success
from warehouse.validators import AllocationStatus, SortDirection, WarehouseEventName


def _assert_invalid(result):
    assert is_failure_of_kind(result, FailureKind.INVALID_ARGUMENTS)
    assert result.transient is False


# ===========================================================================
# Events
# ===========================================================================


class TestIncomingEvents:
    def test_builds_from_camel_case_body(self):
        result = IncomingOrderCreatedEvent.validate_and_build(order_event_body("ORDER_CREATED_EVENT"))

        assert is_success(result)
        event = result.value
        assert event.event_name is WarehouseEventName.ORDER_CREATED_EVENT
        assert event.event_data.order_id == "ORD00001"
        assert event.subject_id == "ORDER_ID#ORD00001"

    def test_rejects_other_event_name(self):
        body = order_event_body("ORDER_PAYMENT_REJECTED_EVENT")
        _assert_invalid(IncomingOrderCreatedEvent.validate_and_build(body))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"orderId": "ORD"},
            {"sku": ""},
            {"units": 0},
            {"units": "2"},
            {"units": 2**64},
            {"orderId": "O" * 256},
            {"price": 1e10},
            {"price": -1},
            {"userId": None},
        ],
    )
    def test_any_invalid_field_fails_whole_build(self, overrides):
        body = order_event_body("ORDER_PAYMENT_REJECTED_EVENT", **overrides)
        result = IncomingOrderPaymentRejectedEvent.validate_and_build(body)
        _assert_invalid(result)

    def test_missing_event_data(self):
        body = order_event_body("ORDER_CREATED_EVENT")
        del body["eventData"]
        _assert_invalid(IncomingOrderCreatedEvent.validate_and_build(body))

    def test_none_input(self):
        _assert_invalid(IncomingOrderCreatedEvent.validate_and_build(None))

    def test_built_event_is_immutable(self):
        event = IncomingOrderCreatedEvent.validate_and_build(order_event_body("ORDER_CREATED_EVENT")).value
        with pytest.raises(ValidationError):
            event.event_name = WarehouseEventName.ORDER_STOCK_ALLOCATED_EVENT

    def test_restocked_event(self):
        result = IncomingSkuRestockedEvent.validate_and_build(restock_event_body())
        assert is_success(result)
        assert result.value.event_data.lot_id == "LOT00001"

    def test_integral_float_units_become_int(self):
        result = IncomingOrderCreatedEvent.validate_and_build(order_event_body("ORDER_CREATED_EVENT", units=2.0))

        assert is_success(result)
        assert result.value.event_data.units == 2
        assert type(result.value.event_data.units) is int


class TestOutgoingEvents:
    def test_allocated_event_fixes_name_and_timestamps(self):
        data = {"orderId": "ORD00001", "sku": "WIDGET1", "units": 2, "price": 10.5, "userId": "USER0001"}
        event = OrderStockAllocatedEvent.validate_and_build(data).value

        payload = event.to_dict()
        assert payload["eventName"] == "ORDER_STOCK_ALLOCATED_EVENT"
        assert payload["eventData"] == data
        assert payload["createdAt"] == payload["updatedAt"]

    def test_depleted_event_rejects_invalid_data(self):
        _assert_invalid(OrderStockDepletedEvent.validate_and_build({"orderId": "ORD00001"}))

    def test_sku_restocked_subject_id(self):
        event = SkuRestockedEvent.validate_and_build({"sku": "WIDGET1", "units": 3, "lotId": "LOT00009"}).value
        assert event.subject_id == "SKU#WIDGET1#LOT_ID#LOT00009"
        assert event.aggregate_type == "Sku"


# ===========================================================================
# Commands
# ===========================================================================


class TestAllocateOrderStockCommand:
    def test_builds_allocated_command(self, order_created_event):
        result = AllocateOrderStockCommand.validate_and_build(
            {"incoming_order_created_event": order_created_event()}
        )

        assert is_success(result)
        data = result.value.command_data
        assert data.order_id == "ORD00001"
        assert data.units == 2
        assert data.allocation_status is AllocationStatus.ALLOCATED
        assert data.created_at == data.updated_at

    def test_rejects_wrong_event_type(self, payment_rejected_event):
        result = AllocateOrderStockCommand.validate_and_build(
            {"incoming_order_created_event": payment_rejected_event()}
        )
        _assert_invalid(result)

    def test_rejects_none(self):
        _assert_invalid(AllocateOrderStockCommand.validate_and_build(None))


class TestDeallocateOrderPaymentRejectedCommand:
    def test_uses_stored_units_and_current_status_as_guard(self, payment_rejected_event):
        existing = OrderAllocationData(**allocation_row(units=3))
        result = DeallocateOrderPaymentRejectedCommand.validate_and_build(
            {
                "existing_order_allocation_data": existing,
                "incoming_order_payment_rejected_event": payment_rejected_event(units=7),
            }
        )

        assert is_success(result)
        data = result.value.command_data
        assert data.units == 3
        assert data.allocation_status is AllocationStatus.DEALLOCATED_PAYMENT_REJECTED
        assert data.expected_allocation_status is AllocationStatus.ALLOCATED

    def test_rejects_other_order(self, payment_rejected_event):
        existing = OrderAllocationData(**allocation_row(order_id="ORD99999"))
        result = DeallocateOrderPaymentRejectedCommand.validate_and_build(
            {
                "existing_order_allocation_data": existing,
                "incoming_order_payment_rejected_event": payment_rejected_event(),
            }
        )
        _assert_invalid(result)

    def test_rejects_allocation_not_allocated(self, payment_rejected_event):
        existing = OrderAllocationData(**allocation_row(allocation_status="COMPLETED_PAYMENT_ACCEPTED"))
        result = DeallocateOrderPaymentRejectedCommand.validate_and_build(
            {
                "existing_order_allocation_data": existing,
                "incoming_order_payment_rejected_event": payment_rejected_event(),
            }
        )
        _assert_invalid(result)

    def test_rejects_missing_existing_allocation(self, payment_rejected_event):
        result = DeallocateOrderPaymentRejectedCommand.validate_and_build(
            {"incoming_order_payment_rejected_event": payment_rejected_event()}
        )
        _assert_invalid(result)


class TestCompleteOrderPaymentAcceptedCommand:
    def test_builds_completion(self, payment_accepted_event):
        existing = OrderAllocationData(**allocation_row())
        result = CompleteOrderPaymentAcceptedCommand.validate_and_build(
            {
                "existing_order_allocation_data": existing,
                "incoming_order_payment_accepted_event": payment_accepted_event(),
            }
        )

        assert is_success(result)
        assert result.value.command_data.allocation_status is AllocationStatus.COMPLETED_PAYMENT_ACCEPTED


class TestReadCommands:
    def test_get_order_allocation(self):
        result = GetOrderAllocationCommand.validate_and_build({"order_id": "ORD00001", "sku": "WIDGET1"})
        assert is_success(result)
        _assert_invalid(GetOrderAllocationCommand.validate_and_build({"order_id": "ORD00001"}))

    def test_list_skus_defaults(self):
        query = ListSkusCommand.validate_and_build({"sku": None, "sort_direction": None, "limit": None})
        data = query.value.query_data
        assert data.sku is None
        assert data.sort_direction is SortDirection.ASC
        assert data.limit == 50

    @pytest.mark.parametrize("query", [{"limit": 0}, {"limit": 1001}, {"sortDirection": "up"}, {"sku": "abc"}])
    def test_list_skus_rejects_out_of_range(self, query):
        _assert_invalid(ListSkusCommand.validate_and_build(query))

    def test_restock_command(self, sku_restocked_event):
        result = RestockSkuCommand.validate_and_build({"incoming_sku_restocked_event": sku_restocked_event()})
        assert is_success(result)
        assert result.value.command_data.lot_id == "LOT00001"
