"""
Tests for the payload registry and the built-in payload schemas.
"""

import pytest
from pydantic import BaseModel

from notification_service.errors import InvalidPayload
from notification_service.payload import (
    MASTER_ORDER_CREATED,
    USER_ORDER_CREATED,
    WORKER_LOGIN,
    PayloadRegistry,
    PayloadSchema,
    build_payload_registry,
)


class OrderPayload(BaseModel):
    order_id: int
    amount: int


class TestPayloadRegistry:
    """Test register/resolve semantics."""

    def test_resolve_unknown_event_returns_none(self):
        registry = PayloadRegistry()
        assert registry.resolve(42) is None
        assert 42 not in registry

    def test_register_then_resolve(self):
        registry = PayloadRegistry()
        schema = PayloadSchema(name="OrderPayload", model=OrderPayload, fields=("order_id", "amount"))
        registry.register(7, schema)

        assert registry.resolve(7) is schema
        assert len(registry) == 1

    def test_last_registration_wins(self):
        registry = PayloadRegistry()
        first = PayloadSchema(name="First", model=OrderPayload, fields=("order_id",))
        second = PayloadSchema(name="Second", model=OrderPayload, fields=("amount",))
        registry.register(7, first)
        registry.register(7, second)

        assert registry.resolve(7) is second
        assert len(registry) == 1

    def test_built_in_registry_covers_catalog_events(self):
        registry = build_payload_registry()
        for event_id in (MASTER_ORDER_CREATED, USER_ORDER_CREATED, WORKER_LOGIN):
            assert registry.resolve(event_id) is not None


class TestMasterOrderCreated:
    """Test decoding of the staff order payload."""

    @pytest.fixture
    def schema(self):
        return build_payload_registry().resolve(MASTER_ORDER_CREATED)

    def test_decode_and_args_in_field_order(self, schema):
        payload = schema.decode({
            "order_id": 7,
            "username": "ann",
            "phone_number": "+15551234",
            "amount": 1500,
        })
        assert schema.template_args(payload) == (7, "ann", "+15551234", 1500)

    def test_invalid_phone_number_rejected(self, schema):
        with pytest.raises(InvalidPayload):
            schema.decode({
                "order_id": 7,
                "username": "ann",
                "phone_number": "5551234",
                "amount": 1500,
            })

    def test_missing_field_rejected(self, schema):
        with pytest.raises(InvalidPayload) as exc_info:
            schema.decode({"order_id": 7, "username": "ann", "amount": 1500})
        assert "phone_number" in exc_info.value.detail

    def test_unknown_field_rejected(self, schema):
        with pytest.raises(InvalidPayload):
            schema.decode({
                "order_id": 7,
                "username": "ann",
                "phone_number": "+15551234",
                "amount": 1500,
                "coupon": "FREE",
            })

    def test_non_object_body_rejected(self, schema):
        with pytest.raises(InvalidPayload):
            schema.decode(None)
        with pytest.raises(InvalidPayload):
            schema.decode([1, 2, 3])


class TestUserOrderCreated:
    def test_wrong_type_rejected(self):
        schema = build_payload_registry().resolve(USER_ORDER_CREATED)
        with pytest.raises(InvalidPayload):
            schema.decode({"order_id": "seven", "amount": 10})

    def test_args(self):
        schema = build_payload_registry().resolve(USER_ORDER_CREATED)
        payload = schema.decode({"order_id": 12, "amount": 300})
        assert schema.template_args(payload) == (12, 300)


class TestWorkerLogin:
    """Login time is rendered in the worker's local time."""

    def test_login_time_shifted_by_offset(self):
        schema = build_payload_registry().resolve(WORKER_LOGIN)
        payload = schema.decode({
            "username": "bob",
            "login_at": "2025-01-15T10:00:00Z",
            "time_offset": 3,
        })
        assert schema.template_args(payload) == ("bob", "15.01.2025 13:00")

    def test_naive_time_treated_as_utc(self):
        schema = build_payload_registry().resolve(WORKER_LOGIN)
        payload = schema.decode({
            "username": "bob",
            "login_at": "2025-01-15T23:30:00",
            "time_offset": 1,
        })
        assert schema.template_args(payload) == ("bob", "16.01.2025 00:30")

    def test_offset_out_of_range_rejected(self):
        schema = build_payload_registry().resolve(WORKER_LOGIN)
        with pytest.raises(InvalidPayload):
            schema.decode({
                "username": "bob",
                "login_at": "2025-01-15T10:00:00Z",
                "time_offset": 20,
            })
