"""Unit tests for the SubscriptionRegistry."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.helpers.expectations import expect_async_exception, expect_exception
from tests.helpers.fake_mqtt import wait_for_condition
from yoto_sync.mqtt.subscriptions import DeviceCallbacks, SubscriptionRegistry, decode_payload
from yoto_sync.mqtt.topics import MessageCategory, device_topics
from yoto_sync.transport.connection_manager import ConnectionState
from yoto_sync.transport.exceptions import (
    MalformedMessageError,
    NotConnectedError,
    PartialSubscriptionError,
    PublishTimeoutError,
    SubscriptionError,
    YotoConnectionError,
)

DEVICE_ID = "abc123"
OTHER_DEVICE = "def456"


def _registry(connection, settle_delay: float = 0.0) -> SubscriptionRegistry:
    return SubscriptionRegistry(connection, settle_delay=settle_delay)


class TestSubscribe:
    """Tests for subscribe_to_device."""

    @pytest.mark.asyncio
    async def test_subscribes_all_topics_in_one_request(self, mock_connection):
        registry = _registry(mock_connection)

        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())

        mock_connection.subscribe.assert_awaited_once_with(device_topics(DEVICE_ID))
        assert registry.is_subscribed(DEVICE_ID)
        assert registry.subscribed_devices() == (DEVICE_ID,)

    @pytest.mark.asyncio
    async def test_second_subscribe_is_a_noop(self, mock_connection):
        registry = _registry(mock_connection)

        assert await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks()) is True
        assert await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks()) is False

        assert mock_connection.subscribe.await_count == 1

    @pytest.mark.asyncio
    async def test_requires_connected_session(self, mock_connection):
        mock_connection.is_connected.return_value = False
        mock_connection.state = ConnectionState.RECONNECTING
        registry = _registry(mock_connection)

        error = await expect_async_exception(
            registry.subscribe_to_device,
            NotConnectedError,
            DEVICE_ID,
            DeviceCallbacks(),
        )

        assert error.state == "reconnecting"
        mock_connection.subscribe.assert_not_awaited()
        assert not registry.is_subscribed(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_partial_failure_rolls_back(self, mock_connection):
        """A refused topic unsubscribes the granted ones and registers nothing."""
        status, events, response = device_topics(DEVICE_ID)
        mock_connection.subscribe.return_value = (response,)
        registry = _registry(mock_connection)

        error = await expect_async_exception(
            registry.subscribe_to_device,
            PartialSubscriptionError,
            DEVICE_ID,
            DeviceCallbacks(),
        )

        assert error.failed_topics == (response,)
        mock_connection.unsubscribe.assert_awaited_once_with((status, events))
        assert not registry.is_subscribed(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_rollback_failure_still_raises_partial(self, mock_connection):
        mock_connection.subscribe.return_value = (device_topics(DEVICE_ID)[0],)
        mock_connection.unsubscribe.side_effect = YotoConnectionError("gone")
        registry = _registry(mock_connection)

        _ = await expect_async_exception(
            registry.subscribe_to_device,
            PartialSubscriptionError,
            DEVICE_ID,
            DeviceCallbacks(),
        )
        assert not registry.is_subscribed(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_transport_failure_raises_subscription_error(self, mock_connection):
        mock_connection.subscribe.side_effect = YotoConnectionError("Disconnected")
        registry = _registry(mock_connection)

        error = await expect_async_exception(
            registry.subscribe_to_device,
            SubscriptionError,
            DEVICE_ID,
            DeviceCallbacks(),
        )

        assert error.device_id == DEVICE_ID
        assert not registry.is_subscribed(DEVICE_ID)


class TestBaselinePull:
    """Tests for the baseline pull scheduled after subscribing."""

    @pytest.mark.asyncio
    async def test_baseline_requested_after_settle_delay(self, mock_connection):
        requester = AsyncMock()
        registry = _registry(mock_connection, settle_delay=0.01)
        registry.set_baseline_requester(requester)

        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        requester.assert_not_awaited()

        await wait_for_condition(lambda: requester.await_count == 1)
        requester.assert_awaited_once_with(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_baseline_failure_is_not_raised(self, mock_connection):
        requester = AsyncMock(side_effect=PublishTimeoutError("t", 5.0))
        registry = _registry(mock_connection)
        registry.set_baseline_requester(requester)

        with patch("yoto_sync.mqtt.subscriptions.logger") as mock_logger:
            _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
            await wait_for_condition(lambda: mock_logger.debug.call_count >= 1 and requester.await_count == 1)

        sub = registry.subscriptions[DEVICE_ID]
        assert sub.baseline_task is not None
        await wait_for_condition(sub.baseline_task.done)
        assert sub.baseline_task.exception() is None

    @pytest.mark.asyncio
    async def test_unsubscribe_cancels_pending_baseline(self, mock_connection):
        requester = AsyncMock()
        registry = _registry(mock_connection, settle_delay=10.0)
        registry.set_baseline_requester(requester)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        task = registry.subscriptions[DEVICE_ID].baseline_task
        assert task is not None

        await registry.unsubscribe_from_device(DEVICE_ID)
        await wait_for_condition(task.done)

        assert task.cancelled()
        requester.assert_not_awaited()


class TestUnsubscribe:
    """Tests for unsubscribe_from_device."""

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_device(self, mock_connection):
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())

        await registry.unsubscribe_from_device(DEVICE_ID)

        mock_connection.unsubscribe.assert_awaited_once_with(device_topics(DEVICE_ID))
        assert not registry.is_subscribed(DEVICE_ID)

    @pytest.mark.asyncio
    async def test_unknown_device_is_a_noop(self, mock_connection):
        registry = _registry(mock_connection)

        await registry.unsubscribe_from_device(DEVICE_ID)

        mock_connection.unsubscribe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsubscribe_while_disconnected_drops_locally(self, mock_connection):
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        mock_connection.is_connected.return_value = False

        await registry.unsubscribe_from_device(DEVICE_ID)

        mock_connection.unsubscribe.assert_not_awaited()
        assert not registry.is_subscribed(DEVICE_ID)


class TestResubscribe:
    """Tests for resubscribe_all."""

    @pytest.mark.asyncio
    async def test_replays_in_registration_order(self, mock_connection):
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        _ = await registry.subscribe_to_device(OTHER_DEVICE, DeviceCallbacks())
        mock_connection.subscribe.reset_mock()

        await registry.resubscribe_all()

        replayed = [c.args[0] for c in mock_connection.subscribe.await_args_list]
        assert replayed == [device_topics(DEVICE_ID), device_topics(OTHER_DEVICE)]

    @pytest.mark.asyncio
    async def test_failed_replay_marks_device_stale(self, mock_connection):
        reporter = MagicMock()
        registry = _registry(mock_connection)
        registry.set_error_reporter(reporter)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        _ = await registry.subscribe_to_device(OTHER_DEVICE, DeviceCallbacks())
        mock_connection.subscribe.side_effect = [YotoConnectionError("refused"), ()]

        await registry.resubscribe_all()

        assert registry.is_stale(DEVICE_ID)
        assert not registry.is_stale(OTHER_DEVICE)
        reporter.assert_called_once()
        device_id, error = reporter.call_args.args
        assert device_id == DEVICE_ID
        assert isinstance(error, SubscriptionError)

    @pytest.mark.asyncio
    async def test_successful_replay_clears_stale_flag(self, mock_connection):
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        registry.subscriptions[DEVICE_ID].stale = True

        await registry.resubscribe_all()

        assert not registry.is_stale(DEVICE_ID)


class TestDispatch:
    """Tests for dispatch."""

    @pytest.mark.asyncio
    async def test_routes_by_topic(self, mock_connection):
        on_status, on_events, on_response = MagicMock(), MagicMock(), MagicMock()
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks(on_status, on_events, on_response))
        status, events, response = device_topics(DEVICE_ID)

        await registry.dispatch(status, json.dumps({"batteryLevel": 90}).encode())
        await registry.dispatch(events, json.dumps({"playbackStatus": "playing"}).encode())
        await registry.dispatch(response, json.dumps({"status": {"req_body": "{}"}}).encode())

        on_status.assert_called_once_with(DEVICE_ID, {"batteryLevel": 90})
        on_events.assert_called_once_with(DEVICE_ID, {"playbackStatus": "playing"})
        on_response.assert_called_once_with(DEVICE_ID, {"status": {"req_body": "{}"}})

    @pytest.mark.asyncio
    async def test_malformed_payload_is_dropped(self, mock_connection):
        on_status = MagicMock()
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks(on_status=on_status))

        with patch("yoto_sync.mqtt.subscriptions.registry.record_malformed_message") as mock_record:
            await registry.dispatch(device_topics(DEVICE_ID)[0], b"{not json")

        on_status.assert_not_called()
        mock_record.assert_called_once_with("status")

    @pytest.mark.asyncio
    async def test_unknown_device_is_dropped(self, mock_connection):
        on_status = MagicMock()
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks(on_status=on_status))

        await registry.dispatch(device_topics(OTHER_DEVICE)[0], b"{}")

        on_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_callback_is_skipped(self, mock_connection):
        registry = _registry(mock_connection)
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())

        await registry.dispatch(device_topics(DEVICE_ID)[2], b'"ok"')


class TestDecodePayload:
    """Tests for decode_payload."""

    def test_status_must_be_an_object(self):
        error = expect_exception(
            decode_payload,
            MalformedMessageError,
            "device/a/data/status",
            MessageCategory.STATUS,
            b"[1, 2]",
        )
        assert "JSON object" in error.reason

    def test_response_may_be_any_json(self):
        assert decode_payload("device/a/response", MessageCategory.RESPONSE, b"[1]") == [1]

    def test_invalid_utf8(self):
        _ = expect_exception(
            decode_payload,
            MalformedMessageError,
            "device/a/data/events",
            MessageCategory.EVENTS,
            b"\xff\xfe",
        )


class TestClear:
    """Tests for clear."""

    @pytest.mark.asyncio
    async def test_clear_drops_everything(self, mock_connection):
        registry = _registry(mock_connection, settle_delay=10.0)
        registry.set_baseline_requester(AsyncMock())
        _ = await registry.subscribe_to_device(DEVICE_ID, DeviceCallbacks())
        task = registry.subscriptions[DEVICE_ID].baseline_task

        registry.clear()
        assert task is not None
        await wait_for_condition(task.done)

        assert registry.subscribed_devices() == ()
        assert task.cancelled()
