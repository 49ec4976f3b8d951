"""Tests for the Device client."""

import asyncio
import logging
import time

import pytest

import miioapi
from conftest import DEVICE_ID, FAST_OPTIONS, TOKEN, TOKEN_HEX
from miioapi.device import Device, SessionState
from miioapi.exceptions import ChecksumError, DeviceError, SocketError, SocketTimeoutError

HANDSHAKE_BYTES = bytes.fromhex("21310020" + "ff" * 28)


async def discover(transport, **options):
    return await Device.discover(
        "192.168.1.31", TOKEN_HEX, {**FAST_OPTIONS, **options}, transport=transport
    )


class TestDiscover:
    """Tests for Device.discover."""

    @pytest.mark.asyncio
    async def test_sends_handshake_frame(self, mock_transport):
        """Test the handshake frame is magic, size 32 and 0xFF fill."""
        await discover(mock_transport)
        mock_transport.assert_written(HANDSHAKE_BYTES, index=0)
        mock_transport.assert_write_count(1)

    @pytest.mark.asyncio
    async def test_seeds_id_and_timestamp(self, mock_transport, fake_device):
        """Test the device id and clock come from the handshake reply."""
        device = await discover(mock_transport)
        assert device.id == DEVICE_ID
        assert device.timestamp == fake_device.timestamp
        assert device.last_seen_at == pytest.approx(time.time(), abs=5)
        assert device.state == SessionState.IDLE
        assert device.transport is mock_transport

    @pytest.mark.asyncio
    async def test_first_call_skips_handshake(self, mock_transport, fake_device):
        """Test a freshly discovered device calls without re-handshaking."""
        device = await discover(mock_transport)
        await device.call("get_prop", ["power"])
        assert fake_device.handshakes == 1

    @pytest.mark.asyncio
    async def test_retries_lost_handshakes(self, mock_transport, fake_device):
        """Test dropped handshake replies are retried."""
        fake_device.drop_handshakes = 2
        device = await discover(mock_transport)
        assert device.id == DEVICE_ID
        assert fake_device.handshakes == 3

    @pytest.mark.asyncio
    async def test_failure_closes_transport(self, mock_transport, fake_device):
        """Test the transport is released when the handshake fails."""
        fake_device.drop_handshakes = 10
        with pytest.raises(SocketTimeoutError):
            await discover(mock_transport)
        assert mock_transport.is_closed
        assert fake_device.handshakes == 3

    @pytest.mark.asyncio
    async def test_invalid_token_raises_before_sending(self, mock_transport):
        """Test a malformed token fails without touching the network."""
        with pytest.raises(ValueError):
            await Device.discover("192.168.1.31", "nope", transport=mock_transport)
        assert mock_transport.written_data == []

    @pytest.mark.asyncio
    async def test_module_level_alias(self, mock_transport):
        """Test miioapi.discover is Device.discover."""
        device = await miioapi.discover("192.168.1.31", TOKEN, FAST_OPTIONS, transport=mock_transport)
        assert isinstance(device, Device)


class TestCall:
    """Tests for Device.call."""

    @pytest.mark.asyncio
    async def test_get_prop(self, mock_transport, fake_device):
        """Test a successful call returns the result."""
        fake_device.handler = lambda req: {"result": ["off"]}
        device = await discover(mock_transport)
        assert await device.call("get_prop", ["power"]) == ["off"]
        request = fake_device.requests[0]
        assert request["method"] == "get_prop"
        assert request["params"] == ["power"]
        assert 0 <= request["id"] < 0xFFFFFFFF

    @pytest.mark.asyncio
    async def test_params_default_to_empty_list(self, mock_transport, fake_device):
        """Test omitted params are sent as []."""
        device = await discover(mock_transport)
        await device.call("miIO.info")
        assert fake_device.requests[0]["params"] == []

    @pytest.mark.asyncio
    async def test_device_error(self, mock_transport, fake_device):
        """Test an error reply raises DeviceError with code and message."""
        fake_device.handler = lambda req: {"error": {"code": -1, "message": "bad method"}}
        device = await discover(mock_transport)
        with pytest.raises(DeviceError) as exc_info:
            await device.call("no_such_method")
        assert exc_info.value.code == -1
        assert exc_info.value.message == "bad method"
        assert str(exc_info.value) == 'Device responded with error: "bad method". Code: -1'

    @pytest.mark.asyncio
    async def test_device_error_not_retried(self, mock_transport, fake_device):
        """Test device errors are final."""
        fake_device.handler = lambda req: {"error": {"code": -5001, "message": "invalid arg"}}
        device = await discover(mock_transport)
        with pytest.raises(DeviceError):
            await device.call("set_power", ["maybe"])
        assert len(fake_device.requests) == 1

    @pytest.mark.asyncio
    async def test_empty_response(self, mock_transport, fake_device):
        """Test a reply without result raises DeviceError."""
        fake_device.handler = lambda req: {}
        device = await discover(mock_transport)
        with pytest.raises(DeviceError, match="Empty response"):
            await device.call("get_prop", ["power"])

    @pytest.mark.asyncio
    async def test_retry_after_dropped_requests(self, mock_transport, fake_device):
        """Test lost requests are resent with the same request id."""
        fake_device.drop_requests = 2
        device = await discover(mock_transport)
        assert await device.call("get_prop", ["power"]) == ["ok"]
        ids = {request["id"] for request in fake_device.requests}
        assert len(fake_device.requests) == 3
        assert len(ids) == 1

    @pytest.mark.asyncio
    async def test_timeout_after_all_attempts(self, mock_transport, fake_device):
        """Test SocketTimeoutError once every attempt went unanswered."""
        fake_device.drop_requests = 10
        device = await discover(mock_transport)
        with pytest.raises(SocketTimeoutError):
            await device.call("get_prop", ["power"])
        assert len(fake_device.requests) == 3

    @pytest.mark.asyncio
    async def test_options_override_per_call(self, mock_transport, fake_device):
        """Test per-call options replace the device defaults."""
        fake_device.drop_requests = 10
        device = await discover(mock_transport)
        with pytest.raises(SocketTimeoutError):
            await device.call("get_prop", ["power"], {"attempts": 1})
        assert len(fake_device.requests) == 1

    @pytest.mark.asyncio
    async def test_ignores_unrelated_datagrams(self, mock_transport, fake_device):
        """Test handshake replies and other request ids do not resolve a call."""

        def handler(request):
            return [
                fake_device.handshake_reply(),
                fake_device.reply({"id": request["id"] + 1, "result": ["wrong"]}),
                fake_device.reply({"id": request["id"], "result": ["right"]}),
            ]

        fake_device.handler = handler
        device = await discover(mock_transport)
        assert await device.call("get_prop", ["power"]) == ["right"]
        assert len(fake_device.requests) == 1

    @pytest.mark.asyncio
    async def test_corrupt_reply_is_retried(self, mock_transport, fake_device):
        """Test a reply with a bad checksum is dropped and the request resent."""
        replies = []

        def handler(request):
            frame = fake_device.reply({"id": request["id"], "result": ["ok"]})
            if not replies:
                frame = frame[:-1] + bytes([frame[-1] ^ 0xFF])
            replies.append(frame)
            return [frame]

        fake_device.handler = handler
        device = await discover(mock_transport)
        assert await device.call("get_prop", ["power"]) == ["ok"]
        assert len(fake_device.requests) == 2

    @pytest.mark.asyncio
    async def test_corrupt_replies_exhaust_attempts(self, mock_transport, fake_device):
        """Test corrupt replies end in a timeout caused by the checksum error."""

        def handler(request):
            frame = fake_device.reply({"id": request["id"], "result": ["ok"]})
            return [frame[:-1] + bytes([frame[-1] ^ 0xFF])]

        fake_device.handler = handler
        device = await discover(mock_transport)
        with pytest.raises(SocketTimeoutError) as exc_info:
            await device.call("get_prop", ["power"])
        assert isinstance(exc_info.value.__cause__, ChecksumError)
        assert len(fake_device.requests) == 3

    @pytest.mark.asyncio
    async def test_stray_datagram_is_ignored(self, mock_transport, fake_device):
        """Test a short datagram mid-wait does not end the attempt."""

        def handler(request):
            return [b"\x00" * 8, fake_device.reply({"id": request["id"], "result": ["ok"]})]

        fake_device.handler = handler
        device = await discover(mock_transport)
        assert await device.call("get_prop", ["power"], {"attempts": 1}) == ["ok"]
        assert len(fake_device.requests) == 1

    @pytest.mark.asyncio
    async def test_corrupt_reply_does_not_fail_concurrent_call(self, mock_transport, fake_device):
        """Test a corrupt reply to one call leaves another call waiting."""

        def handler(request):
            if request["method"] == "slow":
                return []
            frame = fake_device.reply({"id": request["id"], "result": ["fast"]})
            return [frame[:-1] + bytes([frame[-1] ^ 0xFF]), frame]

        fake_device.handler = handler
        device = await discover(mock_transport)
        slow = asyncio.create_task(device.call("slow", options={"attempts": 1, "timeout": 1.0}))
        await asyncio.sleep(0)

        assert await device.call("fast", options={"attempts": 1}) == ["fast"]
        assert not slow.done()

        slow_request = fake_device.requests[0]
        mock_transport.feed(fake_device.reply({"id": slow_request["id"], "result": ["slow"]}))
        assert await slow == ["slow"]
        assert len(fake_device.requests) == 2

    @pytest.mark.asyncio
    async def test_timestamp_tracks_replies(self, mock_transport, fake_device):
        """Test requests carry the last known timestamp and replies update it."""
        device = await discover(mock_transport)
        seeded = device.timestamp
        await device.call("get_prop", ["power"])
        assert fake_device.request_packets[0].timestamp == seeded
        assert device.timestamp == fake_device.timestamp
        assert device.timestamp > seeded

    @pytest.mark.asyncio
    async def test_concurrent_calls(self, mock_transport, fake_device):
        """Test concurrent calls on one device are matched by id."""
        fake_device.handler = lambda req: {"result": req["params"]}
        device = await discover(mock_transport)
        results = await asyncio.gather(*(device.call("echo", [i]) for i in range(5)))
        assert results == [[i] for i in range(5)]


class TestLiveness:
    """Tests for the re-handshake window."""

    def make_device(self, transport, last_seen_at):
        return Device(
            "192.168.1.31",
            TOKEN,
            DEVICE_ID,
            transport=transport,
            timestamp=500,
            last_seen_at=last_seen_at,
            options=FAST_OPTIONS,
        )

    @pytest.mark.asyncio
    async def test_recent_device_skips_handshake(self, mock_transport, fake_device):
        """Test no handshake within the window."""
        device = self.make_device(mock_transport, time.time() - 10)
        await device.call("get_prop", ["power"])
        assert fake_device.handshakes == 0
        assert fake_device.request_packets[0].timestamp == 500

    @pytest.mark.asyncio
    async def test_stale_device_handshakes_first(self, mock_transport, fake_device):
        """Test a handshake precedes the call after the window passes."""
        device = self.make_device(mock_transport, time.time() - 61.5)
        await device.call("get_prop", ["power"])
        assert fake_device.handshakes == 1
        mock_transport.assert_written(HANDSHAKE_BYTES, index=0)
        # Request stamped with the clock from the handshake reply
        assert fake_device.request_packets[0].timestamp == fake_device.timestamp - 1

    @pytest.mark.asyncio
    async def test_never_seen_device_handshakes(self, mock_transport, fake_device):
        """Test a directly constructed device handshakes on first call."""
        device = Device("192.168.1.31", TOKEN_HEX, DEVICE_ID, transport=mock_transport, options=FAST_OPTIONS)
        assert await device.call("get_prop", ["power"]) == ["ok"]
        assert fake_device.handshakes == 1

    @pytest.mark.asyncio
    async def test_concurrent_stale_calls_share_handshake(self, mock_transport, fake_device):
        """Test one handshake serves all callers that need it."""
        device = self.make_device(mock_transport, 0.0)
        await asyncio.gather(
            device.call("get_prop", ["power"]),
            device.call("get_prop", ["mode"]),
        )
        assert fake_device.handshakes == 1
        assert len(fake_device.requests) == 2
        assert device.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_handshake_failure_propagates(self, mock_transport, fake_device):
        """Test a failed handshake fails the call and a later call retries it."""
        fake_device.drop_handshakes = 3
        device = self.make_device(mock_transport, 0.0)
        with pytest.raises(SocketTimeoutError):
            await device.call("get_prop", ["power"])
        assert fake_device.requests == []

        assert await device.call("get_prop", ["power"]) == ["ok"]
        assert fake_device.handshakes == 4


class TestLifecycle:
    """Tests for destroy, context manager and repr."""

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, mock_transport):
        """Test destroy closes the transport once."""
        device = await discover(mock_transport)
        await device.destroy()
        await device.destroy()
        assert mock_transport.close_count == 1
        assert device.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_call_after_destroy_raises(self, mock_transport):
        """Test a destroyed device refuses calls."""
        device = await discover(mock_transport)
        await device.destroy()
        with pytest.raises(SocketError, match="Device destroyed"):
            await device.call("get_prop", ["power"])

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_transport):
        """Test async context manager destroys the device."""
        async with await discover(mock_transport) as device:
            assert await device.call("get_prop", ["power"]) == ["ok"]
        assert device.state == SessionState.CLOSED
        assert mock_transport.is_closed

    @pytest.mark.asyncio
    async def test_repr(self, mock_transport):
        """Test repr shows id, address and state."""
        device = await discover(mock_transport)
        assert repr(device) == "Device(id=0x0123abcd, address=192.168.1.31, state=IDLE)"

    @pytest.mark.asyncio
    async def test_call_logs_are_tagged(self, mock_transport, caplog):
        """Test log lines carry the device address and a call tag."""
        device = await discover(mock_transport)
        with caplog.at_level(logging.DEBUG, logger="miioapi"):
            await device.call("get_prop", ["power"])
        messages = [record.getMessage() for record in caplog.records if record.name == "miioapi.device"]
        assert messages
        assert all(message.startswith("[192.168.1.31 ") for message in messages)
        assert TOKEN_HEX not in caplog.text
