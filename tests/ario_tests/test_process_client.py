"""
Tests for the process client: delivery retries, reads, result polling and
cancellation.
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest

from ario.core.config import ClientConfig
from ario.core.exceptions import (
    CancelledError,
    DeliveryError,
    InvalidConfigurationError,
    InvalidTagsError,
    ProcessError,
    ResultTimeoutError,
)
from ario.core.models import RetryPolicy
from ario.process.client import ProcessClient, decode_result

from fakes import FakeTransport, data_response

PROCESS_ID = "io-process-0000000000000000000000000000000"


def _client(transport, policy):
    return ProcessClient(PROCESS_ID, transport=transport, retry_policy=policy)


class TestConstruction:
    """Client binding."""

    @pytest.mark.parametrize("bad", ["", None, 42])
    def test_process_id_required(self, bad):
        with pytest.raises(InvalidConfigurationError):
            ProcessClient(bad, transport=FakeTransport())

    def test_bound_id_is_read_only(self, fake_transport):
        client = ProcessClient(PROCESS_ID, transport=fake_transport)
        assert client.process_id == PROCESS_ID
        with pytest.raises(AttributeError):
            client.process_id = "other"

    @pytest.mark.asyncio
    async def test_closes_transport_it_built(self):
        client = ProcessClient.from_config(ClientConfig(), PROCESS_ID)
        client.transport.aclose = AsyncMock()
        async with client:
            pass
        client.transport.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_leaves_injected_transport_open(self, fake_transport):
        fake_transport.aclose = AsyncMock()
        client = ProcessClient(PROCESS_ID, transport=fake_transport)
        await client.aclose()
        fake_transport.aclose.assert_not_awaited()


class TestSend:
    """Delivery semantics."""

    @pytest.mark.asyncio
    async def test_send_returns_receipt_id(self, fake_transport, fast_policy, secp_key):
        client = _client(fake_transport, fast_policy)
        receipt = await client.send([("Action", "Transfer"), ("Quantity", "5")], secp_key)
        assert receipt.id == fake_transport.sent[0].id
        assert len(fake_transport.sent) == 1

    @pytest.mark.asyncio
    async def test_transient_failures_resend_identical_message(self, fast_policy, secp_key):
        transport = FakeTransport(send_failures=2)
        client = _client(transport, fast_policy)
        receipt = await client.send([("Action", "Transfer")], secp_key)

        assert len(transport.sent) == 3
        assert {signed.id for signed in transport.sent} == {receipt.id}
        envelopes = [signed.to_envelope() for signed in transport.sent]
        assert envelopes[0] == envelopes[1] == envelopes[2]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_delivery_error(self, fast_policy, secp_key):
        transport = FakeTransport(send_failures=10)
        client = _client(transport, fast_policy)
        with pytest.raises(DeliveryError) as exc_info:
            await client.send([("Action", "Transfer")], secp_key)
        assert exc_info.value.attempts == 3
        assert len(transport.sent) == 3

    @pytest.mark.asyncio
    async def test_duplicate_tags_rejected_before_io(self, fake_transport, fast_policy, secp_key):
        client = _client(fake_transport, fast_policy)
        with pytest.raises(InvalidTagsError):
            await client.send([("Action", "Eval"), ("Action", "Evolve")], secp_key)
        assert fake_transport.sent == []

    @pytest.mark.asyncio
    async def test_receipt_without_id_is_not_resent(self, fast_policy, secp_key):
        transport = FakeTransport()
        transport.send = AsyncMock(return_value={})
        client = _client(transport, fast_policy)
        with pytest.raises(ProcessError):
            await client.send([("Action", "Transfer")], secp_key)
        assert transport.send.await_count == 1

    @pytest.mark.asyncio
    async def test_process_error_is_not_retried(self, fast_policy, secp_key):
        transport = FakeTransport()
        transport.send = AsyncMock(side_effect=ProcessError("HTTP 400", process_id=PROCESS_ID))
        client = _client(transport, fast_policy)
        with pytest.raises(ProcessError):
            await client.send([("Action", "Transfer")], secp_key)
        assert transport.send.await_count == 1

    @pytest.mark.asyncio
    async def test_dict_payload_is_json_encoded(self, fake_transport, fast_policy, secp_key):
        client = _client(fake_transport, fast_policy)
        await client.send([("Action", "Save-Observations")], secp_key, data={"failed": ["a"]})
        assert fake_transport.sent[0].message.data == '{"failed":["a"]}'


class TestRead:
    """Dry-run reads."""

    @pytest.mark.asyncio
    async def test_read_decodes_json(self, fast_policy):
        transport = FakeTransport(reads={"Info": {"Name": "AR.IO", "Ticker": "IO"}})
        client = _client(transport, fast_policy)
        assert await client.read([("Action", "Info")]) == {"Name": "AR.IO", "Ticker": "IO"}
        assert transport.dry_runs[0][0] == PROCESS_ID

    @pytest.mark.asyncio
    async def test_no_messages_reads_as_none(self, fake_transport, fast_policy):
        client = _client(fake_transport, fast_policy)
        assert await client.read([("Action", "Record"), ("Name", "missing")]) is None

    @pytest.mark.asyncio
    async def test_read_retries_transient_failures(self, fast_policy):
        transport = FakeTransport(reads={"Balance": 7}, dry_run_failures=2)
        client = _client(transport, fast_policy)
        assert await client.read([("Action", "Balance")]) == 7
        assert len(transport.dry_runs) == 3

    @pytest.mark.asyncio
    async def test_read_exhaustion_raises_delivery_error(self, fast_policy):
        transport = FakeTransport(dry_run_failures=5)
        client = _client(transport, fast_policy)
        with pytest.raises(DeliveryError):
            await client.read([("Action", "Balance")])

    @pytest.mark.asyncio
    async def test_read_timeout_cancels(self, fast_policy):
        transport = FakeTransport()

        async def slow_dry_run(process_id, tags, data=None):
            await asyncio.sleep(5)

        transport.dry_run = slow_dry_run
        client = _client(transport, fast_policy)
        with pytest.raises(CancelledError):
            await client.read([("Action", "Info")], timeout=0.05)


class TestDecodeResult:
    """Compute unit response decoding."""

    def test_error_field_raises(self):
        with pytest.raises(ProcessError) as exc_info:
            decode_result({"Error": "out of memory"}, PROCESS_ID, "msg")
        assert exc_info.value.message_id == "msg"

    def test_error_tag_raises(self):
        response = {
            "Messages": [
                {"Data": "Insufficient funds", "Tags": [{"name": "Error", "value": "Transfer-Error"}]}
            ]
        }
        with pytest.raises(ProcessError, match="Insufficient funds"):
            decode_result(response, PROCESS_ID)

    def test_non_json_data_returned_verbatim(self):
        assert decode_result({"Messages": [{"Data": "plain text"}]}, PROCESS_ID) == "plain text"

    def test_empty_data_is_none(self):
        assert decode_result({"Messages": [{"Data": ""}]}, PROCESS_ID) is None


class TestResultFor:
    """Polling for computed output."""

    @pytest.mark.asyncio
    async def test_polls_until_ready(self, fast_policy):
        transport = FakeTransport(results={"m1": [None, None, data_response({"ok": True})]})
        client = _client(transport, fast_policy)
        assert await client.result_for("m1") == {"ok": True}
        assert transport.result_calls == ["m1", "m1", "m1"]

    @pytest.mark.asyncio
    async def test_idempotent(self, fast_policy):
        transport = FakeTransport(results={"m1": [data_response(3)]})
        client = _client(transport, fast_policy)
        assert await client.result_for("m1") == await client.result_for("m1") == 3
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_timeout_carries_message_id(self, fake_transport, fast_policy):
        client = _client(fake_transport, fast_policy)
        with pytest.raises(ResultTimeoutError) as exc_info:
            await client.result_for("pending-id")
        assert exc_info.value.message_id == "pending-id"
        assert exc_info.value.attempts == 3
        assert len(fake_transport.result_calls) == 3

    @pytest.mark.asyncio
    async def test_constant_backoff_schedule(self, fake_transport):
        policy = RetryPolicy(max_retries=5, initial_delay=0.2, backoff_multiplier=1.0)
        client = _client(fake_transport, policy)
        with patch("ario.process.client.sleep_or_cancel", new_callable=AsyncMock) as sleeper:
            with pytest.raises(ResultTimeoutError):
                await client.result_for("pending-id")
        assert [call.args[0] for call in sleeper.await_args_list] == [0.2] * 4
        assert len(fake_transport.result_calls) == 5

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_constant_backoff_takes_real_time(self, fake_transport):
        policy = RetryPolicy(max_retries=5, initial_delay=0.2, backoff_multiplier=1.0)
        client = _client(fake_transport, policy)
        started = time.monotonic()
        with pytest.raises(ResultTimeoutError):
            await client.result_for("pending-id")
        assert time.monotonic() - started >= 0.75

    @pytest.mark.asyncio
    async def test_backend_error_surfaces(self, fast_policy):
        transport = FakeTransport(results={"m1": [{"Error": "handler crashed"}]})
        client = _client(transport, fast_policy)
        with pytest.raises(ProcessError, match="handler crashed"):
            await client.result_for("m1")


class TestCancellation:
    """Caller-driven cancellation."""

    @pytest.mark.asyncio
    async def test_signal_set_before_send(self, fake_transport, fast_policy, secp_key):
        signal = asyncio.Event()
        signal.set()
        client = _client(fake_transport, fast_policy)
        with pytest.raises(CancelledError):
            await client.send([("Action", "Transfer")], secp_key, signal=signal)
        assert fake_transport.sent == []

    @pytest.mark.asyncio
    async def test_signal_interrupts_polling(self, fake_transport):
        policy = RetryPolicy(max_retries=50, initial_delay=1.0, backoff_multiplier=1.0)
        client = _client(fake_transport, policy)
        signal = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, signal.set)
        started = time.monotonic()
        with pytest.raises(CancelledError):
            await client.result_for("pending-id", signal=signal)
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_timeout_interrupts_polling(self, fake_transport):
        policy = RetryPolicy(max_retries=50, initial_delay=1.0, backoff_multiplier=1.0)
        client = _client(fake_transport, policy)
        with pytest.raises(CancelledError, match="timed out"):
            await client.result_for("pending-id", timeout=0.05)


class TestSendAndWait:
    """Send followed by result polling."""

    @pytest.mark.asyncio
    async def test_returns_result_of_sent_message(self, fast_policy, secp_key):
        transport = FakeTransport()
        client = _client(transport, fast_policy)

        async def result(process_id, message_id):
            transport.result_calls.append(message_id)
            return data_response({"echo": message_id})

        transport.result = result
        outcome = await client.send_and_wait([("Action", "Ping")], secp_key)
        assert outcome == {"echo": transport.sent[0].id}

    @pytest.mark.asyncio
    async def test_timeout_leaves_message_sent_once(self, fake_transport, fast_policy, secp_key):
        client = _client(fake_transport, fast_policy)
        with pytest.raises(ResultTimeoutError) as exc_info:
            await client.send_and_wait([("Action", "Ping")], secp_key)
        assert len(fake_transport.sent) == 1
        assert exc_info.value.message_id == fake_transport.sent[0].id
