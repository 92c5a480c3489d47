"""
Process client: reliable delivery of tagged messages to a remote actor
process and retrieval of their computed results.

Submission and confirmation are separate steps. ``send`` returns as soon as
a receipt id exists and never transmits again after that; ``result_for``
polls by id and may be called any number of times, so a pending id can be
recovered after a crash or timeout without a duplicate send.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, Optional, Union

from ario.core.config import ClientConfig
from ario.core.exceptions import (
    InvalidConfigurationError,
    ProcessError,
    ResultTimeoutError,
    TransportError,
)
from ario.core.models import Message, MessageResult, RetryPolicy, TagLike, validate_tags
from ario.process.retry import (
    call_with_retries,
    check_cancelled,
    run_cancellable,
    sleep_or_cancel,
    with_deadline,
)
from ario.process.transport import HttpProcessTransport, ProcessTransport
from ario.wallet.signer import Credential, create_ao_signer

logger = logging.getLogger(__name__)

Payload = Union[str, bytes, Dict[str, Any], list, None]


def _encode_payload(data: Payload) -> Optional[Union[str, bytes]]:
    if data is None or isinstance(data, (str, bytes)):
        return data
    return json.dumps(data, separators=(",", ":"))


def decode_result(
    response: Dict[str, Any],
    process_id: str,
    message_id: Optional[str] = None,
) -> Any:
    """
    Decode a compute unit response into a plain value.

    Returns None when the process produced no data, which is how "not
    found" reads come back.

    Raises:
        ProcessError: If the backend reported an error.
    """
    error = response.get("Error")
    if error:
        raise ProcessError(str(error), process_id=process_id, message_id=message_id)

    messages = response.get("Messages") or []
    if not messages:
        return None
    first = messages[0]
    for tag in first.get("Tags") or []:
        if tag.get("name") == "Error":
            detail = first.get("Data") or tag.get("value")
            raise ProcessError(
                f"{tag.get('value')}: {detail}",
                process_id=process_id,
                message_id=message_id,
            )

    data = first.get("Data")
    if data is None or data == "":
        return None
    if not isinstance(data, str):
        return data
    try:
        return json.loads(data)
    except ValueError:
        return data


class ProcessClient:
    """Client bound to one remote process id for its whole lifetime."""

    def __init__(
        self,
        process_id: str,
        transport: Optional[ProcessTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        if not process_id or not isinstance(process_id, str):
            raise InvalidConfigurationError("process_id must be a non-empty string")
        self._process_id = process_id
        self._owns_transport = transport is None
        self.transport: ProcessTransport = transport or HttpProcessTransport()
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        process_id: Optional[str] = None,
        transport: Optional[ProcessTransport] = None,
    ) -> "ProcessClient":
        client = cls(
            process_id=process_id or config.process_id,
            transport=transport
            or HttpProcessTransport(
                cu_url=config.cu_url, mu_url=config.mu_url, timeout=config.http_timeout
            ),
            retry_policy=config.retry_policy,
        )
        client._owns_transport = transport is None
        return client

    @property
    def process_id(self) -> str:
        return self._process_id

    def __repr__(self) -> str:
        return f"ProcessClient(process_id={self._process_id!r})"

    async def aclose(self) -> None:
        """Close the transport if this client created it; injected transports stay open."""
        close = getattr(self.transport, "aclose", None)
        if self._owns_transport and close is not None:
            await close()

    async def __aenter__(self) -> "ProcessClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ send

    async def send(
        self,
        tags: Iterable[TagLike],
        signer: Credential,
        data: Payload = None,
        *,
        signal: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> MessageResult:
        """
        Sign and transmit a message, returning its receipt.

        Transport failures are retried with the identical signed message.
        Once an id is obtained nothing is resent.

        Raises:
            InvalidTagsError: Duplicate or malformed tags (before any I/O).
            SigningError: The credential failed to sign.
            DeliveryError: Transport failed on every attempt.
            CancelledError: ``signal`` fired or ``timeout`` elapsed.
        """
        return await with_deadline(
            self._send(tags, signer, data, signal), timeout, "send"
        )

    async def _send(
        self,
        tags: Iterable[TagLike],
        signer: Credential,
        data: Payload,
        signal: Optional[asyncio.Event],
    ) -> MessageResult:
        validated = validate_tags(tags)
        ao_signer = await create_ao_signer(signer)
        message = Message(
            target=self._process_id,
            tags=validated,
            signer=ao_signer,
            data=_encode_payload(data),
        )
        signed = await ao_signer(message)
        check_cancelled(signal, "send")

        extra = {"process_id": self._process_id, "message_id": signed.id}
        receipt = await call_with_retries(
            lambda: self.transport.send(signed),
            self.retry_policy,
            what=f"Send to {self._process_id}",
            signal=signal,
            log_extra=extra,
        )

        message_id = receipt.get("id") if isinstance(receipt, dict) else None
        if not message_id:
            # The transport may already have accepted the message, so resending is unsafe
            raise ProcessError(
                "Transport accepted the message but returned no receipt id",
                process_id=self._process_id,
                message_id=signed.id,
            )
        if message_id != signed.id:
            logger.warning(
                "Receipt id differs from locally computed id",
                extra={**extra, "receipt_id": message_id},
            )
        logger.info("Message sent", extra={**extra, "message_id": message_id})
        return MessageResult(id=message_id)

    # ------------------------------------------------------------------ read

    async def read(
        self,
        tags: Iterable[TagLike],
        data: Payload = None,
        *,
        signal: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Evaluate tags against the process without a durable send.

        Safe to retry freely. Returns None when the process returns no data.
        """
        validated = validate_tags(tags)
        payload = _encode_payload(data)
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload

        async def _read() -> Any:
            response = await call_with_retries(
                lambda: self.transport.dry_run(self._process_id, validated, text),
                self.retry_policy,
                what=f"Read from {self._process_id}",
                signal=signal,
                log_extra={"process_id": self._process_id},
            )
            return decode_result(response, self._process_id)

        return await with_deadline(_read(), timeout, "read")

    # ---------------------------------------------------------------- result

    async def result_for(
        self,
        message_id: str,
        *,
        signal: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Poll for the computed output of a previously sent message.

        Idempotent: it only reads, so calling it again with the same id never
        causes a second domain effect.

        Raises:
            ResultTimeoutError: Output still unavailable after max polls; carries the id.
            ProcessError: The process reported an error for the message.
            CancelledError: ``signal`` fired or ``timeout`` elapsed.
        """
        if not message_id:
            raise InvalidConfigurationError("message_id is required")
        return await with_deadline(
            self._poll_result(message_id, signal), timeout, f"result for {message_id}"
        )

    async def _poll_result(self, message_id: str, signal: Optional[asyncio.Event]) -> Any:
        policy = self.retry_policy
        extra = {"process_id": self._process_id, "message_id": message_id}
        what = f"result for {message_id}"
        for attempt in range(policy.max_retries):
            check_cancelled(signal, what)
            try:
                response = await run_cancellable(
                    self.transport.result(self._process_id, message_id), signal, what
                )
            except TransportError as e:
                logger.warning(
                    "Result poll %d/%d failed: %s",
                    attempt + 1,
                    policy.max_retries,
                    e,
                    extra={**extra, "attempt": attempt + 1},
                )
                response = None
            if response is not None:
                logger.debug("Result available", extra={**extra, "attempt": attempt + 1})
                return decode_result(response, self._process_id, message_id)
            if attempt < policy.max_retries - 1:
                await sleep_or_cancel(policy.delay_for(attempt), signal, what)

        logger.error("Result not available", extra={**extra, "attempts": policy.max_retries})
        raise ResultTimeoutError(message_id, policy.max_retries)

    async def send_and_wait(
        self,
        tags: Iterable[TagLike],
        signer: Credential,
        data: Payload = None,
        *,
        signal: Optional[asyncio.Event] = None,
    ) -> Any:
        """
        Send a message and wait for its result.

        On ``ResultTimeoutError`` the message has been sent; re-poll with
        ``result_for(exc.message_id)`` rather than sending again.
        """
        receipt = await self.send(tags, signer, data, signal=signal)
        return await self.result_for(receipt.id, signal=signal)
