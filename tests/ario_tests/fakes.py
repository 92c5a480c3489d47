"""
Fakes and builders shared by the test modules.
"""
import json
from typing import Any, Dict, List, Optional

from ario.contracts.interactions import compute_sort_key
from ario.core.exceptions import TransportError
from ario.core.models import Interaction


class FakeTransport:
    """In-memory process transport recording everything it is asked to do.

    ``reads`` maps an ``Action`` tag value to the value a dry run returns;
    ``results`` maps a message id to the successive poll responses (None
    meaning "not ready yet").
    """

    def __init__(
        self,
        *,
        reads: Optional[Dict[str, Any]] = None,
        results: Optional[Dict[str, List[Optional[Dict[str, Any]]]]] = None,
        send_failures: int = 0,
        dry_run_failures: int = 0,
    ) -> None:
        self.reads = reads or {}
        self.results = results or {}
        self.send_failures = send_failures
        self.dry_run_failures = dry_run_failures
        self.sent = []
        self.result_calls: List[str] = []
        self.dry_runs = []

    async def send(self, signed):
        self.sent.append(signed)
        if self.send_failures > 0:
            self.send_failures -= 1
            raise TransportError("connection reset by peer")
        return {"id": signed.id}

    async def result(self, process_id: str, message_id: str):
        self.result_calls.append(message_id)
        queue = self.results.get(message_id)
        if not queue:
            return None
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def dry_run(self, process_id: str, tags, data=None):
        tag_list = list(tags)
        self.dry_runs.append((process_id, tag_list, data))
        if self.dry_run_failures > 0:
            self.dry_run_failures -= 1
            raise TransportError("503 from compute unit")
        action = next((tag.value for tag in tag_list if tag.name == "Action"), None)
        if action not in self.reads:
            return {"Messages": []}
        value = self.reads[action]
        if callable(value):
            value = value(tag_list)
        return data_response(value)

    def last_read_tags(self):
        return [(tag.name, tag.value) for tag in self.dry_runs[-1][1]]

    def last_sent_tags(self):
        return [(tag.name, tag.value) for tag in self.sent[-1].message.tags]


def data_response(value: Any) -> Dict[str, Any]:
    """A compute unit response whose first message carries ``value`` as JSON."""
    return {"Messages": [{"Data": json.dumps(value), "Tags": []}], "Output": "", "Error": None}


def make_interaction(
    tx_id: str,
    owner: str,
    height: int,
    function: str,
    timestamp: Optional[int] = None,
    block_id: Optional[str] = None,
    **inputs: Any,
) -> Interaction:
    block_id = block_id or f"block-{height}"
    return Interaction(
        id=tx_id,
        owner=owner,
        block_height=height,
        block_timestamp=timestamp if timestamp is not None else 1_700_000_000 + height * 120,
        block_id=block_id,
        sort_key=compute_sort_key(height, block_id, tx_id),
        input={"function": function, **inputs},
    )


