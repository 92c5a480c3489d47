"""
Data model shared by the process client, the contract resolver and the facades.

Messages are transient (built, signed, sent, discarded); contract states are
immutable snapshots stored as canonical JSON so equal content is
byte-identical.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ario.core.exceptions import (
    InvalidConfigurationError,
    InvalidTagsError,
    SelectorConflictError,
)


def canonical_json(value: Any) -> str:
    """Serialize with stable key ordering and compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ==================== Messaging ====================


@dataclass(frozen=True)
class Tag:
    """A name/value pair the backend uses to route and interpret a message."""

    name: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "value": self.value}


TagLike = Union[Tag, Mapping[str, Any], Tuple[str, Any]]


def _coerce_tag(raw: TagLike) -> Tag:
    if isinstance(raw, Tag):
        return raw
    if isinstance(raw, tuple):
        name, value = raw
        return Tag(name=name, value=value)
    return Tag(name=raw.get("name"), value=raw.get("value"))


def validate_tags(tags: Iterable[TagLike]) -> Tuple[Tag, ...]:
    """
    Coerce tags and reject anything the backend could interpret ambiguously.

    Raises:
        InvalidTagsError: On empty names, non-string values or duplicate names.
    """
    coerced = tuple(_coerce_tag(tag) for tag in tags)
    seen: set[str] = set()
    duplicates: List[str] = []
    for tag in coerced:
        if not isinstance(tag.name, str) or not tag.name:
            raise InvalidTagsError("Tag names must be non-empty strings", names=[str(tag.name)])
        if not isinstance(tag.value, str):
            raise InvalidTagsError(
                f"Tag {tag.name} must have a string value, got {type(tag.value).__name__}",
                names=[tag.name],
            )
        if tag.name in seen and tag.name not in duplicates:
            duplicates.append(tag.name)
        seen.add(tag.name)
    if duplicates:
        raise InvalidTagsError(
            f"Duplicate tag names: {', '.join(duplicates)}",
            names=duplicates,
        )
    return coerced


def prune_tags(pairs: Iterable[Tuple[str, Any]]) -> List[Tag]:
    """Build tags from (name, value) pairs, dropping pairs whose value is None.

    Booleans are rendered lowercase to match the backend's parser.
    """
    tags: List[Tag] = []
    for name, value in pairs:
        if value is None:
            continue
        if isinstance(value, bool):
            rendered = "true" if value else "false"
        else:
            rendered = str(value)
        tags.append(Tag(name=name, value=rendered))
    return tags


@dataclass(frozen=True)
class Message:
    """A message addressed to a process: ordered tags, optional payload, a signer."""

    target: str
    tags: Tuple[Tag, ...]
    signer: Any
    data: Optional[Union[str, bytes]] = None
    anchor: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", validate_tags(self.tags))
        if not self.target:
            raise InvalidConfigurationError("Message target process id is required")
        if self.signer is None:
            raise InvalidConfigurationError("Message requires a signer")

    def data_as_text(self) -> str:
        if self.data is None:
            return ""
        if isinstance(self.data, bytes):
            return base64.urlsafe_b64encode(self.data).rstrip(b"=").decode("ascii")
        return self.data

    def signing_payload(self) -> bytes:
        """Deterministic byte encoding of everything the signature covers."""
        return canonical_json(
            [
                self.target,
                self.anchor,
                [[tag.name, tag.value] for tag in self.tags],
                self.data_as_text(),
            ]
        ).encode("utf-8")


@dataclass(frozen=True)
class MessageResult:
    """Receipt correlating a sent message with its eventual computation."""

    id: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id}


@dataclass(frozen=True)
class WriteOptions:
    """Extra tags appended after an operation's own tags."""

    tags: Tuple[Tag, ...] = ()

    @classmethod
    def from_tags(cls, tags: Iterable[TagLike]) -> "WriteOptions":
        return cls(tags=tuple(_coerce_tag(tag) for tag in tags))


# ==================== Retry policy ====================


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a send/read/result lookup gets and how long to wait between them.

    ``max_retries`` is the total number of attempts. The wait after attempt
    ``n`` (0-based) is ``initial_delay * backoff_multiplier ** n``; there is
    no wait after the last attempt.
    """

    max_retries: int = 5
    initial_delay: float = 0.5
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if not isinstance(self.max_retries, int) or self.max_retries < 1:
            raise InvalidConfigurationError("max_retries must be an integer >= 1")
        if self.initial_delay < 0:
            raise InvalidConfigurationError("initial_delay must be >= 0")
        if self.backoff_multiplier < 1:
            raise InvalidConfigurationError("backoff_multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        return self.initial_delay * (self.backoff_multiplier ** attempt)

    def delays(self) -> List[float]:
        """Waits between consecutive attempts."""
        return [self.delay_for(attempt) for attempt in range(self.max_retries - 1)]


# ==================== Evaluation selectors ====================


_SELECTOR_FIELDS = ("sort_key", "block_height", "timestamp")


@dataclass(frozen=True)
class EvaluationOptions:
    """Point-in-time selector: at most one of sort key, block height or timestamp (ms).

    With none set the selector means "latest".
    """

    sort_key: Optional[str] = None
    block_height: Optional[int] = None
    timestamp: Optional[int] = None

    @classmethod
    def latest(cls) -> "EvaluationOptions":
        return cls()

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "EvaluationOptions":
        """Accept ``{"evalTo": {...}}``, camelCase or snake_case selector mappings."""
        if raw is None:
            return cls()
        if "evalTo" in raw:
            return cls.from_mapping(raw["evalTo"])
        return cls(
            sort_key=raw.get("sortKey", raw.get("sort_key")),
            block_height=raw.get("blockHeight", raw.get("block_height")),
            timestamp=raw.get("timestamp"),
        )

    def set_fields(self) -> List[str]:
        return [name for name in _SELECTOR_FIELDS if getattr(self, name) is not None]

    @property
    def is_latest(self) -> bool:
        return not self.set_fields()

    def normalized(self) -> "EvaluationOptions":
        """
        Validate the selector.

        Raises:
            SelectorConflictError: If more than one field is set.
            InvalidConfigurationError: If a field has the wrong type or range.
        """
        fields = self.set_fields()
        if len(fields) > 1:
            raise SelectorConflictError(fields)
        if self.block_height is not None and (
            isinstance(self.block_height, bool)
            or not isinstance(self.block_height, int)
            or self.block_height < 0
        ):
            raise InvalidConfigurationError("block_height must be a non-negative integer")
        if self.timestamp is not None and (
            isinstance(self.timestamp, bool)
            or not isinstance(self.timestamp, int)
            or self.timestamp < 0
        ):
            raise InvalidConfigurationError("timestamp must be a non-negative integer (ms)")
        if self.sort_key is not None and (not isinstance(self.sort_key, str) or not self.sort_key):
            raise InvalidConfigurationError("sort_key must be a non-empty string")
        return self

    def at_block_height(self, block_height: int) -> "EvaluationOptions":
        """Thread this selector into a nested lookup pinned to ``block_height``."""
        self.normalized()
        if self.is_latest or self.block_height == block_height:
            return EvaluationOptions(block_height=block_height).normalized()
        raise SelectorConflictError(self.set_fields() + ["block_height"])

    def as_query_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.sort_key is not None:
            params["sortKey"] = self.sort_key
        if self.block_height is not None:
            params["blockHeight"] = str(self.block_height)
        if self.timestamp is not None:
            params["timestamp"] = str(self.timestamp)
        return params

    def cache_key(self) -> Tuple[Optional[str], Optional[int], Optional[int]]:
        return (self.sort_key, self.block_height, self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sortKey": self.sort_key,
            "blockHeight": self.block_height,
            "timestamp": self.timestamp,
        }


# ==================== Legacy contract model ====================


@dataclass(frozen=True)
class Interaction:
    """One entry in a legacy contract's ordered interaction log."""

    id: str
    owner: str
    block_height: int
    block_timestamp: int
    block_id: str
    sort_key: str
    input: Dict[str, Any] = field(default_factory=dict)

    @property
    def function(self) -> Optional[str]:
        return self.input.get("function")

    def within(self, selector: EvaluationOptions) -> bool:
        """Whether this interaction falls at or before the selector boundary."""
        if selector.sort_key is not None:
            return self.sort_key <= selector.sort_key
        if selector.block_height is not None:
            return self.block_height <= selector.block_height
        if selector.timestamp is not None:
            return self.block_timestamp * 1000 <= selector.timestamp
        return True


@dataclass(frozen=True)
class ContractDefinition:
    """A legacy contract's identity and its initial state."""

    contract_id: str
    initial_state: Dict[str, Any]
    owner: Optional[str] = None


@dataclass(frozen=True)
class ContractState:
    """Immutable snapshot of a legacy contract's domain state.

    Equality and ``to_bytes`` only consider the contract id and the domain
    content; where the snapshot came from is informational.
    """

    contract_id: str
    canonical: str
    sort_key: Optional[str] = field(default=None, compare=False)
    source: str = field(default="replay", compare=False)
    errors: Tuple[Tuple[str, str], ...] = field(default=(), compare=False)

    @classmethod
    def from_state(
        cls,
        contract_id: str,
        state: Mapping[str, Any],
        *,
        sort_key: Optional[str] = None,
        source: str = "replay",
        errors: Sequence[Tuple[str, str]] = (),
    ) -> "ContractState":
        return cls(
            contract_id=contract_id,
            canonical=canonical_json(state),
            sort_key=sort_key,
            source=source,
            errors=tuple(errors),
        )

    @property
    def state(self) -> Dict[str, Any]:
        """A fresh copy of the domain state; mutating it never touches the snapshot."""
        return json.loads(self.canonical)

    def get(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def to_bytes(self) -> bytes:
        return self.canonical.encode("utf-8")
