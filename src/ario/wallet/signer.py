"""
Signer adapter - the secrets boundary.

Normalizes the credential shapes callers hold (an Arweave RSA JWK, a
secp256k1 private key hex string, or an object that already signs) into
one ``Signer`` capability, and wraps it into the protocol-native
``AoSigner`` the process client signs messages with.

The process client never sees key material, only signatures and the
public owner bytes.
"""

from __future__ import annotations

import hashlib
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol, Union, runtime_checkable

from ario.core import crypto_utils
from ario.core.exceptions import SigningError
from ario.core.models import Message

logger = logging.getLogger(__name__)

SIGNATURE_TYPE_ARWEAVE = 1
SIGNATURE_TYPE_SECP256K1 = 3

_PRIVATE_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


@runtime_checkable
class Signer(Protocol):
    """Anything that can sign arbitrary bytes and name its public key.

    ``sign`` may be a coroutine function for signers backed by a remote
    wallet.
    """

    signature_type: int

    @property
    def owner(self) -> bytes:
        """Public key bytes identifying the signer."""
        ...

    def sign(self, data: bytes) -> bytes:
        ...

    def address(self) -> str:
        ...


class ArweaveSigner:
    """RSA-PSS signer over an Arweave JWK."""

    signature_type = SIGNATURE_TYPE_ARWEAVE

    def __init__(self, jwk: Mapping[str, Any]) -> None:
        try:
            self._private_key = crypto_utils.load_rsa_private_key_from_jwk(jwk)
        except (ValueError, TypeError, KeyError) as exc:
            raise SigningError(f"Invalid JWK: {exc}") from exc
        self._owner = crypto_utils.rsa_owner_bytes(self._private_key)

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, data: bytes) -> bytes:
        return crypto_utils.rsa_pss_sign(self._private_key, data)

    def address(self) -> str:
        return crypto_utils.address_from_owner(self._owner)


class Secp256k1Signer:
    """ECDSA secp256k1 signer over a raw private key hex string."""

    signature_type = SIGNATURE_TYPE_SECP256K1

    def __init__(self, private_key_hex: str) -> None:
        if not _PRIVATE_HEX_RE.match(private_key_hex or ""):
            raise SigningError("secp256k1 private key must be 32 bytes of hex")
        self._private_hex = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
        self._owner = crypto_utils.derive_public_key_bytes(self._private_hex)

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, data: bytes) -> bytes:
        return crypto_utils.secp256k1_sign(self._private_hex, data)

    def address(self) -> str:
        return crypto_utils.address_from_owner(self._owner)


Credential = Union[Signer, Mapping[str, Any], str]


def normalize_signer(credential: Credential) -> Signer:
    """
    Turn any supported credential shape into a ``Signer``.

    Raises:
        SigningError: If the credential shape is unsupported or invalid.
    """
    if isinstance(credential, AoSigner):
        return credential.signer
    if isinstance(credential, Signer):
        return credential
    if isinstance(credential, Mapping):
        return ArweaveSigner(credential)
    if isinstance(credential, str):
        return Secp256k1Signer(credential)
    raise SigningError(f"Unsupported credential type: {type(credential).__name__}")


@dataclass(frozen=True)
class SignedMessage:
    """A message together with the signature that makes it sendable.

    Built once per send; transport retries resend this exact envelope.
    """

    id: str
    owner: str
    signature: str
    message: Message

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "Id": self.id,
            "Target": self.message.target,
            "Owner": self.owner,
            "Signature": self.signature,
            "Anchor": self.message.anchor,
            "Tags": [tag.to_dict() for tag in self.message.tags],
            "Data": self.message.data_as_text(),
        }


class AoSigner:
    """Protocol-native signer used by the process client."""

    def __init__(self, signer: Signer) -> None:
        self.signer = signer

    def address(self) -> str:
        return self.signer.address()

    async def __call__(self, message: Message) -> SignedMessage:
        payload = message.signing_payload()
        try:
            signature = self.signer.sign(payload)
            if inspect.isawaitable(signature):
                signature = await signature
        except SigningError:
            raise
        except Exception as exc:
            logger.error("Signing failed", extra={"error_type": type(exc).__name__})
            raise SigningError(f"Failed to sign message: {exc}") from exc

        if not isinstance(signature, (bytes, bytearray)) or not signature:
            raise SigningError("Signer returned an empty or non-bytes signature")

        message_id = crypto_utils.b64url_encode(hashlib.sha256(bytes(signature)).digest())
        return SignedMessage(
            id=message_id,
            owner=crypto_utils.b64url_encode(self.signer.owner),
            signature=crypto_utils.b64url_encode(bytes(signature)),
            message=message,
        )


async def create_ao_signer(credential: Credential) -> AoSigner:
    """Produce the protocol-native signer for any supported credential."""
    if isinstance(credential, AoSigner):
        return credential
    return AoSigner(normalize_signer(credential))
