"""Key helpers for RSA (Arweave JWK) and secp256k1 credentials, plus base64url encoding."""

from __future__ import annotations

import base64
import hashlib
from typing import Any, Mapping

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

_CURVE = ec.SECP256K1()
_CURVE_ORDER = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
_PSS_SALT_LENGTH = 32

_JWK_PRIVATE_FIELDS = ("n", "e", "d", "p", "q", "dp", "dq", "qi")


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    padding_len = (-len(text)) % 4
    return base64.urlsafe_b64decode(text + "=" * padding_len)


def _b64url_to_int(text: str) -> int:
    return int.from_bytes(b64url_decode(text), "big")


def _int_to_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def address_from_owner(owner: bytes) -> str:
    """Wallet address: base64url(sha256(owner public key bytes))."""
    return b64url_encode(hashlib.sha256(owner).digest())


# ==================== RSA / JWK ====================


def load_rsa_private_key_from_jwk(jwk: Mapping[str, Any]) -> rsa.RSAPrivateKey:
    missing = [name for name in _JWK_PRIVATE_FIELDS if not jwk.get(name)]
    if jwk.get("kty", "RSA") != "RSA" or missing:
        raise ValueError(f"JWK is not a complete RSA private key (missing: {', '.join(missing) or 'kty'})")
    public_numbers = rsa.RSAPublicNumbers(_b64url_to_int(jwk["e"]), _b64url_to_int(jwk["n"]))
    private_numbers = rsa.RSAPrivateNumbers(
        p=_b64url_to_int(jwk["p"]),
        q=_b64url_to_int(jwk["q"]),
        d=_b64url_to_int(jwk["d"]),
        dmp1=_b64url_to_int(jwk["dp"]),
        dmq1=_b64url_to_int(jwk["dq"]),
        iqmp=_b64url_to_int(jwk["qi"]),
        public_numbers=public_numbers,
    )
    return private_numbers.private_key()


def rsa_owner_bytes(private_key: rsa.RSAPrivateKey) -> bytes:
    return _int_to_bytes(private_key.public_key().public_numbers().n)


def generate_rsa_jwk(key_size: int = 4096) -> dict[str, str]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    numbers = private_key.private_numbers()
    public = numbers.public_numbers
    return {
        "kty": "RSA",
        "n": b64url_encode(_int_to_bytes(public.n)),
        "e": b64url_encode(_int_to_bytes(public.e)),
        "d": b64url_encode(_int_to_bytes(numbers.d)),
        "p": b64url_encode(_int_to_bytes(numbers.p)),
        "q": b64url_encode(_int_to_bytes(numbers.q)),
        "dp": b64url_encode(_int_to_bytes(numbers.dmp1)),
        "dq": b64url_encode(_int_to_bytes(numbers.dmq1)),
        "qi": b64url_encode(_int_to_bytes(numbers.iqmp)),
    }


def rsa_pss_sign(private_key: rsa.RSAPrivateKey, message: bytes) -> bytes:
    return private_key.sign(
        message,
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=_PSS_SALT_LENGTH),
        hashes.SHA256(),
    )


def rsa_pss_verify(owner: bytes, message: bytes, signature: bytes) -> bool:
    public_key = rsa.RSAPublicNumbers(65537, int.from_bytes(owner, "big")).public_key()
    try:
        public_key.verify(
            signature,
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=_PSS_SALT_LENGTH),
            hashes.SHA256(),
        )
        return True
    except InvalidSignature:
        return False


# ==================== secp256k1 ====================


def _normalize_private_value(value: int) -> int:
    normalized = value % _CURVE_ORDER
    if normalized == 0:
        normalized = 1
    return normalized


def _public_key_to_bytes(public_key: ec.EllipticCurvePublicKey) -> bytes:
    numbers = public_key.public_numbers()
    return numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")


def load_private_key_from_hex(private_hex: str) -> ec.EllipticCurvePrivateKey:
    return ec.derive_private_key(_normalize_private_value(int(private_hex, 16)), _CURVE)


def load_public_key_from_bytes(raw: bytes) -> ec.EllipticCurvePublicKey:
    if len(raw) != 64:
        raise ValueError("Public key must be 64 bytes (uncompressed without prefix).")
    return ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, b"\x04" + raw)


def generate_secp256k1_private_key_hex() -> str:
    private_key = ec.generate_private_key(_CURVE)
    return private_key.private_numbers().private_value.to_bytes(32, "big").hex()


def derive_public_key_bytes(private_hex: str) -> bytes:
    return _public_key_to_bytes(load_private_key_from_hex(private_hex).public_key())


def _validate_signature_range(r: int, s: int) -> None:
    if not (1 <= r < _CURVE_ORDER):
        raise ValueError("Signature r component out of range.")
    if not (1 <= s < _CURVE_ORDER):
        raise ValueError("Signature s component out of range.")


def canonicalize_signature_components(r: int, s: int) -> tuple[int, int]:
    """Normalize signature components to canonical low-S form."""
    _validate_signature_range(r, s)
    if s > _CURVE_ORDER // 2:
        s = _CURVE_ORDER - s
    return r, s


def secp256k1_sign(private_hex: str, message: bytes) -> bytes:
    private_key = load_private_key_from_hex(private_hex)
    der_signature = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    r, s = canonicalize_signature_components(*decode_dss_signature(der_signature))
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def secp256k1_verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    if len(signature) != 64:
        return False
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    try:
        _validate_signature_range(r, s)
    except ValueError:
        return False
    if s > _CURVE_ORDER // 2:
        return False
    try:
        load_public_key_from_bytes(public_key).verify(
            encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256())
        )
        return True
    except InvalidSignature:
        return False
