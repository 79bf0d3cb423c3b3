"""Ed25519 webhook authentication derived from the bot secret."""

from __future__ import annotations

import binascii
from collections.abc import Mapping

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey

from mouse_bot.errors import InvalidSignature, MissingSignatureHeaders

SEED_SIZE = 32
SIGNATURE_HEADER = "x-signature-ed25519"
TIMESTAMP_HEADER = "x-signature-timestamp"


def derive_seed(secret: str) -> bytes:
    """Repeat the secret until it covers the seed length, then truncate."""
    if not secret:
        raise ValueError("Bot secret is empty")
    seed = secret
    while len(seed) < SEED_SIZE:
        seed += seed
    return seed[:SEED_SIZE].encode("utf-8")[:SEED_SIZE]


def signing_key(secret: str) -> SigningKey:
    return SigningKey(derive_seed(secret))


def build_handshake_response(secret: str, plain_token: str, event_ts: str) -> dict[str, str]:
    """Answer the platform's op=13 challenge by signing ``event_ts + plain_token``."""
    signed = signing_key(secret).sign(f"{event_ts}{plain_token}".encode("utf-8"))
    return {"plain_token": plain_token, "signature": signed.signature.hex()}


def verify(secret: str, timestamp: str, raw_body: bytes, signature_hex: str) -> bool:
    """Check a signature over ``timestamp + raw_body`` (exact bytes as received)."""
    try:
        signature = binascii.unhexlify(signature_hex)
    except (binascii.Error, ValueError):
        return False
    if len(signature) != 64:
        return False

    verify_key = signing_key(secret).verify_key
    try:
        verify_key.verify(timestamp.encode("utf-8") + raw_body, signature)
    except BadSignatureError:
        return False
    return True


def authenticate(secret: str, headers: Mapping[str, str], raw_body: bytes) -> None:
    """Raise unless the request carries a valid signature.

    ``headers`` must be looked up case-insensitively (Starlette ``Headers`` or a
    dict with lower-case keys).
    """
    signature = headers.get(SIGNATURE_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    if not signature or not timestamp:
        raise MissingSignatureHeaders()
    if not verify(secret, timestamp, raw_body, signature):
        raise InvalidSignature()
