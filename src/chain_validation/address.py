"""Actor addresses.

An address is a protocol tag followed by a protocol specific payload:

- ID: unsigned LEB128 varint actor ID
- SECP256K1: 20-byte BLAKE2b digest of the uncompressed public key
- ACTOR: 20-byte BLAKE2b digest of the creation seed
- BLS: 48-byte public key
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from enum import IntEnum

from .config import (
    BLS_PUBLIC_KEY_BYTES,
    BURNT_FUNDS_ACTOR_ID,
    CHECKSUM_HASH_LENGTH,
    CRON_ACTOR_ID,
    INIT_ACTOR_ID,
    PAYLOAD_HASH_LENGTH,
    REWARD_ACTOR_ID,
    STORAGE_MARKET_ACTOR_ID,
    STORAGE_POWER_ACTOR_ID,
    SYSTEM_ACTOR_ID,
    VERIFIED_REGISTRY_ACTOR_ID,
)

NETWORK_PREFIX = "t"


class Protocol(IntEnum):
    ID = 0
    SECP256K1 = 1
    ACTOR = 2
    BLS = 3


def _encode_uvarint(value: int) -> bytes:
    if value < 0:
        raise ValueError("uvarint must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _decode_uvarint(data: bytes) -> int:
    value = 0
    shift = 0
    for i, byte in enumerate(data):
        value |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            if i != len(data) - 1:
                raise ValueError("trailing bytes after uvarint")
            return value
    raise ValueError("truncated uvarint")


def _hash(data: bytes, size: int) -> bytes:
    return hashlib.blake2b(data, digest_size=size).digest()


@dataclass(frozen=True)
class Address:
    protocol: Protocol
    payload: bytes

    def to_bytes(self) -> bytes:
        return bytes([int(self.protocol)]) + self.payload

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Address":
        if not raw:
            raise ValueError("empty address")
        protocol = Protocol(raw[0])
        payload = bytes(raw[1:])
        if protocol == Protocol.ID:
            _decode_uvarint(payload)
        elif protocol in (Protocol.SECP256K1, Protocol.ACTOR):
            if len(payload) != PAYLOAD_HASH_LENGTH:
                raise ValueError(f"{protocol.name} payload must be {PAYLOAD_HASH_LENGTH} bytes")
        elif len(payload) != BLS_PUBLIC_KEY_BYTES:
            raise ValueError(f"BLS payload must be {BLS_PUBLIC_KEY_BYTES} bytes")
        return cls(protocol, payload)

    @property
    def id(self) -> int:
        if self.protocol != Protocol.ID:
            raise ValueError(f"address {self} is not an ID address")
        return _decode_uvarint(self.payload)

    @property
    def is_id(self) -> bool:
        return self.protocol == Protocol.ID

    def checksum(self) -> bytes:
        return _hash(self.to_bytes(), CHECKSUM_HASH_LENGTH)

    def __str__(self) -> str:
        prefix = f"{NETWORK_PREFIX}{int(self.protocol)}"
        if self.protocol == Protocol.ID:
            return f"{prefix}{self.id}"
        encoded = base64.b32encode(self.payload + self.checksum()).decode("ascii")
        return prefix + encoded.lower().rstrip("=")

    def __repr__(self) -> str:
        return f"Address({self})"


def new_id_address(actor_id: int) -> Address:
    return Address(Protocol.ID, _encode_uvarint(actor_id))


def new_secp256k1_address(public_key: bytes) -> Address:
    return Address(Protocol.SECP256K1, _hash(public_key, PAYLOAD_HASH_LENGTH))


def new_actor_address(data: bytes) -> Address:
    return Address(Protocol.ACTOR, _hash(data, PAYLOAD_HASH_LENGTH))


def new_bls_address(public_key: bytes) -> Address:
    if len(public_key) != BLS_PUBLIC_KEY_BYTES:
        raise ValueError(f"BLS public key must be {BLS_PUBLIC_KEY_BYTES} bytes")
    return Address(Protocol.BLS, bytes(public_key))


SYSTEM_ACTOR_ADDR = new_id_address(SYSTEM_ACTOR_ID)
INIT_ACTOR_ADDR = new_id_address(INIT_ACTOR_ID)
REWARD_ACTOR_ADDR = new_id_address(REWARD_ACTOR_ID)
CRON_ACTOR_ADDR = new_id_address(CRON_ACTOR_ID)
STORAGE_POWER_ACTOR_ADDR = new_id_address(STORAGE_POWER_ACTOR_ID)
STORAGE_MARKET_ACTOR_ADDR = new_id_address(STORAGE_MARKET_ACTOR_ID)
VERIFIED_REGISTRY_ACTOR_ADDR = new_id_address(VERIFIED_REGISTRY_ACTOR_ID)
BURNT_FUNDS_ACTOR_ADDR = new_id_address(BURNT_FUNDS_ACTOR_ID)


def derive_actor_address(origin: Address, call_seq: int, new_actor_count: int) -> Address:
    """Robust address the init actor assigns to the n-th actor created by a message.

    `origin` is the robust address of the message sender, `call_seq` the
    message nonce and `new_actor_count` how many actors the message already
    created before this one.
    """
    seed = origin.to_bytes() + int(call_seq).to_bytes(8, "big") + int(new_actor_count).to_bytes(8, "big")
    return new_actor_address(seed)
