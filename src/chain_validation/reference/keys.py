"""Deterministic key manager for the reference implementation.

Keys are derived from a seed and a counter, so two managers built with the
same seed hand out the same addresses in the same order. Signatures are a
BLAKE3 digest binding the signer address to the signed bytes: the reference
VM can check them without the private key, which is enough to exercise the
signed message paths. They are not cryptographic signatures.
"""

from __future__ import annotations

from typing import Dict

from blake3 import blake3

from ..address import Address, Protocol, new_bls_address, new_secp256k1_address
from ..config import BLS_PUBLIC_KEY_BYTES, SECP_PUBLIC_KEY_BYTES
from ..errors import UnknownKey
from ..types import Signature, SigType

DEFAULT_SEED = b"chain-validation"

SIGNATURE_BYTES = 65


def signature_digest(addr: Address, data: bytes) -> bytes:
    return blake3(addr.to_bytes() + bytes(data)).digest(length=SIGNATURE_BYTES)


def signature_type(addr: Address) -> SigType:
    if addr.protocol == Protocol.SECP256K1:
        return SigType.SECP256K1
    if addr.protocol == Protocol.BLS:
        return SigType.BLS
    raise UnknownKey(f"{addr} is not a public key address")


class ReferenceKeyManager:
    def __init__(self, seed: bytes = DEFAULT_SEED):
        self.seed = seed
        self.keys: Dict[Address, bytes] = {}
        self._counter = 0

    def _next_secret(self) -> bytes:
        self._counter += 1
        return blake3(self.seed + self._counter.to_bytes(8, "big")).digest()

    def new_secp256k1_account_address(self) -> Address:
        secret = self._next_secret()
        public_key = b"\x04" + blake3(b"secp256k1" + secret).digest(length=SECP_PUBLIC_KEY_BYTES - 1)
        addr = new_secp256k1_address(public_key)
        self.keys[addr] = secret
        return addr

    def new_bls_account_address(self) -> Address:
        secret = self._next_secret()
        addr = new_bls_address(blake3(b"bls" + secret).digest(length=BLS_PUBLIC_KEY_BYTES))
        self.keys[addr] = secret
        return addr

    def sign(self, addr: Address, data: bytes) -> Signature:
        if addr not in self.keys:
            raise UnknownKey(f"no key held for {addr}")
        return Signature(type=signature_type(addr), data=signature_digest(addr, data))
