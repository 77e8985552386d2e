"""SHA-256 digest engines used for the PKCE ``S256`` transformation.

Two interchangeable backends implement the :class:`Sha256Engine` protocol:

``hashlib``
    Delegates to the platform crypto library (OpenSSL via :mod:`hashlib`).
``portable``
    A from-first-principles FIPS 180-4 implementation for interpreters built
    without a usable ``hashlib.sha256``.

The backend is chosen by configuration (``SMART_SHA256_BACKEND``, see
:class:`smart_auth.config.Settings`) through :func:`get_engine`.
"""

from __future__ import annotations

import hashlib
import struct
from typing import Final, Protocol, runtime_checkable

from smart_auth.errors import InvalidConfiguration

# First 32 bits of the fractional parts of the cube roots of the first 64 primes.
_K: Final[tuple[int, ...]] = (
    0x428A2F98, 0x71374491, 0xB5C0FBCF, 0xE9B5DBA5, 0x3956C25B, 0x59F111F1, 0x923F82A4, 0xAB1C5ED5,
    0xD807AA98, 0x12835B01, 0x243185BE, 0x550C7DC3, 0x72BE5D74, 0x80DEB1FE, 0x9BDC06A7, 0xC19BF174,
    0xE49B69C1, 0xEFBE4786, 0x0FC19DC6, 0x240CA1CC, 0x2DE92C6F, 0x4A7484AA, 0x5CB0A9DC, 0x76F988DA,
    0x983E5152, 0xA831C66D, 0xB00327C8, 0xBF597FC7, 0xC6E00BF3, 0xD5A79147, 0x06CA6351, 0x14292967,
    0x27B70A85, 0x2E1B2138, 0x4D2C6DFC, 0x53380D13, 0x650A7354, 0x766A0ABB, 0x81C2C92E, 0x92722C85,
    0xA2BFE8A1, 0xA81A664B, 0xC24B8B70, 0xC76C51A3, 0xD192E819, 0xD6990624, 0xF40E3585, 0x106AA070,
    0x19A4C116, 0x1E376C08, 0x2748774C, 0x34B0BCB5, 0x391C0CB3, 0x4ED8AA4A, 0x5B9CCA4F, 0x682E6FF3,
    0x748F82EE, 0x78A5636F, 0x84C87814, 0x8CC70208, 0x90BEFFFA, 0xA4506CEB, 0xBEF9A3F7, 0xC67178F2,
)

# First 32 bits of the fractional parts of the square roots of the first 8 primes.
_H0: Final[tuple[int, ...]] = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)

_MASK: Final[int] = 0xFFFFFFFF
DIGEST_SIZE: Final[int] = 32


@runtime_checkable
class Sha256Engine(Protocol):
    """Pure function ``bytes -> 32-byte digest``."""

    def hash(self, data: bytes) -> bytes: ...


def _rotr(x: int, n: int) -> int:
    return ((x >> n) | (x << (32 - n))) & _MASK


def _pad(data: bytes) -> bytes:
    bit_length = (len(data) * 8) & 0xFFFFFFFFFFFFFFFF
    zeros = (55 - len(data)) % 64
    return data + b"\x80" + b"\x00" * zeros + struct.pack(">Q", bit_length)


def _compress(state: list[int], block: bytes) -> None:
    w = list(struct.unpack(">16L", block))
    for i in range(16, 64):
        s0 = _rotr(w[i - 15], 7) ^ _rotr(w[i - 15], 18) ^ (w[i - 15] >> 3)
        s1 = _rotr(w[i - 2], 17) ^ _rotr(w[i - 2], 19) ^ (w[i - 2] >> 10)
        w.append((w[i - 16] + s0 + w[i - 7] + s1) & _MASK)

    a, b, c, d, e, f, g, h = state
    for i in range(64):
        big_s1 = _rotr(e, 6) ^ _rotr(e, 11) ^ _rotr(e, 25)
        ch = (e & f) ^ (~e & _MASK & g)
        temp1 = (h + big_s1 + ch + _K[i] + w[i]) & _MASK
        big_s0 = _rotr(a, 2) ^ _rotr(a, 13) ^ _rotr(a, 22)
        maj = (a & b) ^ (a & c) ^ (b & c)
        temp2 = (big_s0 + maj) & _MASK

        h = g
        g = f
        f = e
        e = (d + temp1) & _MASK
        d = c
        c = b
        b = a
        a = (temp1 + temp2) & _MASK

    for i, v in enumerate((a, b, c, d, e, f, g, h)):
        state[i] = (state[i] + v) & _MASK


class PortableSha256:
    """FIPS 180-4 SHA-256 written against plain Python integers.

    Every addition is reduced modulo 2**32 so the result is bit-exact with the
    standard regardless of Python's arbitrary-precision ints.  All working
    state is local to :meth:`hash`.
    """

    name = "portable"

    def hash(self, data: bytes) -> bytes:
        state = list(_H0)
        message = _pad(bytes(data))
        for offset in range(0, len(message), 64):
            _compress(state, message[offset : offset + 64])
        return struct.pack(">8L", *state)


class HashlibSha256:
    """Platform backend delegating to :func:`hashlib.sha256`."""

    name = "hashlib"

    def hash(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()


_BACKENDS: Final[dict[str, type]] = {
    HashlibSha256.name: HashlibSha256,
    PortableSha256.name: PortableSha256,
}


def get_engine(name: str = "hashlib") -> Sha256Engine:
    """Return the SHA-256 backend registered under *name*.

    Raises
    ------
    InvalidConfiguration
        If *name* is not a known backend.
    """
    try:
        backend = _BACKENDS[name.strip().lower()]
    except KeyError:
        raise InvalidConfiguration(
            f"unknown SHA-256 backend '{name}' (expected one of: {', '.join(sorted(_BACKENDS))})"
        ) from None
    return backend()
