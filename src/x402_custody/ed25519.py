"""Self-contained Ed25519 key derivation.

Field elements of GF(2^255 - 19) are held as 16 signed limbs of radix 2^16
and carried lazily. Points on the twisted Edwards curve use extended
coordinates ``[X, Y, Z, T]``. SHA-512 is implemented here as well so that
deriving a key pair from a raw seed needs nothing outside this module.

Scalars mod the group order are plain Python integers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Sequence

from .errors import InvalidSecretKeyLengthError, InvalidSeedLengthError

SEED_LENGTH = 32
PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 64
SIGNATURE_LENGTH = 64

# Group order
L = 2**252 + 27742317777372353535851937790883648493

Gf = List[int]
Point = List[Gf]


def _gf(init: Sequence[int] = ()) -> Gf:
    r = [0] * 16
    for i, value in enumerate(init):
        r[i] = value
    return r


GF0 = _gf()
GF1 = _gf([1])
D = _gf([0x78A3, 0x1359, 0x4DCA, 0x75EB, 0xD8AB, 0x4141, 0x0A4D, 0x0070,
         0xE898, 0x7779, 0x4079, 0x8CC7, 0xFE73, 0x2B6F, 0x6CEE, 0x5203])
D2 = _gf([0xF159, 0x26B2, 0x9B94, 0xEBD6, 0xB156, 0x8283, 0x149A, 0x00E0,
          0xD130, 0xEEF3, 0x80F2, 0x198E, 0xFCE7, 0x56DF, 0xD9DC, 0x2406])
X = _gf([0xD51A, 0x8F25, 0x2D60, 0xC956, 0xA7B2, 0x9525, 0xC760, 0x692C,
         0xDC5C, 0xFDD6, 0xE231, 0xC0A4, 0x53FE, 0xCD6E, 0x36D3, 0x2169])
Y = _gf([0x6658] + [0x6666] * 15)
# sqrt(-1)
I = _gf([0xA0B0, 0x4A0E, 0x1B27, 0xC4EE, 0xE478, 0xAD2F, 0x1806, 0x2F43,
         0xD7A7, 0x3DFB, 0x0099, 0x2B4D, 0xDF0B, 0x4FC1, 0x2480, 0x2B83])


@dataclass(frozen=True)
class Ed25519KeyPair:
    """An Ed25519 key pair.

    ``secret_key`` is the 64-byte ``seed || public_key`` form used by Solana
    wallets.
    """

    public_key: bytes
    secret_key: bytes = field(repr=False)

    @property
    def seed(self) -> bytes:
        return self.secret_key[:SEED_LENGTH]


# ============================================================================
# Field arithmetic
# ============================================================================


def car25519(o: Gf) -> None:
    for i in range(16):
        o[i] += 1 << 16
        c = o[i] >> 16
        if i < 15:
            o[i + 1] += c - 1
        else:
            o[0] += 38 * (c - 1)
        o[i] -= c << 16


def sel25519(p: Gf, q: Gf, b: int) -> None:
    """Swap ``p`` and ``q`` in place when ``b`` is 1, without branching on ``b``."""
    mask = ~(b - 1)
    for i in range(16):
        t = mask & (p[i] ^ q[i])
        p[i] ^= t
        q[i] ^= t


def pack25519(n: Gf) -> bytes:
    t = list(n)
    car25519(t)
    car25519(t)
    car25519(t)
    m = [0] * 16
    for _ in range(2):
        m[0] = t[0] - 0xFFED
        for i in range(1, 15):
            m[i] = t[i] - 0xFFFF - ((m[i - 1] >> 16) & 1)
            m[i - 1] &= 0xFFFF
        m[15] = t[15] - 0x7FFF - ((m[14] >> 16) & 1)
        b = (m[15] >> 16) & 1
        m[14] &= 0xFFFF
        sel25519(t, m, 1 - b)
    out = bytearray(32)
    for i in range(16):
        out[2 * i] = t[i] & 0xFF
        out[2 * i + 1] = (t[i] >> 8) & 0xFF
    return bytes(out)


def unpack25519(n: bytes) -> Gf:
    o = [n[2 * i] + (n[2 * i + 1] << 8) for i in range(16)]
    o[15] &= 0x7FFF
    return o


def neq25519(a: Gf, b: Gf) -> bool:
    return pack25519(a) != pack25519(b)


def par25519(a: Gf) -> int:
    return pack25519(a)[0] & 1


def A(a: Gf, b: Gf) -> Gf:
    return [a[i] + b[i] for i in range(16)]


def Z(a: Gf, b: Gf) -> Gf:
    return [a[i] - b[i] for i in range(16)]


def M(a: Gf, b: Gf) -> Gf:
    t = [0] * 31
    for i in range(16):
        ai = a[i]
        for j in range(16):
            t[i + j] += ai * b[j]
    for i in range(15):
        t[i] += 38 * t[i + 16]
    o = t[:16]
    car25519(o)
    car25519(o)
    return o


def S(a: Gf) -> Gf:
    return M(a, a)


def inv25519(i: Gf) -> Gf:
    c = list(i)
    for a in range(253, -1, -1):
        c = S(c)
        if a != 2 and a != 4:
            c = M(c, i)
    return c


def pow2523(i: Gf) -> Gf:
    c = list(i)
    for a in range(250, -1, -1):
        c = S(c)
        if a != 1:
            c = M(c, i)
    return c


# ============================================================================
# Curve operations
# ============================================================================


def add(p: Point, q: Point) -> None:
    """Set ``p`` to ``p + q``. Doubling is ``add(p, p)``."""
    a = M(Z(p[1], p[0]), Z(q[1], q[0]))
    b = M(A(p[0], p[1]), A(q[0], q[1]))
    c = M(M(p[3], q[3]), D2)
    d = M(p[2], q[2])
    d = A(d, d)
    e = Z(b, a)
    f = Z(d, c)
    g = A(d, c)
    h = A(b, a)

    p[0] = M(e, f)
    p[1] = M(h, g)
    p[2] = M(g, f)
    p[3] = M(e, h)


def cswap(p: Point, q: Point, b: int) -> None:
    for i in range(4):
        sel25519(p[i], q[i], b)


def pack(p: Point) -> bytes:
    zi = inv25519(p[2])
    tx = M(p[0], zi)
    ty = M(p[1], zi)
    out = bytearray(pack25519(ty))
    out[31] ^= par25519(tx) << 7
    return bytes(out)


def unpackneg(encoded: bytes) -> Point:
    """Decode a packed point and negate it.

    Raises:
        ValueError: If the bytes do not encode a point on the curve.
    """
    r = [_gf(), unpack25519(encoded), list(GF1), _gf()]

    num = S(r[1])
    den = M(num, D)
    num = Z(num, r[2])
    den = A(r[2], den)

    den2 = S(den)
    den4 = S(den2)
    den6 = M(den4, den2)
    t = M(den6, num)
    t = M(t, den)

    t = pow2523(t)
    t = M(t, num)
    t = M(t, den)
    t = M(t, den)
    r[0] = M(t, den)

    chk = M(S(r[0]), den)
    if neq25519(chk, num):
        r[0] = M(r[0], I)

    chk = M(S(r[0]), den)
    if neq25519(chk, num):
        raise ValueError("Encoded point is not on the curve")

    if par25519(r[0]) == (encoded[31] >> 7):
        r[0] = Z(GF0, r[0])

    r[3] = M(r[0], r[1])
    return r


def scalarmult(q: Point, s: bytes) -> Point:
    """Return ``s * q``. ``q`` is consumed."""
    p = [_gf(), list(GF1), list(GF1), _gf()]
    for i in range(255, -1, -1):
        b = (s[i >> 3] >> (i & 7)) & 1
        cswap(p, q, b)
        add(q, p)
        add(p, p)
        cswap(p, q, b)
    return p


def scalarbase(s: bytes) -> Point:
    q = [list(X), list(Y), list(GF1), M(X, Y)]
    return scalarmult(q, s)


# ============================================================================
# SHA-512
# ============================================================================

_MASK64 = (1 << 64) - 1


def _first_primes(count: int) -> list[int]:
    primes: list[int] = []
    candidate = 2
    while len(primes) < count:
        if all(candidate % p for p in primes if p * p <= candidate):
            primes.append(candidate)
        candidate += 1
    return primes


def _icbrt(n: int) -> int:
    x = 1 << ((n.bit_length() + 2) // 3)
    while True:
        y = (2 * x + n // (x * x)) // 3
        if y >= x:
            return x
        x = y


# Fractional bits of the square roots of the first 8 primes and the cube
# roots of the first 80 primes (FIPS 180-4, 4.2.3 and 5.3.5).
_PRIMES = _first_primes(80)
_H0 = tuple(math.isqrt(p << 128) & _MASK64 for p in _PRIMES[:8])
_K = tuple(_icbrt(p << 192) & _MASK64 for p in _PRIMES)


def _rotr(x: int, n: int) -> int:
    return ((x >> n) | (x << (64 - n))) & _MASK64


def sha512(data: bytes) -> bytes:
    """Compute the SHA-512 digest of ``data``."""
    message = bytes(data)
    bit_length = len(message) * 8
    message += b"\x80"
    message += b"\x00" * ((112 - len(message) % 128) % 128)
    message += bit_length.to_bytes(16, "big")

    h = list(_H0)
    for offset in range(0, len(message), 128):
        w = [int.from_bytes(message[offset + 8 * i : offset + 8 * i + 8], "big") for i in range(16)]
        for t in range(16, 80):
            s0 = _rotr(w[t - 15], 1) ^ _rotr(w[t - 15], 8) ^ (w[t - 15] >> 7)
            s1 = _rotr(w[t - 2], 19) ^ _rotr(w[t - 2], 61) ^ (w[t - 2] >> 6)
            w.append((w[t - 16] + s0 + w[t - 7] + s1) & _MASK64)

        a, b, c, d, e, f, g, hh = h
        for t in range(80):
            sum1 = _rotr(e, 14) ^ _rotr(e, 18) ^ _rotr(e, 41)
            ch = (e & f) ^ (~e & g)
            t1 = (hh + sum1 + ch + _K[t] + w[t]) & _MASK64
            sum0 = _rotr(a, 28) ^ _rotr(a, 34) ^ _rotr(a, 39)
            maj = (a & b) ^ (a & c) ^ (b & c)
            t2 = (sum0 + maj) & _MASK64
            hh, g, f, e, d, c, b, a = g, f, e, (d + t1) & _MASK64, c, b, a, (t1 + t2) & _MASK64

        h = [(x + y) & _MASK64 for x, y in zip(h, (a, b, c, d, e, f, g, hh))]

    return b"".join(x.to_bytes(8, "big") for x in h)


# ============================================================================
# Key derivation and signatures
# ============================================================================


def _clamped_scalar(seed: bytes) -> bytearray:
    d = bytearray(sha512(seed))
    d[0] &= 248
    d[31] &= 127
    d[31] |= 64
    return d


def _reduce(digest: bytes) -> int:
    return int.from_bytes(digest, "little") % L


def derive_from_seed(seed: bytes) -> Ed25519KeyPair:
    """Derive a key pair from a 32-byte seed.

    Args:
        seed: 32 random bytes

    Returns:
        Ed25519KeyPair with a 32-byte public key and 64-byte secret key

    Raises:
        InvalidSeedLengthError: If the seed is not 32 bytes.
    """
    seed = bytes(seed)
    if len(seed) != SEED_LENGTH:
        raise InvalidSeedLengthError(
            f"Ed25519 seed must be {SEED_LENGTH} bytes, got {len(seed)}"
        )
    d = _clamped_scalar(seed)
    public_key = pack(scalarbase(bytes(d[:32])))
    return Ed25519KeyPair(public_key=public_key, secret_key=seed + public_key)


def derive_from_secret_key(secret_key: bytes) -> Ed25519KeyPair:
    """Split a 64-byte secret key into its key pair.

    The public key is the last 32 bytes.

    Raises:
        InvalidSecretKeyLengthError: If the secret key is not 64 bytes.
    """
    secret_key = bytes(secret_key)
    if len(secret_key) != SECRET_KEY_LENGTH:
        raise InvalidSecretKeyLengthError(
            f"Ed25519 secret key must be {SECRET_KEY_LENGTH} bytes, got {len(secret_key)}"
        )
    return Ed25519KeyPair(public_key=secret_key[SEED_LENGTH:], secret_key=secret_key)


def verify(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """Check a detached signature against a 32-byte public key."""
    if len(signature) != SIGNATURE_LENGTH or len(public_key) != PUBLIC_KEY_LENGTH:
        return False
    s = int.from_bytes(signature[32:], "little")
    if s >= L:
        return False
    try:
        q = unpackneg(public_key)
    except ValueError:
        return False

    h = _reduce(sha512(signature[:32] + public_key + message))
    p = scalarmult(q, h.to_bytes(32, "little"))
    add(p, scalarbase(signature[32:]))
    return pack(p) == signature[:32]
