"""Hashing and hash encodings used for store names and lock records.

Store names use Nix's base32 ("nix32"), which differs from RFC 4648 in
two ways:

1. Alphabet: "0123456789abcdfghijklmnpqrsvwxyz"; e, o, t and u are
   left out.
2. Bit order: 5-bit groups are emitted from the *last* group down to
   the first, so the text reads back-to-front compared to RFC base32.

Output length is ceil(n*8/5) characters for n input bytes:
  20 bytes (folded store hash) → 32 chars
  32 bytes (SHA-256 digest)    → 52 chars

Lock records carry SRI strings ("sha256-<base64>") instead, which is what
the lock file of a flake-style project stores as ``narHash``.
"""

import base64
import hashlib

NIX32_CHARS = "0123456789abcdfghijklmnpqrsvwxyz"


def nix32_encode(data: bytes) -> str:
    """Encode bytes as nix32.

    Walks group positions from high to low; group i starts at bit i*5
    and may straddle two input bytes.
    """
    n = len(data)
    chars = []
    for i in range((n * 8 + 4) // 5 - 1, -1, -1):
        bit = i * 5
        j, k = divmod(bit, 8)
        c = data[j] >> k
        if j + 1 < n:
            c |= data[j + 1] << (8 - k)
        chars.append(NIX32_CHARS[c & 0x1F])
    return "".join(chars)


def compress_hash(digest: bytes, size: int) -> bytes:
    """XOR-fold ``digest`` down to ``size`` bytes.

    Byte i of the input lands on position i % size, so every input byte
    contributes to the result (unlike truncation). Store names fold a
    32-byte SHA-256 into 20 bytes.
    """
    folded = bytearray(size)
    for i, b in enumerate(digest):
        folded[i % size] ^= b
    return bytes(folded)


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def to_sri(digest: bytes) -> str:
    """``sha256-<base64>`` form of a SHA-256 digest."""
    return "sha256-" + base64.b64encode(digest).decode()


def from_sri(sri: str) -> bytes:
    algo, _, b64 = sri.partition("-")
    if algo != "sha256" or not b64:
        raise ValueError(f"unsupported SRI hash: {sri!r}")
    digest = base64.b64decode(b64, validate=True)
    if len(digest) != 32:
        raise ValueError(f"not a SHA-256 digest: {sri!r}")
    return digest
