"""Tests for nix32 encoding, hash folding and SRI strings."""

import hashlib

import pytest

from pinstore.hash import compress_hash, from_sri, nix32_encode, sha256, to_sri


# sha256("hello") = 2cf24dba...
HELLO_SHA256 = bytes.fromhex(
    "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
)
# From: echo -n "hello" | nix hash file --base32 /dev/stdin
HELLO_NIX32 = "094qif9n4cq4fdg459qzbhg1c6wywawwaaivx0k0x8xhbyx4vwic"


def test_encode_hello_sha256():
    assert nix32_encode(HELLO_SHA256) == HELLO_NIX32


def test_encode_length():
    # ceil(n*8/5)
    for n in range(0, 40):
        assert len(nix32_encode(bytes(range(n)))) == (n * 8 + 4) // 5


def test_store_hash_length():
    """20-byte folded hash -> 32 chars."""
    assert nix32_encode(b"\x00" * 20) == "0" * 32


def test_compress_hash_folds_every_byte():
    digest = bytes(range(32))
    folded = compress_hash(digest, 20)
    assert len(folded) == 20
    # bytes 20..31 wrap around onto positions 0..11
    assert folded[0] == 0 ^ 20
    assert folded[11] == 11 ^ 31
    assert folded[12] == 12


def test_sha256():
    assert sha256(b"hello") == hashlib.sha256(b"hello").digest()


def test_sri():
    sri = to_sri(HELLO_SHA256)
    assert sri == "sha256-LPJNul+wow4m6DsqxbninhsWHlwfp0JecwQzYpOLmCQ="
    assert from_sri(sri) == HELLO_SHA256


def test_from_sri_rejects_other_algorithms():
    with pytest.raises(ValueError, match="unsupported SRI"):
        from_sri("sha512-abc")
    with pytest.raises(ValueError, match="not a SHA-256 digest"):
        from_sri("sha256-YWJj")
    with pytest.raises(ValueError):
        from_sri("sha256-not base64!")
