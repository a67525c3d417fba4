from __future__ import annotations

import pytest

from shiplock.core.secrets import (
    commitment_hash,
    generate_secret,
    matches_commitment,
    parse_hex,
    to_hex,
)


def test_commitment_is_keccak256() -> None:
    # keccak-256 of the empty string (not SHA3-256)
    assert commitment_hash(b"").hex() == (
        "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
    )
    assert len(commitment_hash(b"abc")) == 32


def test_generate_secret_is_fresh_and_consistent() -> None:
    a = generate_secret()
    b = generate_secret()
    assert a.secret != b.secret
    assert len(a.secret) == 32
    assert a.commitment_hash == commitment_hash(a.secret)
    assert a.secret_hex.startswith("0x") and len(a.secret_hex) == 66
    assert a.secret.hex() not in repr(a)

    with pytest.raises(ValueError):
        generate_secret(8)


def test_parse_hex_accepts_optional_prefix() -> None:
    assert parse_hex("0xdeadbeef") == b"\xde\xad\xbe\xef"
    assert parse_hex("DEADBEEF") == b"\xde\xad\xbe\xef"
    assert to_hex(b"\x01\x02") == "0x0102"
    with pytest.raises(ValueError):
        parse_hex("0x")
    with pytest.raises(ValueError):
        parse_hex("zz")
    with pytest.raises(ValueError):
        parse_hex("0x0102", expected_len=32)


def test_matches_commitment() -> None:
    gen = generate_secret()
    assert matches_commitment(gen.secret, gen.commitment_hash)
    assert not matches_commitment(gen.secret + b"x", gen.commitment_hash)
