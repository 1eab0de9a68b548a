from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from ticketforge.utils.hashing import (
    SHA256_HEX_LENGTH,
    is_sha256_hex,
    sha256_bytes,
    sha256_file,
    sha256_text,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_text_and_bytes_digests_agree() -> None:
    expected = hashlib.sha256("openapi: 3.1.0\n".encode()).hexdigest()

    assert sha256_text("openapi: 3.1.0\n") == expected
    assert sha256_bytes(b"openapi: 3.1.0\n") == expected
    assert len(expected) == SHA256_HEX_LENGTH


def test_file_digest_reads_in_chunks(tmp_path: Path) -> None:
    spec = tmp_path / "openapi.yaml"
    payload = b"paths:\n" + b"  /payments: {}\n" * 1000
    spec.write_bytes(payload)

    assert sha256_file(spec, chunk_size=7) == hashlib.sha256(payload).hexdigest()
    assert sha256_file(str(spec)) == sha256_bytes(payload)


def test_file_digest_rejects_non_positive_chunks(tmp_path: Path) -> None:
    spec = tmp_path / "openapi.yaml"
    spec.write_text("{}", encoding="utf-8")

    with pytest.raises(ValueError, match="chunk_size"):
        sha256_file(spec, chunk_size=0)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("deadbeef" * 8, True),
        ("DEADBEEF" * 8, True),
        ("deadbeef" * 7, False),
        ("g" * 64, False),
        ("", False),
    ],
)
def test_is_sha256_hex(value: str, expected: bool) -> None:
    assert is_sha256_hex(value) is expected
