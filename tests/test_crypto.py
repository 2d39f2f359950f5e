"""
Tests for the cryptographic envelope and the master password digest.

Tests cover:
- Seal/unseal round trip and envelope layout
- Wrong password and tampering in every region of the envelope
- Password digest verification (constant-time, malformed input)
- Payload serialization with nested bytes
"""
import base64

import pytest

from crypted_vault.exceptions import AuthenticationFailed
from crypted_vault.vault.crypto import (
    HEADER_SIZE,
    NONCE_SIZE,
    SALT_LENGTH,
    TAG_LENGTH,
    decode_envelope,
    derive_key,
    deserialize_value,
    encode_envelope,
    hash_password,
    seal,
    serialize_value,
    unseal,
    verify_password,
)

ITERATIONS = 1000
SALT = bytes(range(SALT_LENGTH))
NONCE = bytes(range(100, 100 + NONCE_SIZE))


@pytest.fixture
def envelope():
    return seal(b"top secret", "Abcd1234!", iterations=ITERATIONS)


class TestEnvelope:
    """Tests for seal/unseal."""

    def test_round_trip(self, envelope):
        assert unseal(envelope, "Abcd1234!", iterations=ITERATIONS) == b"top secret"

    def test_layout(self, envelope):
        """Envelope is salt || nonce || tag || ciphertext."""
        assert len(envelope) == HEADER_SIZE + len(b"top secret")
        assert HEADER_SIZE == SALT_LENGTH + NONCE_SIZE + TAG_LENGTH

    def test_empty_plaintext(self):
        sealed = seal(b"", "pw", iterations=ITERATIONS)
        assert len(sealed) == HEADER_SIZE
        assert unseal(sealed, "pw", iterations=ITERATIONS) == b""

    def test_fresh_salt_and_nonce(self):
        first = seal(b"data", "pw", iterations=ITERATIONS)
        second = seal(b"data", "pw", iterations=ITERATIONS)
        assert first[:SALT_LENGTH] != second[:SALT_LENGTH]
        assert first != second

    def test_fixed_salt_and_nonce_are_deterministic(self):
        first = seal(b"data", "pw", salt=SALT, nonce=NONCE, iterations=ITERATIONS)
        second = seal(b"data", "pw", salt=SALT, nonce=NONCE, iterations=ITERATIONS)
        assert first == second
        assert first[:SALT_LENGTH] == SALT
        assert first[SALT_LENGTH:SALT_LENGTH + NONCE_SIZE] == NONCE

    def test_invalid_salt_length(self):
        with pytest.raises(ValueError):
            seal(b"data", "pw", salt=b"short", iterations=ITERATIONS)

    def test_wrong_password(self, envelope):
        with pytest.raises(AuthenticationFailed):
            unseal(envelope, "wrong", iterations=ITERATIONS)

    def test_wrong_iterations(self, envelope):
        with pytest.raises(AuthenticationFailed):
            unseal(envelope, "Abcd1234!", iterations=ITERATIONS + 1)

    @pytest.mark.parametrize("offset", [
        0,                                   # salt
        SALT_LENGTH,                         # nonce
        SALT_LENGTH + NONCE_SIZE,            # tag
        HEADER_SIZE,                         # ciphertext
    ])
    def test_tampering_is_detected(self, envelope, offset):
        tampered = bytearray(envelope)
        tampered[offset] ^= 0x01
        with pytest.raises(AuthenticationFailed):
            unseal(bytes(tampered), "Abcd1234!", iterations=ITERATIONS)

    def test_truncated_envelope(self, envelope):
        with pytest.raises(AuthenticationFailed):
            unseal(envelope[:HEADER_SIZE - 1], "Abcd1234!", iterations=ITERATIONS)


class TestEnvelopeEncoding:
    """Tests for the base64 text form."""

    def test_encode_is_base64(self, envelope):
        text = encode_envelope(envelope)
        assert base64.b64decode(text) == envelope
        assert decode_envelope(text) == envelope

    def test_decode_tolerates_trailing_newline(self, envelope):
        assert decode_envelope(encode_envelope(envelope) + "\n") == envelope

    def test_decode_invalid(self):
        with pytest.raises(AuthenticationFailed):
            decode_envelope("not base64 !!!")


class TestPasswordHash:
    """Tests for hash_password/verify_password."""

    def test_verify(self):
        digest = hash_password("Abcd1234!", iterations=ITERATIONS)
        assert verify_password("Abcd1234!", digest, iterations=ITERATIONS)
        assert not verify_password("Abcd1234?", digest, iterations=ITERATIONS)

    def test_digest_layout(self):
        digest = hash_password("pw", salt=SALT, iterations=ITERATIONS)
        raw = base64.b64decode(digest)
        assert raw[:SALT_LENGTH] == SALT
        assert raw[SALT_LENGTH:] == derive_key("pw", SALT, ITERATIONS)

    def test_salted(self):
        assert hash_password("pw", iterations=ITERATIONS) != hash_password(
            "pw", iterations=ITERATIONS
        )

    @pytest.mark.parametrize("digest", ["", "@@@", base64.b64encode(b"short").decode()])
    def test_malformed_digest_never_verifies(self, digest):
        assert verify_password("pw", digest, iterations=ITERATIONS) is False


class TestSerialization:
    """Tests for payload serialization."""

    def test_nested_bytes(self):
        value = {"key": b"\x00\x01", "items": [b"\xff", 1, "two"], "none": None}
        assert deserialize_value(serialize_value(value)) == value

    def test_sorted_keys(self):
        assert serialize_value({"b": 1, "a": 2}) == b'{"a":2,"b":1}'
