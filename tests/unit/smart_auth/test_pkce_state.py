"""
Unit tests for PKCE helpers and caller-side state helpers.

These tests are CI-safe (no network), cover:
* Code-verifier / S256 challenge generation
* Injected random source and SHA-256 backend
* State generation / verification
"""

from __future__ import annotations

import base64
import re
from hashlib import sha256

import pytest

from smart_auth.errors import InvalidState, PkceGenerationFailed
from smart_auth.pkce import PkceGenerator, base64url_encode, code_challenge_s256
from smart_auth.sha256 import PortableSha256
from smart_auth.state import generate_state, verify_state

VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-_]{43}$")


# --------------------------------------------------------------------------- #
# Base64url                                                                   #
# --------------------------------------------------------------------------- #
def test_base64url_encode_strips_padding_and_uses_urlsafe_alphabet() -> None:
    assert base64url_encode(b"\xfb\xff") == "-_8"
    assert base64url_encode(b"") == ""
    assert "=" not in base64url_encode(b"a")


# --------------------------------------------------------------------------- #
# PKCE                                                                        #
# --------------------------------------------------------------------------- #
def test_generate_produces_rfc7636_verifier() -> None:
    for _ in range(20):
        params = PkceGenerator().generate()
        assert VERIFIER_RE.match(params.code_verifier)
        assert "=" not in params.code_challenge
        assert params.challenge_method == "S256"


def test_challenge_matches_reference() -> None:
    params = PkceGenerator().generate()
    digest = sha256(params.code_verifier.encode("ascii")).digest()
    expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    assert params.code_challenge == expected


def test_rfc7636_appendix_b_example() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    expected = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
    assert code_challenge_s256(verifier) == expected
    assert code_challenge_s256(verifier, engine=PortableSha256()) == expected


def test_generate_uses_injected_random_source_and_engine() -> None:
    gen = PkceGenerator(random_source=lambda n: bytes(range(n)), engine=PortableSha256())
    params = gen.generate()
    assert params.code_verifier == base64url_encode(bytes(range(32)))
    assert params == gen.generate()  # deterministic given the same bytes


def test_generate_rejects_short_random_source() -> None:
    with pytest.raises(PkceGenerationFailed):
        PkceGenerator(random_source=lambda n: b"\x00" * 8).generate()


def test_challenge_rejects_non_ascii_verifier() -> None:
    with pytest.raises(PkceGenerationFailed):
        code_challenge_s256("é" * 43)


def test_challenge_rejects_bad_length() -> None:
    with pytest.raises(PkceGenerationFailed):
        code_challenge_s256("short")
    with pytest.raises(PkceGenerationFailed):
        code_challenge_s256("a" * 129)


# --------------------------------------------------------------------------- #
# STATE                                                                       #
# --------------------------------------------------------------------------- #
def test_state_round_trip() -> None:
    state = generate_state()
    assert len(state) >= 32
    verify_state(state, state)


def test_state_mismatch_detection() -> None:
    state = generate_state()
    with pytest.raises(InvalidState) as exc_info:
        verify_state(state, state[:-1] + ("A" if state[-1] != "A" else "B"))
    assert exc_info.value.expected == state
    assert exc_info.value.to_payload() == {"error": "invalid_state", "message": "state mismatch"}


def test_state_missing_received_value() -> None:
    with pytest.raises(InvalidState):
        verify_state("xyz", None)
