"""Tests for access password hashing."""

from __future__ import annotations

import pytest

from credentia.config import VerificationConfig
from credentia.systems.verification.passwords import hash_password, verify_password

_FAST = VerificationConfig(scrypt_n=2**10)


class TestPasswordHashing:
    def test_round_trip(self):
        encoded = hash_password("correct horse", _FAST)
        assert verify_password("correct horse", encoded) is True
        assert verify_password("wrong horse", encoded) is False

    def test_salted(self):
        assert hash_password("same", _FAST) != hash_password("same", _FAST)

    def test_encoding_carries_parameters(self):
        scheme, n, r, p, salt, digest = hash_password("pw", _FAST).split("$")
        assert scheme == "scrypt"
        assert (int(n), int(r), int(p)) == (2**10, 8, 1)
        assert salt and digest

    def test_empty_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password("", _FAST)

    @pytest.mark.parametrize("encoded", [None, "", "plaintext", "bcrypt$1$2$3$x$y", "scrypt$a$b$c$d$e"])
    def test_unreadable_hash_never_matches(self, encoded):
        assert verify_password("pw", encoded) is False

    def test_empty_candidate_never_matches(self):
        assert verify_password("", hash_password("pw", _FAST)) is False

    def test_surrounding_whitespace_is_ignored(self):
        encoded = hash_password("  open-sesame \n", _FAST)
        assert verify_password("open-sesame", encoded) is True
        assert verify_password(" open-sesame ", encoded) is True
        assert verify_password("open sesame", encoded) is False

    def test_whitespace_only_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password("   ", _FAST)
