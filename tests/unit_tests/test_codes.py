"""Tests for code generation and hashing."""

from unittest.mock import patch

import pytest

from otpgate.exceptions import EntropyUnavailable
from otpgate.services.codes import CodeGenerator, CodeHasher


class TestCodeGenerator:
    def test_code_is_six_digits_by_default(self):
        code, _ = CodeGenerator().generate()
        assert len(code) == 6
        assert code.isdigit()

    def test_small_values_are_zero_padded(self):
        with patch("otpgate.services.codes.secrets.randbelow", return_value=42):
            code, _ = CodeGenerator().generate()
        assert code == "000042"

    def test_custom_length(self):
        code, _ = CodeGenerator(length=8).generate()
        assert len(code) == 8

    def test_rejects_short_codes(self):
        with pytest.raises(ValueError):
            CodeGenerator(length=3)

    def test_otp_id_is_distinct_and_unguessable(self):
        ids = {CodeGenerator().generate()[1] for _ in range(50)}
        assert len(ids) == 50
        # 16 random bytes, urlsafe base64 without padding
        assert all(len(otp_id) >= 22 for otp_id in ids)

    def test_otp_id_never_equals_code(self):
        code, otp_id = CodeGenerator().generate()
        assert code != otp_id

    def test_entropy_failure_is_fatal(self):
        with patch("otpgate.services.codes.secrets.randbelow", side_effect=OSError("no entropy")):
            with pytest.raises(EntropyUnavailable):
                CodeGenerator().generate()

    def test_codes_cover_the_whole_space(self):
        """Leading digits are not biased away from zero."""
        first_digits = {CodeGenerator(length=4).generate()[0][0] for _ in range(500)}
        assert "0" in first_digits
        assert len(first_digits) == 10

    @pytest.mark.parametrize(
        "code, expected",
        [
            ("123456", True),
            ("000000", True),
            ("12345", False),
            ("1234567", False),
            ("12a456", False),
            ("١٢٣٤٥٦", False),  # non-ASCII digits
            ("", False),
        ],
    )
    def test_is_well_formed(self, code, expected):
        assert CodeGenerator().is_well_formed(code) is expected


class TestCodeHasher:
    def test_hash_is_not_the_code(self):
        digest = CodeHasher("secret").hash("123456", "a@example.com", "login")
        assert "123456" not in digest
        assert len(digest) == 64

    def test_matches_same_binding(self):
        hasher = CodeHasher("secret")
        digest = hasher.hash("123456", "a@example.com", "login")
        assert hasher.matches("123456", "a@example.com", "login", digest)

    def test_wrong_code_does_not_match(self):
        hasher = CodeHasher("secret")
        digest = hasher.hash("123456", "a@example.com", "login")
        assert not hasher.matches("654321", "a@example.com", "login", digest)

    def test_hash_is_bound_to_identity_and_purpose(self):
        hasher = CodeHasher("secret")
        digest = hasher.hash("123456", "a@example.com", "login")
        assert not hasher.matches("123456", "b@example.com", "login", digest)
        assert not hasher.matches("123456", "a@example.com", "password_reset", digest)

    def test_hash_depends_on_secret(self):
        a = CodeHasher("one").hash("123456", "a@example.com", "login")
        b = CodeHasher("two").hash("123456", "a@example.com", "login")
        assert a != b
