from __future__ import annotations

import pytest

from siteportal.services.auth.passwords import (
    COMMON_PASSWORDS,
    MIN_LENGTH,
    SYMBOLS,
    generate_password,
    generate_valid_password,
    hash_password,
    validate_password,
    verify_password,
)


def test_strong_password_passes_every_rule() -> None:
    result = validate_password("Gr@ph1te-Moon!Q7", "owner@example.com")
    assert result.valid
    assert result.errors == []


def test_all_violations_are_reported_together() -> None:
    result = validate_password("aaa")
    assert not result.valid
    assert "Password must be at least 12 characters long" in result.errors
    assert "Password must contain at least one uppercase letter" in result.errors
    assert "Password must contain at least one number" in result.errors
    assert "Password must contain at least one special character" in result.errors
    assert "Password cannot contain three or more repeated characters" in result.errors
    assert result.message() == ". ".join(result.errors)


def test_email_local_part_is_rejected_case_insensitively() -> None:
    result = validate_password("XJordan!Fig28q", "jordan@example.com")
    assert "Password cannot contain your email username" in result.errors


def test_sequences_are_rejected() -> None:
    digits = validate_password("Kite!Plum123zz")
    assert "Password cannot contain sequential numbers" in digits.errors
    letters = validate_password("Kite!PlumXYZ48")
    assert "Password cannot contain sequential letters" in letters.errors


def test_common_passwords_match_case_insensitively() -> None:
    assert "password123" in COMMON_PASSWORDS
    assert "Password is too common" in validate_password("PASSWORD123").errors


def test_overlong_password_is_rejected() -> None:
    result = validate_password("Gr@ph1te-Moon!Q7" * 9)
    assert "Password must be at most 128 characters long" in result.errors


def test_generated_password_contains_every_class() -> None:
    for _ in range(25):
        password = generate_password(16)
        assert len(password) == 16
        assert any(ch.islower() for ch in password)
        assert any(ch.isupper() for ch in password)
        assert any(ch.isdigit() for ch in password)
        assert any(ch in SYMBOLS for ch in password)


def test_generated_password_rejects_tiny_lengths() -> None:
    with pytest.raises(ValueError):
        generate_password(3)


def test_generate_valid_password_satisfies_policy() -> None:
    for _ in range(10):
        password = generate_valid_password(email="someone@example.com")
        assert len(password) >= MIN_LENGTH
        assert validate_password(password, "someone@example.com").valid


def test_hash_round_trip_and_long_inputs() -> None:
    long_password = "Aa1!" + "x" * 200
    hashed = hash_password(long_password)
    assert verify_password(long_password, hashed)
    # Bytes past bcrypt's 72-byte window still matter.
    assert not verify_password(long_password[:-1] + "y", hashed)
    assert not verify_password("anything", "not-a-bcrypt-hash")
