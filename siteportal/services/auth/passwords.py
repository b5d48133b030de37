from __future__ import annotations

import base64
from dataclasses import dataclass, field
import hashlib
import re
import secrets
import string

import bcrypt


MIN_LENGTH = 12
MAX_LENGTH = 128

SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
# Accepted symbol set for validation is wider than the generator alphabet.
_SYMBOL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_REPEATED_RE = re.compile(r"(.)\1{2,}")

_DIGIT_SEQUENCE = "0123456789"
_LETTER_SEQUENCE = string.ascii_lowercase

COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password1",
        "password123",
        "123456",
        "12345678",
        "123456789",
        "1234567890",
        "qwerty",
        "qwerty123",
        "abc123",
        "monkey",
        "letmein",
        "trustno1",
        "dragon",
        "baseball",
        "iloveyou",
        "master",
        "sunshine",
        "ashley",
        "bailey",
        "passw0rd",
        "shadow",
        "welcome",
        "welcome1",
        "michael",
        "login",
        "admin",
        "admin123",
        "root",
        "toor",
        "pass",
        "test",
        "guest",
        "changeme",
        "hello",
        "hello123",
        "secret",
        "secret123",
    }
)


@dataclass(frozen=True)
class PasswordValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def message(self) -> str:
        return ". ".join(self.errors)


def _sequence_windows(sequence: str) -> list[str]:
    return [sequence[i : i + 3] for i in range(len(sequence) - 2)]


_DIGIT_RUNS = _sequence_windows(_DIGIT_SEQUENCE)
_LETTER_RUNS = _sequence_windows(_LETTER_SEQUENCE)


def validate_password(password: str, email: str | None = None) -> PasswordValidation:
    # Every rule is evaluated; the caller gets the full list of violations.
    errors: list[str] = []
    if len(password) < MIN_LENGTH:
        errors.append(f"Password must be at least {MIN_LENGTH} characters long")
    if len(password) > MAX_LENGTH:
        errors.append(f"Password must be at most {MAX_LENGTH} characters long")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not _SYMBOL_RE.search(password):
        errors.append("Password must contain at least one special character")

    lowered = password.lower()
    if lowered in COMMON_PASSWORDS:
        errors.append("Password is too common")
    if email:
        local_part = email.split("@", 1)[0].strip().lower()
        if local_part and local_part in lowered:
            errors.append("Password cannot contain your email username")
    if _REPEATED_RE.search(password):
        errors.append("Password cannot contain three or more repeated characters")
    if any(run in password for run in _DIGIT_RUNS):
        errors.append("Password cannot contain sequential numbers")
    if any(run in lowered for run in _LETTER_RUNS):
        errors.append("Password cannot contain sequential letters")

    return PasswordValidation(valid=not errors, errors=errors)


def generate_password(length: int = 16) -> str:
    """Generate a random password containing every required character class.

    The first four positions are seeded with one lowercase, uppercase, digit
    and symbol; the rest is drawn from the combined alphabet and the whole
    string is shuffled so the seeded characters are not positionally
    predictable.
    """
    if length < 4:
        raise ValueError("length must be at least 4")
    rng = secrets.SystemRandom()
    classes = (string.ascii_lowercase, string.ascii_uppercase, string.digits, SYMBOLS)
    alphabet = "".join(classes)
    chars = [secrets.choice(group) for group in classes]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(classes)))
    rng.shuffle(chars)
    return "".join(chars)


def generate_valid_password(length: int = 16, *, email: str | None = None, max_attempts: int = 100) -> str:
    # Random draws can still hit the run/sequence rules; retry until the policy accepts one.
    for _ in range(max_attempts):
        candidate = generate_password(max(length, MIN_LENGTH))
        if validate_password(candidate, email).valid:
            return candidate
    raise RuntimeError("Unable to generate a password satisfying the policy")


def _prehash(password: str) -> bytes:
    # bcrypt only reads 72 bytes; pre-hash so long passwords keep all their entropy.
    digest = hashlib.sha256(password.encode("utf-8")).digest()
    return base64.b64encode(digest)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False
