"""
Code generation and hashing.

Codes are uniform over [0, 10**length) and zero padded. Only an HMAC of the
code, bound to its identity and purpose, is ever persisted.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from otpgate.exceptions import EntropyUnavailable


class CodeGenerator:
    def __init__(self, length: int = 6) -> None:
        if length < 4:
            raise ValueError("OTP codes shorter than 4 digits are not supported")
        self.length = length

    def generate(self) -> tuple[str, str]:
        """Return ``(code, otp_id)`` for one issuance attempt."""
        try:
            code = f"{secrets.randbelow(10 ** self.length):0{self.length}d}"
            otp_id = secrets.token_urlsafe(16)
        except (OSError, NotImplementedError) as exc:
            raise EntropyUnavailable("Secure random source unavailable") from exc
        return code, otp_id

    def is_well_formed(self, code: str) -> bool:
        return len(code) == self.length and code.isascii() and code.isdigit()


class CodeHasher:
    def __init__(self, secret: str) -> None:
        self._key = secret.encode()

    def hash(self, code: str, identity: str, purpose: str) -> str:
        message = f"{purpose}:{identity}:{code}".encode()
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def matches(self, code: str, identity: str, purpose: str, code_hash: str) -> bool:
        return hmac.compare_digest(self.hash(code, identity, purpose), code_hash)
