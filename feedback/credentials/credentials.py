import hashlib
import hmac
import secrets

import bcrypt

PIN_LENGTH = 6
SALT_BYTES = 16


class CredentialService:
    """Mints and verifies organiser PIN credentials.

    Only the salt and the SHA-256 digest of pin+salt are ever stored. A single
    administrative override PIN may be configured as a bcrypt hash; it is
    accepted for every organiser of every session.
    """

    def __init__(self, admin_pin_hash: str = ""):
        self.admin_pin_hash = admin_pin_hash or ""

    def generate_pin(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(PIN_LENGTH))

    def generate_salt(self) -> str:
        return secrets.token_hex(SALT_BYTES)

    def hash(self, pin: str, salt: str) -> str:
        return hashlib.sha256(f"{pin}{salt}".encode("utf-8")).hexdigest()

    def mint(self):
        """Return a fresh (pin, salt, pin_hash) triple."""
        pin = self.generate_pin()
        salt = self.generate_salt()
        return pin, salt, self.hash(pin, salt)

    def is_admin_pin(self, pin: str) -> bool:
        if not self.admin_pin_hash or not pin:
            return False
        try:
            return bcrypt.checkpw(pin.encode(), self.admin_pin_hash.encode())
        except ValueError:
            # malformed hash in config
            return False

    def verify(self, pin: str, salt: str, stored_hash: str, allow_admin: bool = True) -> bool:
        # allow_admin=False skips the bcrypt check for callers that already made it
        if allow_admin and self.is_admin_pin(pin):
            return True
        if not pin or not stored_hash:
            return False
        return hmac.compare_digest(self.hash(pin, salt or ""), stored_hash)
