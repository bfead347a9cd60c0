import secrets

from feedback.errors import StoreError

PERMITTED_CHARS = "23456789abcdeghjkmnpqrstuvwxyzABCDEGHJKMNPQRSTUVWXYZ"
ID_LENGTH = 5
MAX_ATTEMPTS = 100


def build_id(prefix: str = "f") -> str:
    return prefix + "".join(secrets.choice(PERMITTED_CHARS) for _ in range(ID_LENGTH))


def create_unique_id(id_exists, prefix: str = "f") -> str:
    """Draw ids until one is free. `id_exists` is a callable(id) -> bool."""
    for _ in range(MAX_ATTEMPTS):
        candidate = build_id(prefix)
        if not id_exists(candidate):
            return candidate
    raise StoreError(f"Unable to create unique session ID after {MAX_ATTEMPTS} attempts.")
