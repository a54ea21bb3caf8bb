"""
Where the refresh token lives between runs.

The host rotates the refresh token on every use, so exactly one token is kept:
in the OS keychain when one answers, otherwise in ~/.vc-status/refresh_token
(mode 0600). VC_STATUS_CREDENTIAL_STORE=plaintext skips the keychain.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

import keyring
from keyring.errors import PasswordDeleteError

from vc_status import config

logger = logging.getLogger("vcstatus")

KEYRING_SERVICE = "vc-status"
KEYRING_ACCOUNT = "refresh_token"

TOKEN_DIR = Path.home() / ".vc-status"
TOKEN_FILE = TOKEN_DIR / "refresh_token"
MIGRATED_TOKEN_FILE = TOKEN_DIR / "refresh_token.migrated"


class CredentialStore(ABC):
    """Holds a single refresh token."""

    name = ""

    @abstractmethod
    def load(self) -> str | None:
        """The stored token, or None."""

    @abstractmethod
    def save(self, token: str) -> None:
        """Replace the stored token."""

    @abstractmethod
    def clear(self) -> bool:
        """Forget the token. True if there was one."""


class KeyringStore(CredentialStore):
    name = "keyring"

    def load(self) -> str | None:
        return keyring.get_password(KEYRING_SERVICE, KEYRING_ACCOUNT) or None

    def save(self, token: str) -> None:
        keyring.set_password(KEYRING_SERVICE, KEYRING_ACCOUNT, token)

    def clear(self) -> bool:
        try:
            keyring.delete_password(KEYRING_SERVICE, KEYRING_ACCOUNT)
        except PasswordDeleteError:
            return False
        return True

    def usable(self) -> bool:
        """Whether a real keychain backend is present and answers a read.

        keyring falls back to backends with priority <= 0 (the fail backend,
        an empty chainer) when nothing usable is installed, as on most
        headless Linux boxes. A Secret Service without a session bus only
        fails once it is asked for something.
        """
        backend = keyring.get_keyring()
        if backend.priority <= 0:
            logger.debug(f"No usable keyring backend ({type(backend).__name__})")
            return False
        try:
            self.load()
        except Exception as e:
            logger.debug(f"Keyring backend failed a read: {e}")
            return False
        return True


class PlaintextStore(CredentialStore):
    name = "plaintext"

    def __init__(self, path: Path | None = None):
        self.path = path or TOKEN_FILE

    def load(self) -> str | None:
        try:
            token = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # New files are created 0600; chmod covers one that already existed
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token)
        os.chmod(self.path, 0o600)

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True


def _move_token_to_keyring(store: KeyringStore) -> None:
    """Adopt a token left in the plaintext file by an earlier fallback.

    The keychain copy wins if both exist. The file is kept as
    refresh_token.migrated rather than deleted.
    """
    token = PlaintextStore().load()
    if token is None or store.load() is not None:
        return
    try:
        store.save(token)
        TOKEN_FILE.rename(MIGRATED_TOKEN_FILE)
    except Exception as e:
        logger.warning(f"Could not move refresh token into the keyring: {e}")
        return
    logger.info("Refresh token moved into the OS keyring")


_cached_store: CredentialStore | None = None


def get_credential_store() -> CredentialStore:
    """The store selected by VC_STATUS_CREDENTIAL_STORE, resolved once."""
    global _cached_store
    if _cached_store is not None:
        return _cached_store

    choice = config.CREDENTIAL_STORE
    if choice == "keyring":
        store = KeyringStore()
        if store.usable():
            _move_token_to_keyring(store)
            _cached_store = store
            return store
        logger.warning(
            "No usable keyring found, storing the refresh token in plaintext. "
            "Set VC_STATUS_CREDENTIAL_STORE=plaintext to silence this warning."
        )
    elif choice != "plaintext":
        logger.warning(f"Unknown credential store {choice!r}, using plaintext")

    _cached_store = PlaintextStore()
    return _cached_store
