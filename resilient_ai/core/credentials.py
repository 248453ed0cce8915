"""
Credential vault for provider API keys.

Keys are validated against a provider-specific format and stored XOR'd with
a fixed pad and base64-encoded. This only keeps keys from being readable at
a glance in the local store; it is not encryption and offers no protection
against anyone who can read this module.
"""

import base64
import binascii
import re
from typing import Dict, Optional, Pattern

from loguru import logger

from .errors import InvalidCredentialError
from .events import ChangeNotifier
from ..storage.models import Credential
from ..storage.repository import KeyValueStore

CREDENTIAL_PREFIX = "credential:"

OBFUSCATION_PAD = b"resilient-ai-vault"

# Vendor key formats
KEY_PATTERNS: Dict[str, Pattern] = {
    "gemini": re.compile(r"^AIza[0-9A-Za-z\-_]{35}$"),
    "cohere": re.compile(r"^[a-zA-Z0-9]{40}$"),
    "huggingface": re.compile(r"^hf_[a-zA-Z0-9]{34}$"),
    "openai": re.compile(r"^sk-[A-Za-z0-9_\-]{20,}$"),
}

# Used for providers without a vendor-specific format
DEFAULT_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{20,}$")

PLACEHOLDER_MARKERS = ("placeholder", "your_")

MASK_EDGE = 4
MASK_MAX_STARS = 20


def mask(raw_key: str) -> str:
    """Mask a key for display.

    Keeps the first and last four characters and replaces the middle with
    at most twenty asterisks.

    Args:
        raw_key: Key to mask

    Returns:
        Masked key, ``"***"`` for keys of eight characters or fewer and an
        empty string for an empty key
    """
    if not raw_key:
        return ""
    if len(raw_key) <= 2 * MASK_EDGE:
        return "***"
    stars = "*" * min(len(raw_key) - 2 * MASK_EDGE, MASK_MAX_STARS)
    return f"{raw_key[:MASK_EDGE]}{stars}{raw_key[-MASK_EDGE:]}"


def _xor(data: bytes) -> bytes:
    return bytes(b ^ OBFUSCATION_PAD[i % len(OBFUSCATION_PAD)] for i, b in enumerate(data))


def obfuscate(raw_key: str) -> str:
    return base64.b64encode(_xor(raw_key.encode("utf-8"))).decode("ascii")


def deobfuscate(encoded: str) -> str:
    """Reverse :func:`obfuscate`.

    Raises:
        ValueError: If the value is not valid base64 or not UTF-8 once decoded
    """
    try:
        raw = base64.b64decode(encoded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"not an obfuscated credential: {e}") from e
    return _xor(raw).decode("utf-8")


class CredentialVault:
    """Validated, obfuscated storage of provider API keys.

    Entries live under ``credential:<provider_id>`` in the shared store.
    Raw keys are never logged; log lines use :func:`mask`.
    """

    def __init__(
        self,
        store: KeyValueStore,
        patterns: Optional[Dict[str, Pattern]] = None,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self._store = store
        self._patterns = dict(KEY_PATTERNS)
        if patterns:
            self._patterns.update(patterns)
        self._notifier = notifier or ChangeNotifier()

    def _storage_key(self, provider_id: str) -> str:
        return f"{CREDENTIAL_PREFIX}{provider_id}"

    def pattern_for(self, provider_id: str) -> Pattern:
        return self._patterns.get(provider_id, DEFAULT_KEY_PATTERN)

    def validate(self, provider_id: str, raw_key: str) -> None:
        """Check a key's format without storing it.

        Raises:
            InvalidCredentialError: If the key is empty, a placeholder, or
                does not match the provider's format
        """
        if not provider_id or not provider_id.strip():
            raise InvalidCredentialError("provider_id is required and cannot be empty")
        if not isinstance(raw_key, str) or not raw_key.strip():
            raise InvalidCredentialError(f"API key for '{provider_id}' cannot be empty")
        lowered = raw_key.lower()
        for marker in PLACEHOLDER_MARKERS:
            if marker in lowered:
                raise InvalidCredentialError(
                    f"API key for '{provider_id}' looks like a placeholder value"
                )
        if not self.pattern_for(provider_id).match(raw_key):
            raise InvalidCredentialError(
                f"API key for '{provider_id}' does not match the expected format"
            )

    def put(self, provider_id: str, raw_key: str) -> Credential:
        """Validate and store a key, replacing any previous one.

        Raises:
            InvalidCredentialError: If validation fails; nothing is written
        """
        raw_key = raw_key.strip() if isinstance(raw_key, str) else raw_key
        self.validate(provider_id, raw_key)
        credential = Credential(provider_id=provider_id, encrypted_key=obfuscate(raw_key))
        self._store.set(self._storage_key(provider_id), credential.encrypted_key)
        logger.info(f"Stored API key for '{provider_id}' ({mask(raw_key)})")
        self._notifier.notify("credential", provider_id)
        return credential

    def get(self, provider_id: str) -> Optional[str]:
        """Return the raw key, or None if absent or corrupt. Never raises."""
        try:
            encoded = self._store.get(self._storage_key(provider_id))
            if not encoded:
                return None
            raw_key = deobfuscate(encoded)
        except Exception as e:
            logger.warning(f"Unreadable credential for '{provider_id}': {e}")
            return None
        if not self.pattern_for(provider_id).match(raw_key):
            logger.warning(f"Stored credential for '{provider_id}' is corrupt, ignoring")
            return None
        return raw_key

    def has(self, provider_id: str) -> bool:
        return self.get(provider_id) is not None

    def delete(self, provider_id: str) -> None:
        self._store.delete(self._storage_key(provider_id))
        self._notifier.notify("credential", provider_id)

    def clear_all(self) -> int:
        """Remove every stored credential.

        Returns:
            Number of entries removed
        """
        keys = self._store.keys(CREDENTIAL_PREFIX)
        for key in keys:
            self._store.delete(key)
        if keys:
            logger.info(f"Cleared {len(keys)} stored API keys")
            self._notifier.notify("credential", None)
        return len(keys)

    def subscribe(self, listener):
        return self._notifier.subscribe(listener)
