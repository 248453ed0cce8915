"""
Unit tests for the credential vault.

Tests key validation, obfuscated storage and masking.
"""

import re

import pytest

from resilient_ai.core.credentials import (
    CREDENTIAL_PREFIX,
    CredentialVault,
    deobfuscate,
    mask,
    obfuscate,
)
from resilient_ai.core.errors import InvalidCredentialError
from resilient_ai.storage.repository import InMemoryKeyValueStore

GEMINI_KEY = "AIza" + "B" * 35
COHERE_KEY = "c" * 40
HF_KEY = "hf_" + "d" * 34


class TestMask:
    """Test masked display of keys."""

    def test_empty_key(self):
        assert mask("") == ""

    def test_short_keys_fully_hidden(self):
        assert mask("abcdefgh") == "***"
        assert mask("a") == "***"

    def test_keeps_four_characters_each_side(self):
        assert mask("abcd12345wxyz") == "abcd*****wxyz"

    def test_realistic_key(self):
        masked = mask("AIzaSyDummyKeyForTesting1234567890123456")
        assert re.match(r"^AIza\*+3456$", masked)

    def test_star_run_is_capped(self):
        masked = mask(GEMINI_KEY)
        assert masked == "AIza" + "*" * 20 + "BBBB"

    @pytest.mark.parametrize("length", [9, 12, 28, 29, 64])
    def test_mask_shape(self, length):
        key = "".join(chr(ord("a") + i % 26) for i in range(length))
        masked = mask(key)
        assert masked.startswith(key[:4])
        assert masked.endswith(key[-4:])
        assert set(masked[4:-4]) == {"*"}
        assert len(masked) == 8 + min(length - 8, 20)


class TestObfuscation:
    """Test reversible key obfuscation."""

    def test_round_trip(self):
        assert deobfuscate(obfuscate(GEMINI_KEY)) == GEMINI_KEY

    def test_stored_form_differs_from_key(self):
        assert GEMINI_KEY not in obfuscate(GEMINI_KEY)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            deobfuscate("not base64!!")


class TestCredentialVault:
    """Test CredentialVault behaviour."""

    def setup_method(self):
        """Set up test environment."""
        self.store = InMemoryKeyValueStore()
        self.vault = CredentialVault(self.store)

    def test_put_and_get(self):
        self.vault.put("gemini", GEMINI_KEY)
        assert self.vault.get("gemini") == GEMINI_KEY
        assert self.vault.has("gemini")

    def test_stored_value_is_obfuscated(self):
        self.vault.put("gemini", GEMINI_KEY)
        stored = self.store.get(f"{CREDENTIAL_PREFIX}gemini")
        assert stored is not None
        assert GEMINI_KEY not in stored

    def test_surrounding_whitespace_stripped(self):
        self.vault.put("cohere", f"  {COHERE_KEY}\n")
        assert self.vault.get("cohere") == COHERE_KEY

    def test_vendor_formats(self):
        self.vault.put("cohere", COHERE_KEY)
        self.vault.put("huggingface", HF_KEY)
        assert self.vault.get("huggingface") == HF_KEY

    @pytest.mark.parametrize("bad_key", [
        "",
        "   ",
        "AIza-too-short",
        "hf_" + "d" * 10,
        "AIza" + "B" * 36,
    ])
    def test_invalid_gemini_keys_rejected(self, bad_key):
        with pytest.raises(InvalidCredentialError):
            self.vault.put("gemini", bad_key)
        assert self.vault.get("gemini") is None

    def test_placeholder_rejected(self):
        with pytest.raises(InvalidCredentialError, match="placeholder"):
            self.vault.put("custom", "your_api_key_goes_here_please")

    def test_unknown_provider_uses_default_pattern(self):
        self.vault.put("custom", "abcdefghijklmnopqrstuvwxyz")
        assert self.vault.has("custom")
        with pytest.raises(InvalidCredentialError):
            self.vault.put("custom", "short")

    def test_custom_patterns(self):
        vault = CredentialVault(self.store, patterns={"local": re.compile(r"^x{3}$")})
        vault.put("local", "xxx")
        assert vault.get("local") == "xxx"

    def test_invalid_put_keeps_previous_key(self):
        self.vault.put("gemini", GEMINI_KEY)
        with pytest.raises(InvalidCredentialError):
            self.vault.put("gemini", "nope")
        assert self.vault.get("gemini") == GEMINI_KEY

    def test_get_missing(self):
        assert self.vault.get("gemini") is None
        assert not self.vault.has("gemini")

    def test_corrupt_entry_reads_as_absent(self):
        self.store.set(f"{CREDENTIAL_PREFIX}gemini", "%%% not base64 %%%")
        assert self.vault.get("gemini") is None

    def test_entry_failing_pattern_reads_as_absent(self):
        self.store.set(f"{CREDENTIAL_PREFIX}gemini", obfuscate("tampered"))
        assert self.vault.get("gemini") is None

    def test_delete(self):
        self.vault.put("gemini", GEMINI_KEY)
        self.vault.delete("gemini")
        assert not self.vault.has("gemini")

    def test_clear_all_only_touches_credentials(self):
        self.store.set("theme", "dark")
        self.store.set("usage:gemini", "{}")
        self.vault.put("gemini", GEMINI_KEY)
        self.vault.put("cohere", COHERE_KEY)

        assert self.vault.clear_all() == 2
        assert self.store.keys(CREDENTIAL_PREFIX) == []
        assert self.store.get("theme") == "dark"
        assert self.store.get("usage:gemini") == "{}"

    def test_change_notifications(self):
        events = []
        unsubscribe = self.vault.subscribe(lambda topic, payload: events.append((topic, payload)))
        self.vault.put("gemini", GEMINI_KEY)
        self.vault.clear_all()
        unsubscribe()
        self.vault.put("gemini", GEMINI_KEY)
        assert events == [("credential", "gemini"), ("credential", None)]
