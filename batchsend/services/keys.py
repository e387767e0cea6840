"""Load the payer account used for signing."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..config import Settings, settings as default_settings


class KeyLoadError(Exception):
    """The signing key could not be loaded."""


def load_keystore(path: str, password: str) -> LocalAccount:
    """Decrypt an encrypted JSON keystore file."""
    try:
        keyfile = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise KeyLoadError(f"failed to read key file {path}: {e}") from e

    try:
        private_key = Account.decrypt(keyfile, password)
    except ValueError as e:
        raise KeyLoadError(f"failed to decrypt key file {path}: {e}") from e
    return Account.from_key(private_key)


def load_account(config: Optional[Settings] = None, key_file: Optional[str] = None) -> LocalAccount:
    """Keystore file first, raw private key second."""
    config = config or default_settings
    key_file = key_file or config.key_file

    if key_file:
        return load_keystore(key_file, config.key_password)

    if config.private_key:
        try:
            return Account.from_key(config.private_key)
        except ValueError as e:
            raise KeyLoadError(f"invalid private key: {e}") from e

    raise KeyLoadError("No signing key configured (set KEY_FILE or PRIVATE_KEY)")
