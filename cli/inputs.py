"""Resolve rotation inputs from flags, GitHub Actions inputs and environment.

Precedence per input: command-line flag, then the GitHub Actions input
(INPUT_<NAME> as set by the runner for ``with:`` values), then the plain
environment variable. ``--account`` replaces the credential inputs with a
stored account.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from lib.errors import CertificateFileError, ConfigurationError

# (attribute, action input name, environment variable)
_INPUTS = [
    ("secret_id", "secret-id", "TENCENTCLOUD_SECRET_ID"),
    ("secret_key", "secret-key", "TENCENTCLOUD_SECRET_KEY"),
    ("fullchain_file", "fullchain-file", "CERT_FULLCHAIN_PATH"),
    ("key_file", "key-file", "CERT_KEY_PATH"),
    ("domains", "domains", "TC_CERT_DOMAINS"),
]


@dataclass
class RotationInputs:
    secret_id: str
    secret_key: str
    fullchain_file: str
    key_file: str
    domains: str
    region: str = ""
    account_id: Optional[int] = None

    def __repr__(self) -> str:
        return (
            f"RotationInputs(secret_id={self.secret_id[:6]}..., fullchain_file={self.fullchain_file!r}, "
            f"key_file={self.key_file!r}, account_id={self.account_id})"
        )


def action_input(name: str) -> Optional[str]:
    """Read a GitHub Actions input the way the runner exposes it."""
    value = os.environ.get(f"INPUT_{name.replace(' ', '_').upper()}", "").strip()
    return value or None


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


def _load_account(name: str):
    """Return (secret_id, secret_key, region, account_id) for a stored account."""
    from services.config_service import decrypt_secret, get_account

    account = get_account(name)
    if not account:
        raise ConfigurationError(f"Account '{name}' not found.")
    try:
        secret_key = decrypt_secret(account.secret_key_enc)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    return account.secret_id, secret_key, account.region, account.id


def resolve_inputs(args) -> RotationInputs:
    """Build RotationInputs from parsed CLI *args*; raise ConfigurationError if incomplete."""
    values = {}
    for attr, input_name, env_name in _INPUTS:
        values[attr] = getattr(args, attr, None) or action_input(input_name) or _env(env_name)

    if not values["domains"] and getattr(args, "domains_file", None):
        try:
            values["domains"] = read_text(args.domains_file)
        except CertificateFileError as e:
            raise ConfigurationError(f"Failed to read domains file {args.domains_file}: {e.__cause__}") from e

    region = getattr(args, "region", None) or _env("TENCENTCLOUD_REGION") or ""
    account_id = None
    if account := getattr(args, "account", None):
        values["secret_id"], values["secret_key"], account_region, account_id = _load_account(account)
        region = region or account_region

    missing: List[str] = [input_name for attr, input_name, _ in _INPUTS if not values[attr]]
    if missing:
        raise ConfigurationError(f"Missing required inputs: {', '.join(missing)}")

    return RotationInputs(region=region, account_id=account_id, **values)


def read_text(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CertificateFileError(f"Failed to read file {path}: {e}") from e
