"""Stored Tencent Cloud accounts with encrypted secret storage.

Secret keys are encrypted with Fernet symmetric encryption before being
stored in the database.

Key resolution order:
  1. TC_CERT_SECRET_KEY environment variable (explicit override)
  2. Key file at ~/.config/tc-cert-rotate/secret.key (auto-created on first use)
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken

from db.database import get_session
from db.models import Account

_KEY_FILE = Path.home() / ".config" / "tc-cert-rotate" / "secret.key"


def _chmod_600(path: Path) -> None:
    """Set file permissions to 600 on platforms that support it."""
    if sys.platform != "win32":
        path.chmod(0o600)


def _key_file() -> Path:
    if override := os.environ.get("TC_CERT_KEY_FILE"):
        return Path(override)
    return _KEY_FILE


def _get_fernet() -> Fernet:
    # 1. Explicit env var override
    key = os.environ.get("TC_CERT_SECRET_KEY")
    if key:
        return Fernet(key.encode())

    # 2. Persisted key file
    key_file = _key_file()
    if key_file.exists():
        return Fernet(key_file.read_text().strip().encode())

    # 3. First use: generate and save
    return Fernet(generate_key().encode())


def generate_key() -> str:
    """Generate a new Fernet encryption key and persist it to the key file."""
    key = Fernet.generate_key().decode()
    key_file = _key_file()
    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_text(key)
    _chmod_600(key_file)
    return key


def encrypt_secret(value: str) -> str:
    return _get_fernet().encrypt(value.encode()).decode()


def decrypt_secret(value: str) -> str:
    try:
        return _get_fernet().decrypt(value.encode()).decode()
    except InvalidToken as e:
        raise ValueError(
            "Failed to decrypt secret key; TC_CERT_SECRET_KEY may be wrong or the record is corrupted."
        ) from e


def add_account(
    name: str,
    secret_id: str,
    secret_key: str,
    region: str = "",
    notes: Optional[str] = None,
) -> Account:
    """Add a new account to the database."""
    with get_session() as session:
        account = Account(
            name=name,
            secret_id=secret_id,
            secret_key_enc=encrypt_secret(secret_key),
            region=region or "",
            notes=notes,
        )
        session.add(account)
        session.flush()
        session.refresh(account)
        return account


def get_account(name: str) -> Optional[Account]:
    """Retrieve an active account by name."""
    with get_session() as session:
        return session.query(Account).filter_by(name=name, is_active=True).first()


def list_accounts() -> List[Account]:
    """Return all active accounts."""
    with get_session() as session:
        return session.query(Account).filter_by(is_active=True).order_by(Account.name).all()


def deactivate_account(name: str) -> bool:
    """Soft-delete an account (sets is_active=False)."""
    with get_session() as session:
        account = session.query(Account).filter_by(name=name, is_active=True).first()
        if not account:
            return False
        account.is_active = False
        return True
