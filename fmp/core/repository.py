import os
import shutil
from pathlib import Path

from .crypto import CryptoGateway, GpgGateway
from .errors import (
    AlreadyExistsError,
    DecryptFailureError,
    EngineFailureError,
    NotFoundError,
    io_failure,
)
from .ledger import Ledger
from .locations import Locations, read_directory, vaults_root
from .logging import logger
from .models import UserPass
from .secure import SecretBytes
from .store import Store
from .totp import ensure_gate


def create_vault(
    vault_name: str,
    recipient: str,
    gateway: CryptoGateway | None = None,
    data_dir: Path | None = None,
    overwrite: bool = False,
) -> Locations:
    """
    Create ``vault_name`` bound to ``recipient``.

    The recipient must resolve to a key before anything is written.
    """
    gateway = gateway or GpgGateway()
    locations = Locations(vault_name, "", data_dir)

    recipient = recipient.strip()
    gateway.resolve_recipient(recipient)

    if locations.vault.exists():
        if not overwrite:
            raise AlreadyExistsError(f"Vault `{vault_name}` already exists.")
        delete_vault(vault_name, data_dir=data_dir)
        logger.info("Existing vault overwritten vault=%s", vault_name)

    locations.initialize_vault()
    locations.write_recipient(recipient)
    ensure_gate(locations, gateway)

    logger.info("Vault created vault=%s", vault_name)
    return locations


def list_vaults(data_dir: Path | None = None) -> list[str]:
    vaults = vaults_root(data_dir)
    if not vaults.is_dir():
        return []
    return read_directory(vaults)


def get_recipient(vault_name: str, data_dir: Path | None = None) -> str:
    locations = Locations(vault_name, "", data_dir)
    locations.does_vault_exist()
    return locations.read_recipient()


def delete_vault(vault_name: str, data_dir: Path | None = None) -> None:
    """
    Remove the vault directory.

    The TOTP ledger is left alone: a vault recreated under this name still
    requires 2FA until it is explicitly disabled.
    """
    locations = Locations(vault_name, "", data_dir)
    locations.does_vault_exist()
    try:
        shutil.rmtree(locations.vault)
    except OSError as e:
        raise io_failure("delete vault", locations.vault, e) from e
    logger.info("Vault deleted vault=%s", vault_name)


def rename_vault(
    old_name: str,
    new_name: str,
    ledger: Ledger | None = None,
    data_dir: Path | None = None,
) -> None:
    """Rename a vault; its 2FA requirement moves with it."""
    old = Locations(old_name, "", data_dir)
    new = Locations(new_name, "", data_dir)

    old.does_vault_exist()
    if new.vault.exists():
        raise AlreadyExistsError(f"Vault `{new_name}` already exists.")

    try:
        os.rename(old.vault, new.vault)
    except OSError as e:
        raise io_failure("rename vault", old.vault, e) from e

    if ledger is not None and (ledger.contains(old_name) or new.totp.exists()):
        ledger.add(new_name)
        ledger.remove(old_name)

    logger.info("Vault renamed old=%s new=%s", old_name, new_name)


def list_accounts(vault_name: str, data_dir: Path | None = None) -> list[str]:
    locations = Locations(vault_name, "", data_dir)
    locations.does_vault_exist()
    return read_directory(locations.vault)


def add_account(
    vault_name: str,
    account_name: str,
    userpass: UserPass,
    gateway: CryptoGateway | None = None,
    data_dir: Path | None = None,
    overwrite: bool = False,
) -> None:
    store = Store(vault_name, account_name, gateway, data_dir)
    store.locations.does_vault_exist()

    if store.locations.account.exists() and not overwrite:
        raise AlreadyExistsError(
            f"Account `{account_name}` already exists in vault `{vault_name}`."
        )

    created = not store.locations.account.exists()
    store.locations.create_account_directory()
    try:
        store.encrypt_to_file(userpass)
    except BaseException:
        if created:
            shutil.rmtree(store.locations.account, ignore_errors=True)
        raise

    logger.info("Account added vault=%s account=%s", vault_name, account_name)


def get_account_details(
    vault_name: str,
    account_name: str,
    gateway: CryptoGateway | None = None,
    data_dir: Path | None = None,
) -> UserPass:
    """Decrypt one account. The caller must wipe() the result."""
    store = Store(vault_name, account_name, gateway, data_dir)
    store.locations.does_vault_exist()
    store.locations.does_account_exist()
    return store.decrypt_from_file()


def change_account_username(
    vault_name: str,
    account_name: str,
    new_username: str,
    gateway: CryptoGateway | None = None,
    data_dir: Path | None = None,
) -> None:
    store = Store(vault_name, account_name, gateway, data_dir)
    store.locations.does_account_exist()
    store.change_account_username(new_username)
    logger.info("Username changed vault=%s account=%s", vault_name, account_name)


def change_account_password(
    vault_name: str,
    account_name: str,
    new_password: SecretBytes,
    gateway: CryptoGateway | None = None,
    data_dir: Path | None = None,
) -> None:
    store = Store(vault_name, account_name, gateway, data_dir)
    store.locations.does_account_exist()
    store.change_account_password(new_password)
    logger.info("Password changed vault=%s account=%s", vault_name, account_name)


def rename_account(
    vault_name: str,
    old_name: str,
    new_name: str,
    data_dir: Path | None = None,
) -> None:
    old = Locations(vault_name, old_name, data_dir)
    new = Locations(vault_name, new_name, data_dir)

    old.does_account_exist()
    if new.account.exists():
        raise AlreadyExistsError(f"Account `{new_name}` already exists in vault `{vault_name}`.")

    try:
        os.rename(old.account, new.account)
    except OSError as e:
        raise io_failure("rename account", old.account, e) from e

    logger.info("Account renamed vault=%s old=%s new=%s", vault_name, old_name, new_name)


def delete_account(vault_name: str, account_name: str, data_dir: Path | None = None) -> None:
    locations = Locations(vault_name, account_name, data_dir)
    locations.does_account_exist()
    try:
        shutil.rmtree(locations.account)
    except OSError as e:
        raise io_failure("delete account", locations.account, e) from e
    logger.info("Account deleted vault=%s account=%s", vault_name, account_name)


def warm_up_gpg(
    vault_name: str,
    gateway: CryptoGateway | None = None,
    data_dir: Path | None = None,
    strict: bool = False,
) -> None:
    """
    Decrypt the vault's gate file so any passphrase prompt happens now.

    A missing gate file is skipped unless ``strict`` is set.
    """
    gateway = gateway or GpgGateway()
    locations = Locations(vault_name, "", data_dir)
    locations.does_vault_exist()
    try:
        encrypted = locations.gate.read_bytes()
    except FileNotFoundError:
        if strict:
            raise NotFoundError(f"Vault `{vault_name}` has no gate file.") from None
        return
    except OSError as e:
        raise io_failure("read gate file", locations.gate, e) from e

    try:
        SecretBytes.adopt(gateway.decrypt(encrypted)).wipe()
    except EngineFailureError as e:
        raise DecryptFailureError(f"Failed to decrypt warm-up file. Error: {e}") from e
