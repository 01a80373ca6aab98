import os
from pathlib import Path

from . import config
from .errors import NotFoundError, RecipientInvalidError, io_failure

DIR_MODE = 0o700
FILE_MODE = 0o600

# files that live beside the account directories in a vault
VAULT_FILES = ("recipient", "totp.gpg", "gate.gpg")
RESERVED_ACCOUNT_NAMES = frozenset(
    VAULT_FILES + tuple(f".{name}.tmp" for name in VAULT_FILES)
)


def check_name(name: str, kind: str = "vault") -> str:
    """Reject names that are not a single safe path segment."""
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise ValueError(f"Invalid {kind} name: {name!r}")
    if kind == "account" and name in RESERVED_ACCOUNT_NAMES:
        raise ValueError(f"Account name {name!r} is reserved for vault files")
    return name


def make_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    if os.name == "posix":
        os.chmod(path, DIR_MODE)


def write_private_file(path: Path, data: bytes) -> None:
    """Write ``data`` to a 0600 temp file beside ``path`` and rename it into place."""
    tmp = path.with_name(f".{path.name}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if os.name == "posix":
            os.chmod(tmp, FILE_MODE)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def read_directory(directory: Path) -> list[str]:
    """Names of the sub-directories of ``directory``, sorted."""
    try:
        return sorted(e.name for e in os.scandir(directory) if e.is_dir())
    except OSError as e:
        raise io_failure("read directory", directory, e) from e


def vaults_root(data_dir: Path | None = None) -> Path:
    base = Path(data_dir) if data_dir is not None else config.DATA_DIR
    return base / "fmp" / "vaults"


class Locations:
    """
    Every path a (vault, account) pair can have under the data directory.

    Pass an empty account name when only vault-scope paths are needed.
    """

    def __init__(self, vault_name: str, account_name: str = "", data_dir: Path | None = None):
        check_name(vault_name)
        if account_name:
            check_name(account_name, "account")

        self.vault_name = vault_name
        self.account_name = account_name

        self.vaults = vaults_root(data_dir)
        self.fmp = self.vaults.parent
        self.backup = self.fmp / "backups"
        self.vault = self.vaults / vault_name
        self.account = self.vault / account_name if account_name else self.vault
        recipient, totp, gate = VAULT_FILES
        self.recipient = self.vault / recipient
        self.data = self.account / "data.gpg"
        self.totp = self.vault / totp
        self.gate = self.vault / gate

    def initialize_vault(self) -> None:
        try:
            make_private_dir(self.vault)
            fd = os.open(self.recipient, os.O_WRONLY | os.O_CREAT, FILE_MODE)
            os.close(fd)
            if os.name == "posix":
                os.chmod(self.recipient, FILE_MODE)
        except OSError as e:
            raise io_failure("initialize vault", self.vault, e) from e

    def create_account_directory(self) -> None:
        if not self.account_name:
            raise ValueError("No account name given")
        try:
            make_private_dir(self.account)
        except OSError as e:
            raise io_failure("create account directory", self.account, e) from e

    def does_vault_exist(self) -> None:
        if not self.vault.is_dir():
            raise NotFoundError(
                f"Vault `{self.vault_name}` does not exist. Check for typos or create it."
            )

    def does_account_exist(self) -> None:
        if not self.account_name or not self.account.is_dir():
            raise NotFoundError(
                f"Account `{self.account_name}` does not exist in vault "
                f"`{self.vault_name}`. Check for typos or add it."
            )

    def read_recipient(self) -> str:
        try:
            recipient = self.recipient.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise RecipientInvalidError(
                f"Vault `{self.vault_name}` has no recipient file."
            ) from None
        except (OSError, UnicodeDecodeError) as e:
            raise RecipientInvalidError(
                f"Failed to read recipient for vault `{self.vault_name}`. Error: {e}"
            ) from e

        if not recipient:
            raise RecipientInvalidError(f"Vault `{self.vault_name}` has an empty recipient.")
        return recipient

    def write_recipient(self, recipient: str) -> None:
        try:
            write_private_file(self.recipient, recipient.strip().encode("utf-8"))
        except OSError as e:
            raise io_failure("write recipient", self.recipient, e) from e
