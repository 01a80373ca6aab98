"""
Record of which vaults require 2FA.

The record is kept outside the vault directory, in two copies (config dir
and data dir), so deleting or renaming a vault's ``totp.gpg`` does not turn
2FA off. The union of both copies is authoritative.

Known gap: copies are read-modify-written without a lock, so two processes
changing the ledger at the same moment can lose one update.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from . import config
from .errors import io_failure
from .locations import write_private_file
from .logging import logger

LEDGER_NAME = "totp_ledger"


class Ledger(ABC):
    @abstractmethod
    def union(self) -> set[str]:
        ...

    @abstractmethod
    def add(self, vault: str) -> None:
        ...

    @abstractmethod
    def remove(self, vault: str) -> None:
        ...

    def contains(self, vault: str) -> bool:
        return vault in self.union()


def load_ledger_at(path: Path) -> set[str]:
    """Vault names in one ledger copy. Unreadable copies count as empty."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return set()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Ignoring unreadable TOTP ledger %s: %s", path, e)
        return set()
    return {line.strip() for line in text.splitlines() if line.strip()}


def save_ledger_at(path: Path, names: set[str]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_private_file(path, "\n".join(sorted(names)).encode("utf-8"))
    except OSError as e:
        raise io_failure("write TOTP ledger", path, e) from e


class FileLedger(Ledger):
    def __init__(self, config_dir: Path | None = None, data_dir: Path | None = None):
        config_dir = Path(config_dir) if config_dir is not None else config.CONFIG_DIR
        data_dir = Path(data_dir) if data_dir is not None else config.DATA_DIR
        self.paths = (
            config_dir / "fmp" / LEDGER_NAME,
            data_dir / "fmp" / LEDGER_NAME,
        )

    def union(self) -> set[str]:
        names = set()
        for path in self.paths:
            names |= load_ledger_at(path)
        return names

    def add(self, vault: str) -> None:
        for path in self.paths:
            names = load_ledger_at(path)
            if vault not in names:
                names.add(vault)
                save_ledger_at(path, names)
                logger.info("TOTP ledger add vault=%s path=%s", vault, path)

    def remove(self, vault: str) -> None:
        # Always rewrite both copies so a half-finished earlier removal is repaired.
        for path in self.paths:
            names = load_ledger_at(path)
            names.discard(vault)
            save_ledger_at(path, names)
        logger.info("TOTP ledger remove vault=%s", vault)
