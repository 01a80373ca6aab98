"""
Shared pytest fixtures for the fmp test suite.

The environment is pointed at a throw-away directory before any fmp module
is imported, so the module-level config and the rotating log never touch
the real data directory. Encryption goes through an in-process Fernet
gateway instead of gpg.
"""

import os
import tempfile

_SANDBOX = tempfile.mkdtemp(prefix="fmp-tests-")
os.environ["FMP_DATA_DIR"] = os.path.join(_SANDBOX, "data")
os.environ["FMP_CONFIG_DIR"] = os.path.join(_SANDBOX, "config")
os.environ["FMP_LOG_PATH"] = os.path.join(_SANDBOX, "fmp.log")

import pytest  # noqa: E402
from cryptography.fernet import Fernet, InvalidToken  # noqa: E402

from fmp.core.crypto import CryptoGateway  # noqa: E402
from fmp.core.errors import DecryptFailureError, RecipientInvalidError  # noqa: E402
from fmp.core.ledger import Ledger  # noqa: E402
from fmp.core.repository import create_vault  # noqa: E402
from fmp.core.totp import TotpManager  # noqa: E402

RECIPIENT = "alice@example.com"


class FakeGateway(CryptoGateway):
    """Symmetric stand-in for gpg. Each instance is a different "keyring"."""

    def __init__(self, recipients=(RECIPIENT,)):
        self.recipients = set(recipients)
        self.fernet = Fernet(Fernet.generate_key())
        self.decrypt_calls = 0

    def resolve_recipient(self, recipient: str) -> str:
        if recipient not in self.recipients:
            raise RecipientInvalidError(
                f"Failed to find recipient `{recipient}` for encryption. Error: no usable key"
            )
        return f"KEY-{recipient}"

    def encrypt(self, recipient: str, plaintext) -> bytes:
        return self.fernet.encrypt(bytes(plaintext))

    def decrypt(self, ciphertext: bytes) -> bytearray:
        self.decrypt_calls += 1
        try:
            return bytearray(self.fernet.decrypt(bytes(ciphertext)))
        except InvalidToken:
            raise DecryptFailureError("Failed to decrypt data. Error: bad key") from None


class MemoryLedger(Ledger):
    def __init__(self, names=()):
        self.names = set(names)

    def union(self) -> set[str]:
        return set(self.names)

    def add(self, vault: str) -> None:
        self.names.add(vault)

    def remove(self, vault: str) -> None:
        self.names.discard(vault)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault(gateway, data_dir):
    """A fresh vault named ``work`` bound to alice's key."""
    create_vault("work", RECIPIENT, gateway, data_dir)
    return "work"


@pytest.fixture
def totp(gateway, ledger, data_dir, clock):
    return TotpManager(gateway=gateway, ledger=ledger, data_dir=data_dir, clock=clock)
