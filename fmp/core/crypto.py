"""
Crypto Gateway: the only place that talks to the OpenPGP engine.

The core never handles key material. It asks the gateway to resolve a
recipient, to encrypt bytes for it, and to decrypt an envelope. GpgGateway
drives the ``gpg`` command line; anything with the same three methods can
stand in for it (tests use an in-process fake).
"""

import subprocess
from abc import ABC, abstractmethod

from . import config
from .errors import DecryptFailureError, EngineFailureError, RecipientInvalidError
from .logging import logger


class CryptoGateway(ABC):
    @abstractmethod
    def resolve_recipient(self, recipient: str) -> str:
        """Return a key id for ``recipient`` or raise RecipientInvalidError."""

    @abstractmethod
    def encrypt(self, recipient: str, plaintext) -> bytes:
        """Encrypt a bytes-like ``plaintext`` for ``recipient``."""

    @abstractmethod
    def decrypt(self, ciphertext: bytes) -> bytearray:
        """Decrypt an envelope. The caller owns (and must wipe) the result."""


class GpgGateway(CryptoGateway):
    """
    Gateway backed by the gpg CLI.

    Decryption is not run in batch mode so gpg-agent can show pinentry;
    that call may block for as long as the passphrase prompt is open.
    """

    def __init__(self, binary: str | None = None, homedir: str | None = None):
        self.binary = binary or config.GPG_BINARY
        self.homedir = homedir

    def _run(self, args: list[str], stdin=None) -> subprocess.CompletedProcess:
        cmd = [self.binary]
        if self.homedir:
            cmd += ["--homedir", self.homedir]
        cmd += args
        try:
            return subprocess.run(cmd, input=stdin, capture_output=True, check=False)
        except OSError as e:
            raise EngineFailureError(f"Failed to run `{self.binary}`. Error: {e}") from e

    @staticmethod
    def _stderr(result: subprocess.CompletedProcess) -> str:
        return result.stderr.decode("utf-8", "replace").strip()

    def resolve_recipient(self, recipient: str) -> str:
        result = self._run(["--batch", "--with-colons", "--list-keys", "--", recipient])
        if result.returncode != 0:
            raise RecipientInvalidError(
                f"Failed to find recipient `{recipient}` for encryption. "
                f"Error: {self._stderr(result)}"
            )

        fingerprint = None
        usable = False
        for line in result.stdout.decode("utf-8", "replace").splitlines():
            fields = line.split(":")
            if fields[0] == "pub":
                # validity: revoked, expired, disabled, invalid
                usable = len(fields) > 1 and fields[1] not in ("r", "e", "d", "i")
            elif fields[0] == "fpr" and usable and len(fields) > 9:
                fingerprint = fields[9]
                break

        if not fingerprint:
            raise RecipientInvalidError(
                f"Failed to find recipient `{recipient}` for encryption. Error: no usable key"
            )
        return fingerprint

    def encrypt(self, recipient: str, plaintext) -> bytes:
        result = self._run(
            [
                "--batch",
                "--yes",
                "--quiet",
                "--trust-model", "always",
                "--encrypt",
                "--recipient", recipient,
                "--output", "-",
            ],
            stdin=plaintext,
        )
        if result.returncode != 0:
            logger.warning("gpg encrypt failed for recipient=%s", recipient)
            raise EngineFailureError(
                f"Failed to encrypt data for recipient `{recipient}`. "
                f"Error: {self._stderr(result)}"
            )
        return result.stdout

    def decrypt(self, ciphertext: bytes) -> bytearray:
        result = self._run(["--quiet", "--decrypt", "--output", "-"], stdin=ciphertext)
        if result.returncode != 0:
            raise DecryptFailureError(f"Failed to decrypt data. Error: {self._stderr(result)}")
        return bytearray(result.stdout)


def encrypt_for(gateway: CryptoGateway, recipient: str, plaintext) -> bytes:
    """Resolve ``recipient`` first so a missing key fails before anything else."""
    key_id = gateway.resolve_recipient(recipient)
    return gateway.encrypt(key_id, plaintext)
