"""
Per-vault TOTP (RFC 6238) second factor.

A vault's shared secret is encrypted for the vault recipient and stored in
``totp.gpg``. Whether a vault *requires* a code is decided by the ledger,
not by the presence of that file: once a secret has been seen the vault
stays in the ledger until disable_totp() is called.
"""

import base64
import enum
import os
import time
from pathlib import Path
from urllib.parse import quote

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.hotp import HOTP

from . import config
from .crypto import CryptoGateway, GpgGateway, encrypt_for
from .errors import (
    DecryptFailureError,
    EngineFailureError,
    FmpError,
    MalformedDataError,
    NotFoundError,
    io_failure,
)
from .ledger import FileLedger, Ledger
from .locations import Locations, write_private_file
from .logging import logger
from .secure import SecretBytes

SECRET_SIZE = 20
PERIOD = 30
DIGITS = 6
SKEW_STEPS = (-1, 0, 1)
GATE_PLAINTEXT = b"gate"


def hotp(secret, counter: int, digits: int = DIGITS) -> str:
    """RFC 4226 HOTP value for ``counter``, zero-padded to ``digits``."""
    return HOTP(secret, digits, hashes.SHA1()).generate(counter).decode("ascii")


def time_step(timestamp: float, period: int = PERIOD) -> int:
    return int(timestamp) // period


def totp_code(secret, timestamp: float, digits: int = DIGITS, period: int = PERIOD) -> str:
    return hotp(secret, time_step(timestamp, period), digits)


def normalize_code(code: str) -> str | None:
    """Strip whitespace; None unless 6-8 ASCII digits remain."""
    code = "".join(code.split())
    if not 6 <= len(code) <= 8 or not (code.isascii() and code.isdigit()):
        return None
    return code


def otpauth_uri(vault_name: str, secret_b32: str, issuer: str | None = None) -> str:
    issuer = issuer or config.TOTP_ISSUER
    label = f"{issuer}:{vault_name}"
    return (
        f"otpauth://totp/{quote(label, safe='')}"
        f"?secret={secret_b32}&issuer={quote(issuer, safe='')}"
        f"&period={PERIOD}&digits={DIGITS}&algorithm=SHA1"
    )


def ensure_gate(locations: Locations, gateway: CryptoGateway) -> None:
    """Write the encrypted canary that makes the first decrypt of a session cheap."""
    if locations.gate.exists():
        return

    ciphertext = encrypt_for(gateway, locations.read_recipient(), GATE_PLAINTEXT)
    try:
        write_private_file(locations.gate, ciphertext)
    except OSError as e:
        raise io_failure("write gate file", locations.gate, e) from e


class TotpManager:
    """Enable, disable and verify 2FA for vaults under one data directory."""

    def __init__(
        self,
        gateway: CryptoGateway | None = None,
        ledger: Ledger | None = None,
        data_dir: Path | None = None,
        clock=time.time,
    ):
        self.gateway = gateway or GpgGateway()
        self.ledger = ledger or FileLedger(data_dir=data_dir)
        self.data_dir = data_dir
        self.clock = clock

    def _locations(self, vault_name: str) -> Locations:
        return Locations(vault_name, "", self.data_dir)

    def is_totp_enabled(self, vault_name: str) -> bool:
        return self._locations(vault_name).totp.exists()

    def is_totp_required(self, vault_name: str) -> bool:
        if self.ledger.contains(vault_name):
            return True

        if self.is_totp_enabled(vault_name):
            logger.warning("TOTP secret found outside ledger, re-adding vault=%s", vault_name)
            try:
                self.ledger.add(vault_name)
            except FmpError as e:
                # still required; the ledger is repaired on a later call
                logger.error("TOTP ledger repair failed vault=%s error=%s", vault_name, e)
            return True

        return False

    def enable_totp(self, vault_name: str) -> tuple[str, str]:
        """
        Create and store a new shared secret for ``vault_name``.

        Returns the Base32 secret and an ``otpauth://`` URI for enrolling an
        authenticator app. This is the only time the secret is disclosed.
        """
        locations = self._locations(vault_name)
        locations.does_vault_exist()

        with SecretBytes(os.urandom(SECRET_SIZE)) as secret:
            with secret.expose() as raw:
                ciphertext = encrypt_for(self.gateway, locations.read_recipient(), raw)
                secret_b32 = base64.b32encode(raw).decode("ascii").rstrip("=")

        try:
            write_private_file(locations.totp, ciphertext)
        except OSError as e:
            raise io_failure("write TOTP secret", locations.totp, e) from e

        self.ensure_gate_exists(vault_name)
        self.ledger.add(vault_name)

        logger.info("TOTP enabled vault=%s", vault_name)
        return secret_b32, otpauth_uri(vault_name, secret_b32)

    def disable_totp(self, vault_name: str) -> None:
        locations = self._locations(vault_name)
        try:
            locations.totp.unlink(missing_ok=True)
        except OSError as e:
            raise io_failure("remove TOTP secret", locations.totp, e) from e

        self.ledger.remove(vault_name)
        logger.info("TOTP disabled vault=%s", vault_name)

    def _decrypt_secret(self, vault_name: str) -> SecretBytes:
        locations = self._locations(vault_name)
        try:
            encrypted = locations.totp.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"2FA is not enabled for vault `{vault_name}`.") from None
        except OSError as e:
            raise io_failure("read TOTP secret", locations.totp, e) from e

        try:
            secret = SecretBytes.adopt(self.gateway.decrypt(encrypted))
        except EngineFailureError as e:
            raise DecryptFailureError(f"Failed to decrypt TOTP secret. Error: {e}") from e

        # HOTP refuses keys under 128 bits
        if len(secret) < 16:
            secret.wipe()
            raise MalformedDataError(f"TOTP secret for vault `{vault_name}` is too short.")
        return secret

    def verify_totp_code(self, vault_name: str, code: str) -> bool:
        code = normalize_code(code)
        if code is None:
            return False

        step = time_step(self.clock())
        valid = False

        with self._decrypt_secret(vault_name) as secret:
            with secret.expose() as raw:
                otp = HOTP(raw, DIGITS, hashes.SHA1())
                for skew in SKEW_STEPS:
                    if step + skew < 0:
                        continue
                    try:
                        otp.verify(code.encode("ascii"), step + skew)
                    except InvalidToken:
                        continue
                    valid = True
                    break

        if not valid:
            logger.warning("Invalid TOTP code for vault=%s", vault_name)
        return valid

    def ensure_gate_exists(self, vault_name: str) -> None:
        ensure_gate(self._locations(vault_name), self.gateway)


class TotpState(enum.Enum):
    DISABLED = "disabled"
    ENABLED_NOT_VERIFIED = "enabled_not_verified"
    VERIFIED = "verified"


class TotpSession:
    """
    In-process verification state for each vault.

    A vault moves to VERIFIED after a good code (and a successful warm-up
    decrypt when ``warm_up`` is given), and falls back to
    ENABLED_NOT_VERIFIED when ``unlock_seconds`` have passed.
    """

    def __init__(self, manager: TotpManager, unlock_seconds: int | None = None, warm_up=None):
        self.manager = manager
        self.unlock_seconds = (
            unlock_seconds if unlock_seconds is not None else config.TOTP_UNLOCK_SECONDS
        )
        self.warm_up = warm_up
        self.verified_until: dict[str, float] = {}

    def state(self, vault_name: str) -> TotpState:
        if not self.manager.is_totp_required(vault_name):
            self.verified_until.pop(vault_name, None)
            return TotpState.DISABLED

        until = self.verified_until.get(vault_name)
        if until is not None and self.manager.clock() < until:
            return TotpState.VERIFIED

        self.verified_until.pop(vault_name, None)
        return TotpState.ENABLED_NOT_VERIFIED

    def is_unlocked(self, vault_name: str) -> bool:
        return self.state(vault_name) is not TotpState.ENABLED_NOT_VERIFIED

    def verify(self, vault_name: str, code: str) -> bool:
        if not self.manager.verify_totp_code(vault_name, code):
            return False

        if self.warm_up is not None:
            self.warm_up(vault_name)

        self.mark_verified(vault_name)
        return True

    def mark_verified(self, vault_name: str) -> None:
        """Treat the vault as verified now, e.g. right after enrolling a new secret."""
        self.verified_until[vault_name] = self.manager.clock() + self.unlock_seconds

    def lock(self, vault_name: str) -> None:
        self.verified_until.pop(vault_name, None)
