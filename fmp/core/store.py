"""
Read/write boundary between a UserPass and one account's ``data.gpg``.

The envelope holds ``<username>:<password bytes>`` encrypted for the vault's
recipient. The record is split on the first colon, so usernames may not
contain one.
"""

from pathlib import Path

from .crypto import CryptoGateway, GpgGateway, encrypt_for
from .errors import (
    DecryptFailureError,
    EngineFailureError,
    MalformedDataError,
    NotFoundError,
    io_failure,
)
from .locations import Locations, write_private_file
from .logging import logger
from .models import UserPass
from .secure import SecretBytes

SEPARATOR = b":"


class Store:
    def __init__(
        self,
        vault_name: str,
        account_name: str,
        gateway: CryptoGateway | None = None,
        data_dir: Path | None = None,
    ):
        self.gateway = gateway or GpgGateway()
        self.locations = Locations(vault_name, account_name, data_dir)

    def encrypt_to_file(self, userpass: UserPass) -> None:
        if ":" in userpass.username:
            raise MalformedDataError("Usernames cannot contain `:`.")
        if not userpass.password:
            raise MalformedDataError("Passwords cannot be empty.")

        username = userpass.username.encode("utf-8")
        buf = bytearray(len(username) + 1 + len(userpass.password))

        with SecretBytes.adopt(buf):
            with userpass.password.expose() as password:
                buf[: len(username)] = username
                buf[len(username)] = SEPARATOR[0]
                buf[len(username) + 1:] = password

            recipient = self.locations.read_recipient()
            ciphertext = encrypt_for(self.gateway, recipient, buf)

        try:
            write_private_file(self.locations.data, ciphertext)
        except OSError as e:
            raise io_failure("write account data", self.locations.data, e) from e

        logger.info(
            "Account written vault=%s account=%s",
            self.locations.vault_name,
            self.locations.account_name,
        )

    def decrypt_from_file(self) -> UserPass:
        try:
            encrypted = self.locations.data.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(
                f"Account `{self.locations.account_name}` in vault "
                f"`{self.locations.vault_name}` has no data. Check for typos or add it."
            ) from None
        except OSError as e:
            raise io_failure("read account data", self.locations.data, e) from e

        try:
            output = self.gateway.decrypt(encrypted)
        except EngineFailureError as e:
            raise DecryptFailureError(f"Failed to decrypt data. Error: {e}") from e

        with SecretBytes.adopt(output) as plain:
            sep = plain.find(SEPARATOR)
            if sep < 0:
                raise MalformedDataError("Decrypted data is malformed: missing separator")
            if len(plain) == sep + 1:
                raise MalformedDataError("Decrypted data is malformed: empty password")

            with plain.expose() as view:
                try:
                    username = str(view[:sep], "utf-8")
                except UnicodeDecodeError:
                    raise MalformedDataError(
                        "Decrypted data is malformed: username is not UTF-8"
                    ) from None
                password = SecretBytes(view[sep + 1:])

        return UserPass(username=username, password=password)

    def change_account_username(self, new_username: str) -> None:
        with self.decrypt_from_file() as userpass:
            userpass.username = new_username
            self.encrypt_to_file(userpass)

    def change_account_password(self, new_password) -> None:
        """Takes ownership of ``new_password`` (SecretBytes or bytes-like) and wipes it."""
        if not isinstance(new_password, SecretBytes):
            new_password = SecretBytes(new_password)

        with self.decrypt_from_file() as userpass:
            userpass.password.wipe()
            userpass.password = new_password
            self.encrypt_to_file(userpass)
