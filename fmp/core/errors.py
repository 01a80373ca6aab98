"""
Error taxonomy shared by the storage, TOTP and front-end layers.

Every fallible core operation raises a subclass of FmpError. Front ends
catch FmpError, show ``str(e)`` and use ``retryable`` to decide between
offering a retry and aborting.
"""


class FmpError(Exception):
    retryable = False


class NotFoundError(FmpError):
    """Vault, account or secret file is missing."""

    retryable = True


class AlreadyExistsError(FmpError):
    """Target vault or account name is already taken."""


class RecipientInvalidError(FmpError):
    """Recipient file is missing/empty or does not resolve to a key."""


class EngineFailureError(FmpError):
    """The OpenPGP engine could not be run or refused to encrypt."""

    retryable = True


class DecryptFailureError(FmpError):
    """Wrong or missing key, cancelled passphrase, corrupted ciphertext."""

    retryable = True


class MalformedDataError(FmpError):
    """Decrypted record does not have the ``username:password`` shape."""


class IoFailureError(FmpError):
    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


def io_failure(action: str, path, exc: OSError) -> IoFailureError:
    return IoFailureError(f"Failed to {action} `{path}`. Error: {exc}", path=path)
