from dataclasses import dataclass, field

from .secure import SecretBytes


@dataclass(eq=False)
class UserPass:
    """One account's credentials. ``password`` stays locked until wipe()."""

    username: str = ""
    password: SecretBytes = field(default_factory=SecretBytes)

    def wipe(self) -> None:
        self.password.wipe()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False
