import base64

import pytest

from conftest import RECIPIENT, MemoryLedger
from fmp.core.errors import IoFailureError, NotFoundError
from fmp.core.repository import create_vault, warm_up_gpg
from fmp.core.totp import (
    PERIOD,
    TotpManager,
    TotpSession,
    TotpState,
    hotp,
    normalize_code,
    otpauth_uri,
    time_step,
    totp_code,
)

RFC4226_SECRET = b"12345678901234567890"
RFC4226_CODES = [
    "755224", "287082", "359152", "969429", "338314",
    "254676", "287922", "162583", "399871", "520489",
]


def secret_of(secret_b32: str) -> bytes:
    padding = "=" * (-len(secret_b32) % 8)
    return base64.b32decode(secret_b32 + padding)


@pytest.mark.parametrize("counter,expected", list(enumerate(RFC4226_CODES)))
def test_hotp_rfc4226(counter, expected):
    assert hotp(RFC4226_SECRET, counter) == expected


def test_totp_rfc6238_sha1():
    # RFC 6238 appendix B, SHA1 column
    assert totp_code(RFC4226_SECRET, 59, digits=8) == "94287082"
    assert totp_code(RFC4226_SECRET, 1111111109, digits=8) == "07081804"


@pytest.mark.parametrize("raw,expected", [
    ("123456", "123456"),
    (" 123 456 ", "123456"),
    ("12345678", "12345678"),
    ("12345", None),
    ("123456789", None),
    ("12345a", None),
    ("١٢٣٤٥٦", None),
    ("", None),
])
def test_normalize_code(raw, expected):
    assert normalize_code(raw) == expected


def test_otpauth_uri():
    uri = otpauth_uri("my vault", "ABCDEF", issuer="FMP")
    assert uri == (
        "otpauth://totp/FMP%3Amy%20vault?secret=ABCDEF&issuer=FMP"
        "&period=30&digits=6&algorithm=SHA1"
    )


def test_enable_returns_secret_and_uri(totp, vault, ledger):
    secret_b32, uri = totp.enable_totp(vault)

    assert len(secret_b32) == 32
    assert "=" not in secret_b32
    assert len(secret_of(secret_b32)) == 20
    assert f"secret={secret_b32}" in uri
    assert "issuer=FMP" in uri
    assert totp.is_totp_enabled(vault)
    assert totp.is_totp_required(vault)
    assert ledger.contains(vault)


def test_secret_is_encrypted(totp, vault, data_dir):
    secret_b32, _ = totp.enable_totp(vault)
    loc = totp._locations(vault)
    assert secret_of(secret_b32) not in loc.totp.read_bytes()


def test_enable_missing_vault(totp):
    with pytest.raises(NotFoundError):
        totp.enable_totp("nope")


def test_verify_accepts_skew_of_one_step(totp, vault, clock):
    secret_b32, _ = totp.enable_totp(vault)
    secret = secret_of(secret_b32)
    step = time_step(clock())

    assert totp.verify_totp_code(vault, hotp(secret, step))
    assert totp.verify_totp_code(vault, hotp(secret, step - 1))
    assert totp.verify_totp_code(vault, hotp(secret, step + 1))
    assert not totp.verify_totp_code(vault, hotp(secret, step + 2))
    assert not totp.verify_totp_code(vault, hotp(secret, step - 2))


def test_verify_accepts_spaced_code(totp, vault, clock):
    secret_b32, _ = totp.enable_totp(vault)
    code = totp_code(secret_of(secret_b32), clock())
    assert totp.verify_totp_code(vault, f"{code[:3]} {code[3:]}")


def test_bad_format_never_decrypts(totp, vault, gateway):
    totp.enable_totp(vault)
    before = gateway.decrypt_calls

    assert not totp.verify_totp_code(vault, "12345")
    assert not totp.verify_totp_code(vault, "abcdef")

    assert gateway.decrypt_calls == before


def test_verify_without_secret(totp, vault):
    with pytest.raises(NotFoundError):
        totp.verify_totp_code(vault, "123456")


def test_required_survives_secret_removal(totp, vault):
    totp.enable_totp(vault)
    totp._locations(vault).totp.unlink()

    assert not totp.is_totp_enabled(vault)
    assert totp.is_totp_required(vault)


def test_secret_outside_ledger_is_readded(totp, vault, ledger):
    totp.enable_totp(vault)
    ledger.remove(vault)

    assert totp.is_totp_required(vault)
    assert ledger.contains(vault)


def test_disable_clears_requirement(totp, vault, ledger):
    totp.enable_totp(vault)
    totp.disable_totp(vault)

    assert not totp.is_totp_enabled(vault)
    assert not totp.is_totp_required(vault)
    assert not ledger.contains(vault)


def test_disable_with_secret_already_gone(totp, vault):
    totp.enable_totp(vault)
    totp._locations(vault).totp.unlink()

    totp.disable_totp(vault)

    assert not totp.is_totp_required(vault)


def test_enable_creates_gate(totp, vault, gateway, data_dir):
    loc = totp._locations(vault)
    loc.gate.unlink()

    totp.enable_totp(vault)

    assert loc.gate.exists()
    warm_up_gpg(vault, gateway, data_dir, strict=True)


def test_session_states(totp, vault, clock):
    session = TotpSession(totp, unlock_seconds=120)
    assert session.state(vault) is TotpState.DISABLED
    assert session.is_unlocked(vault)

    secret_b32, _ = totp.enable_totp(vault)
    assert session.state(vault) is TotpState.ENABLED_NOT_VERIFIED
    assert not session.is_unlocked(vault)

    assert session.verify(vault, totp_code(secret_of(secret_b32), clock()))
    assert session.state(vault) is TotpState.VERIFIED

    clock.advance(119)
    assert session.is_unlocked(vault)
    clock.advance(1)
    assert session.state(vault) is TotpState.ENABLED_NOT_VERIFIED


def test_session_lock(totp, vault, clock):
    session = TotpSession(totp, unlock_seconds=120)
    totp.enable_totp(vault)
    session.mark_verified(vault)
    assert session.state(vault) is TotpState.VERIFIED

    session.lock(vault)
    assert session.state(vault) is TotpState.ENABLED_NOT_VERIFIED


def test_session_warm_up_runs_after_good_code(totp, vault, clock):
    calls = []
    session = TotpSession(totp, unlock_seconds=120, warm_up=calls.append)
    secret_b32, _ = totp.enable_totp(vault)

    assert not session.verify(vault, "12345")
    assert calls == []

    assert session.verify(vault, totp_code(secret_of(secret_b32), clock()))
    assert calls == [vault]


def test_two_vaults_independent(totp, gateway, data_dir, clock):
    """Work vault with 2FA, personal vault without; codes do not carry over."""
    create_vault("work", RECIPIENT, gateway, data_dir)
    create_vault("personal", RECIPIENT, gateway, data_dir)

    secret_b32, _ = totp.enable_totp("work")
    secret = secret_of(secret_b32)

    assert totp.is_totp_required("work")
    assert not totp.is_totp_required("personal")

    old_code = totp_code(secret, clock() - 600)
    window = {totp_code(secret, clock() + skew * PERIOD) for skew in (-1, 0, 1)}
    if old_code not in window:
        assert not totp.verify_totp_code("work", old_code)
    assert totp.verify_totp_code("work", totp_code(secret, clock()))

    clock.advance(PERIOD * 5)
    current = totp_code(secret, clock())
    assert totp.verify_totp_code("work", current)


def test_required_when_ledger_repair_fails(gateway, data_dir, vault, clock):
    class ReadOnlyLedger(MemoryLedger):
        def add(self, vault):
            raise IoFailureError("Failed to write TOTP ledger `x`. Error: read-only", path="x")

    TotpManager(gateway=gateway, ledger=MemoryLedger(), data_dir=data_dir).enable_totp(vault)
    totp = TotpManager(gateway=gateway, ledger=ReadOnlyLedger(), data_dir=data_dir, clock=clock)

    assert totp.is_totp_required(vault)
    assert TotpSession(totp).state(vault) is TotpState.ENABLED_NOT_VERIFIED
