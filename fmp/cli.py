import argparse
import sys
from getpass import getpass

import qrcode

from fmp.core.crypto import GpgGateway
from fmp.core.errors import FmpError
from fmp.core.ledger import FileLedger
from fmp.core.logging import logger
from fmp.core.models import UserPass
from fmp.core.password import estimate, generate_password
from fmp.core.repository import (
    add_account,
    change_account_password,
    change_account_username,
    create_vault,
    delete_account,
    delete_vault,
    get_account_details,
    list_accounts,
    list_vaults,
    rename_account,
    rename_vault,
    warm_up_gpg,
)
from fmp.core.secure import SecretBytes
from fmp.core.totp import TotpManager

COMMANDS = [
    "init-vault", "vaults", "list", "add", "show", "delete", "delete-vault",
    "rename", "rename-vault", "change-username", "change-password",
    "totp-enable", "totp-disable", "totp-verify", "totp-status",
    "generate", "strength", "serve",
]

# commands that read or change account data in a vault
GATED = {
    "list", "add", "show", "delete", "delete-vault", "rename", "rename-vault",
    "change-username", "change-password", "totp-enable", "totp-disable",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fmp", description="GPG-backed password vault")
    parser.add_argument("cmd", choices=COMMANDS)
    parser.add_argument("--vault", "-v", help="Vault name")
    parser.add_argument("--account", "-a", help="Account name")
    parser.add_argument("--new-name", help="New name for rename/rename-vault")
    parser.add_argument("--recipient", help="GPG recipient (email or key id) for init-vault")
    parser.add_argument("--overwrite", action="store_true", help="Replace an existing vault/account")
    parser.add_argument("--code", help="2FA code (prompted for when omitted)")

    gen = parser.add_argument_group("generate")
    gen.add_argument("--length", type=int, default=20)
    gen.add_argument("--no-lower", action="store_true")
    gen.add_argument("--no-upper", action="store_true")
    gen.add_argument("--no-digits", action="store_true")
    gen.add_argument("--no-symbols", action="store_true")
    gen.add_argument("--space", action="store_true")
    gen.add_argument("--accented", action="store_true")
    gen.add_argument("--include", default="", help="Characters that are always allowed")
    gen.add_argument("--exclude", default="", help="Characters that are never allowed")
    return parser


def require(args, *names):
    missing = [n for n in names if not getattr(args, n.replace("-", "_"))]
    if missing:
        raise SystemExit(f"Please specify {', '.join('--' + n for n in missing)}")


def prompt_secret(label: str) -> SecretBytes:
    return SecretBytes(getpass(label).encode("utf-8"))


def print_qr(uri: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(uri)
    qr.make(fit=True)
    qr.print_ascii(out=sys.stdout, invert=True)


def check_totp(totp: TotpManager, vault: str, code: str | None, cmd: str) -> bool:
    if not totp.is_totp_required(vault):
        return True
    if not totp.is_totp_enabled(vault):
        if cmd == "totp-disable":
            # no secret to check against; the strict warm-up must prove key access
            logger.warning("Disabling 2FA with missing secret vault=%s", vault)
            return True
        print("2FA is required but the secret is missing. Run totp-disable to reset it.")
        return False
    if code is None:
        code = input("2FA code: ")
    if not totp.verify_totp_code(vault, code):
        print("Invalid code.")
        return False
    return True


def run(args, gateway, totp: TotpManager) -> int:
    ledger = totp.ledger

    # -----------------------------------------
    # COMMANDS WITHOUT A VAULT
    # -----------------------------------------
    if args.cmd == "vaults":
        names = list_vaults()
        if not names:
            print("No vaults.")
        for name in names:
            marker = " (2FA)" if totp.is_totp_required(name) else ""
            print(f"{name}{marker}")
        return 0

    if args.cmd == "generate":
        password = generate_password(
            args.length,
            lowercase=not args.no_lower,
            uppercase=not args.no_upper,
            digits=not args.no_digits,
            symbols=not args.no_symbols,
            space=args.space,
            accented=args.accented,
            include=args.include,
            exclude=args.exclude,
        )
        if password is None:
            print("No characters left to choose from. Select a character set or include characters.")
            return 1
        print(password)
        return 0

    if args.cmd == "strength":
        pw = getpass("Password: ")
        bits, rating = estimate(pw)
        del pw
        print(f"Password Entropy: {bits:.2f} bits")
        print(f"Password Rating: {rating.label}")
        return 0

    if args.cmd == "serve":
        import uvicorn
        from fmp.core import config

        uvicorn.run("fmp.web:app", host=config.WEB_HOST, port=config.WEB_PORT)
        return 0

    require(args, "vault")
    vault = args.vault

    if args.cmd == "init-vault":
        require(args, "recipient")
        if args.overwrite and vault in list_vaults():
            # overwrite deletes every account
            if not check_totp(totp, vault, args.code, args.cmd):
                return 1
            warm_up_gpg(vault, gateway)
        locations = create_vault(vault, args.recipient, gateway, overwrite=args.overwrite)
        print(f"Vault `{vault}` created at {locations.vault}.")
        return 0

    if args.cmd == "totp-status":
        required = totp.is_totp_required(vault)
        print("2FA required." if required else "2FA not enabled.")
        if required and not totp.is_totp_enabled(vault):
            print("Warning: the 2FA secret is missing. Run totp-disable and enable it again.")
        return 0

    if args.cmd == "totp-verify":
        ok = totp.verify_totp_code(vault, args.code or input("2FA code: "))
        print("Code valid." if ok else "Invalid code.")
        return 0 if ok else 1

    # -----------------------------------------
    # 2FA GATE
    # -----------------------------------------
    if args.cmd in GATED:
        if not check_totp(totp, vault, args.code, args.cmd):
            return 1
        warm_up_gpg(vault, gateway, strict=args.cmd == "totp-disable")

    if args.cmd == "list":
        names = list_accounts(vault)
        if not names:
            print("No accounts.")
        for name in names:
            print(name)

    elif args.cmd == "add":
        require(args, "account")
        username = input("Username: ").strip()
        userpass = UserPass(username=username, password=prompt_secret("Password: "))
        with userpass:
            add_account(vault, args.account, userpass, gateway, overwrite=args.overwrite)
        print(f"Account `{args.account}` added.")

    elif args.cmd == "show":
        require(args, "account")
        with get_account_details(vault, args.account, gateway) as userpass:
            print("Username:", userpass.username)
            with userpass.password.expose() as raw:
                print("Password:", str(raw, "utf-8", "replace"))

    elif args.cmd == "delete":
        require(args, "account")
        delete_account(vault, args.account)
        print(f"Account `{args.account}` deleted.")

    elif args.cmd == "delete-vault":
        delete_vault(vault)
        print(f"Vault `{vault}` deleted.")

    elif args.cmd == "rename":
        require(args, "account", "new-name")
        rename_account(vault, args.account, args.new_name)
        print(f"Account `{args.account}` renamed to `{args.new_name}`.")

    elif args.cmd == "rename-vault":
        require(args, "new-name")
        rename_vault(vault, args.new_name, ledger)
        print(f"Vault `{vault}` renamed to `{args.new_name}`.")

    elif args.cmd == "change-username":
        require(args, "account")
        change_account_username(vault, args.account, input("New username: ").strip(), gateway)
        print("Username changed.")

    elif args.cmd == "change-password":
        require(args, "account")
        change_account_password(vault, args.account, prompt_secret("New password: "), gateway)
        print("Password changed.")

    elif args.cmd == "totp-enable":
        secret_b32, uri = totp.enable_totp(vault)
        print("Scan this code or add the secret to your authenticator app. It will not be shown again.")
        print_qr(uri)
        print("Secret:", secret_b32)
        print("URI:", uri)

    elif args.cmd == "totp-disable":
        totp.disable_totp(vault)
        print(f"2FA disabled for vault `{vault}`.")

    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    gateway = GpgGateway()
    totp = TotpManager(gateway=gateway, ledger=FileLedger())

    try:
        return run(args, gateway, totp)
    except FmpError as e:
        logger.warning("Command %s failed: %s", args.cmd, e)
        print("Error:", e, file=sys.stderr)
        return 1
    except ValueError as e:
        print("Error:", e, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
