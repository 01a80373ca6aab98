from datetime import datetime, timedelta, timezone
from functools import partial
from pathlib import Path
import secrets
import uuid

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import qrcode
from qrcode.image.svg import SvgPathImage

from fmp.core import config
from fmp.core.crypto import CryptoGateway, GpgGateway
from fmp.core.errors import (
    AlreadyExistsError,
    DecryptFailureError,
    EngineFailureError,
    FmpError,
    IoFailureError,
    MalformedDataError,
    NotFoundError,
    RecipientInvalidError,
)
from fmp.core.ledger import FileLedger, Ledger
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
from fmp.core.totp import TotpManager, TotpSession

app = FastAPI(title="fmp")


# -----------------------------
# Global security settings
# -----------------------------

# In-memory sessions, one unlocked vault each
sessions: dict[str, dict] = {}
SESSION_DURATION = timedelta(hours=1)

ERROR_STATUS = {
    NotFoundError: 404,
    AlreadyExistsError: 409,
    RecipientInvalidError: 422,
    MalformedDataError: 500,
    DecryptFailureError: 401,
    EngineFailureError: 502,
    IoFailureError: 500,
}


def now() -> datetime:
    return datetime.now(timezone.utc)


@app.exception_handler(FmpError)
async def fmp_error_handler(request: Request, exc: FmpError):
    status = next((s for cls, s in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    logger.warning("Request failed path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "retryable": exc.retryable},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "retryable": False})


# Security headers
@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)

    response.headers["Content-Security-Policy"] = (
        "default-src 'none'; "
        "frame-ancestors 'none'; "
        "base-uri 'none';"
    )
    response.headers["Cache-Control"] = "no-store"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"

    return response


# -----------------------------
# Dependencies
# -----------------------------
def get_gateway() -> CryptoGateway:
    return GpgGateway()


def get_ledger() -> Ledger:
    return FileLedger()


def get_data_dir() -> Path | None:
    return None


def get_totp(
    gateway: CryptoGateway = Depends(get_gateway),
    ledger: Ledger = Depends(get_ledger),
    data_dir: Path | None = Depends(get_data_dir),
) -> TotpManager:
    return TotpManager(gateway=gateway, ledger=ledger, data_dir=data_dir)


def get_session(vault: str, request: Request):
    session_id = request.cookies.get("session_id")
    if not session_id or session_id not in sessions:
        raise HTTPException(401, "Vault is locked")

    s = sessions[session_id]
    if s["expires"] < now():
        logger.info("Session expired vault=%s", s["vault"])
        del sessions[session_id]
        raise HTTPException(401, "Session expired")

    if s["vault"] != vault:
        raise HTTPException(403, "Session belongs to another vault")

    if not s["totp"].is_unlocked(vault):
        logger.info("2FA verification expired vault=%s", vault)
        raise HTTPException(401, "2FA verification expired")

    return s


def require_csrf(
    session=Depends(get_session),
    csrf_header: str | None = Header(default=None, alias="X-CSRF-Token"),
):
    if not csrf_header or not secrets.compare_digest(csrf_header, session["csrf_token"]):
        logger.warning("CSRF validation failed vault=%s", session["vault"])
        raise HTTPException(status_code=403, detail="CSRF token invalid")
    return session


def end_sessions(vault: str) -> None:
    for session_id in [k for k, s in sessions.items() if s["vault"] == vault]:
        del sessions[session_id]


# -----------------------------
# Schemas
# -----------------------------
class VaultIn(BaseModel):
    name: str
    recipient: str


class VaultOut(BaseModel):
    name: str
    totp_required: bool


class Unlock(BaseModel):
    code: str | None = None


class Rename(BaseModel):
    new_name: str


class AccountIn(BaseModel):
    name: str
    username: str
    password: str


class AccountDetail(BaseModel):
    name: str
    username: str
    password: str


class UsernameIn(BaseModel):
    username: str


class PasswordIn(BaseModel):
    password: str


class TotpStatus(BaseModel):
    enabled: bool
    required: bool
    state: str


class TotpEnrollment(BaseModel):
    secret: str
    uri: str
    qr_svg: str


class StrengthIn(BaseModel):
    password: str


class StrengthOut(BaseModel):
    bits: float
    rating: str


class GenerateIn(BaseModel):
    length: int = Field(default=20, ge=0, le=1024)
    lowercase: bool = True
    uppercase: bool = True
    digits: bool = True
    symbols: bool = True
    space: bool = False
    accented: bool = False
    include: str = ""
    exclude: str = ""


# -----------------------------
# Vault endpoints
# -----------------------------
@app.get("/vaults", response_model=list[VaultOut])
def list_vaults_api(
    totp: TotpManager = Depends(get_totp),
    data_dir: Path | None = Depends(get_data_dir),
):
    return [
        VaultOut(name=name, totp_required=totp.is_totp_required(name))
        for name in list_vaults(data_dir)
    ]


@app.post("/vaults", response_model=VaultOut, status_code=201)
def create_vault_api(
    data: VaultIn,
    gateway: CryptoGateway = Depends(get_gateway),
    totp: TotpManager = Depends(get_totp),
    data_dir: Path | None = Depends(get_data_dir),
):
    create_vault(data.name, data.recipient, gateway, data_dir)
    logger.info("Vault created via web vault=%s", data.name)
    return VaultOut(name=data.name, totp_required=totp.is_totp_required(data.name))


@app.post("/vaults/{vault}/unlock")
def unlock_vault(
    vault: str,
    data: Unlock,
    response: Response,
    gateway: CryptoGateway = Depends(get_gateway),
    totp: TotpManager = Depends(get_totp),
    data_dir: Path | None = Depends(get_data_dir),
):
    warm_up = partial(warm_up_gpg, gateway=gateway, data_dir=data_dir)
    state = TotpSession(totp, warm_up=warm_up)

    required = totp.is_totp_required(vault)
    if required:
        if not totp.is_totp_enabled(vault):
            raise HTTPException(409, "2FA is required but the secret is missing")
        if not data.code or not state.verify(vault, data.code):
            logger.warning("Unlock failed (2FA) vault=%s", vault)
            raise HTTPException(401, "Invalid code")
    else:
        warm_up(vault)

    session_id = uuid.uuid4().hex
    csrf_token = secrets.token_hex(32)
    expires = now() + SESSION_DURATION

    sessions[session_id] = {
        "vault": vault,
        "csrf_token": csrf_token,
        "expires": expires,
        "totp": state,
    }

    response.set_cookie(
        "session_id",
        value=session_id,
        httponly=True,
        secure=config.SESSION_SECURE_COOKIE,
        samesite="strict",
        max_age=int(SESSION_DURATION.total_seconds()),
        path="/",
    )

    logger.info("Vault unlocked vault=%s totp=%s", vault, required)

    return {
        "message": "Unlocked",
        "vault": vault,
        "csrf_token": csrf_token,
        "totp_required": required,
    }


@app.post("/vaults/{vault}/lock")
def lock_vault(
    vault: str,
    request: Request,
    response: Response,
    session=Depends(require_csrf),
):
    session_id = request.cookies.get("session_id")
    sessions.pop(session_id, None)
    response.delete_cookie("session_id")
    logger.info("Vault locked vault=%s", vault)
    return {"message": "Locked"}


@app.post("/vaults/{vault}/rename")
def rename_vault_api(
    vault: str,
    data: Rename,
    session=Depends(require_csrf),
    ledger: Ledger = Depends(get_ledger),
    data_dir: Path | None = Depends(get_data_dir),
):
    rename_vault(vault, data.new_name, ledger, data_dir)
    end_sessions(vault)
    return {"message": "Renamed", "vault": data.new_name}


@app.delete("/vaults/{vault}", status_code=204)
def delete_vault_api(
    vault: str,
    session=Depends(require_csrf),
    data_dir: Path | None = Depends(get_data_dir),
):
    delete_vault(vault, data_dir)
    end_sessions(vault)
    return Response(status_code=204)


# -----------------------------
# Account endpoints
# -----------------------------
@app.get("/vaults/{vault}/accounts", response_model=list[str])
def list_accounts_api(
    vault: str,
    session=Depends(get_session),
    data_dir: Path | None = Depends(get_data_dir),
):
    return list_accounts(vault, data_dir)


@app.post("/vaults/{vault}/accounts", status_code=201)
def create_account_api(
    vault: str,
    data: AccountIn,
    session=Depends(require_csrf),
    gateway: CryptoGateway = Depends(get_gateway),
    data_dir: Path | None = Depends(get_data_dir),
):
    with UserPass(data.username, SecretBytes(data.password.encode("utf-8"))) as userpass:
        add_account(vault, data.name, userpass, gateway, data_dir)
    return {"message": "Created", "name": data.name}


@app.get("/vaults/{vault}/accounts/{account}", response_model=AccountDetail)
def get_account_api(
    vault: str,
    account: str,
    session=Depends(get_session),
    gateway: CryptoGateway = Depends(get_gateway),
    data_dir: Path | None = Depends(get_data_dir),
):
    with get_account_details(vault, account, gateway, data_dir) as userpass:
        with userpass.password.expose() as raw:
            password = str(raw, "utf-8", "replace")

    logger.info("Account viewed vault=%s account=%s", vault, account)
    return AccountDetail(name=account, username=userpass.username, password=password)


@app.put("/vaults/{vault}/accounts/{account}/username")
def change_username_api(
    vault: str,
    account: str,
    data: UsernameIn,
    session=Depends(require_csrf),
    gateway: CryptoGateway = Depends(get_gateway),
    data_dir: Path | None = Depends(get_data_dir),
):
    change_account_username(vault, account, data.username, gateway, data_dir)
    return {"message": "Username changed"}


@app.put("/vaults/{vault}/accounts/{account}/password")
def change_password_api(
    vault: str,
    account: str,
    data: PasswordIn,
    session=Depends(require_csrf),
    gateway: CryptoGateway = Depends(get_gateway),
    data_dir: Path | None = Depends(get_data_dir),
):
    change_account_password(
        vault, account, SecretBytes(data.password.encode("utf-8")), gateway, data_dir
    )
    return {"message": "Password changed"}


@app.post("/vaults/{vault}/accounts/{account}/rename")
def rename_account_api(
    vault: str,
    account: str,
    data: Rename,
    session=Depends(require_csrf),
    data_dir: Path | None = Depends(get_data_dir),
):
    rename_account(vault, account, data.new_name, data_dir)
    return {"message": "Renamed", "name": data.new_name}


@app.delete("/vaults/{vault}/accounts/{account}", status_code=204)
def delete_account_api(
    vault: str,
    account: str,
    session=Depends(require_csrf),
    data_dir: Path | None = Depends(get_data_dir),
):
    delete_account(vault, account, data_dir)
    return Response(status_code=204)


# -----------------------------
# 2FA endpoints
# -----------------------------
@app.get("/vaults/{vault}/totp", response_model=TotpStatus)
def totp_status_api(vault: str, session=Depends(get_session), totp: TotpManager = Depends(get_totp)):
    return TotpStatus(
        enabled=totp.is_totp_enabled(vault),
        required=totp.is_totp_required(vault),
        state=session["totp"].state(vault).value,
    )


@app.post("/vaults/{vault}/totp", response_model=TotpEnrollment)
def enable_totp_api(vault: str, session=Depends(require_csrf), totp: TotpManager = Depends(get_totp)):
    secret_b32, uri = totp.enable_totp(vault)
    session["totp"].mark_verified(vault)
    qr = qrcode.make(uri, image_factory=SvgPathImage)
    return TotpEnrollment(secret=secret_b32, uri=uri, qr_svg=qr.to_string(encoding="unicode"))


@app.delete("/vaults/{vault}/totp", status_code=204)
def disable_totp_api(vault: str, session=Depends(require_csrf), totp: TotpManager = Depends(get_totp)):
    totp.disable_totp(vault)
    return Response(status_code=204)


# -----------------------------
# Password tools
# -----------------------------
@app.post("/password/strength", response_model=StrengthOut)
def strength_api(data: StrengthIn):
    bits, rating = estimate(data.password)
    return StrengthOut(bits=bits, rating=rating.label)


@app.post("/password/generate")
def generate_api(data: GenerateIn):
    password = generate_password(data.length, **data.model_dump(exclude={"length"}))
    if password is None:
        raise HTTPException(422, "No characters left to choose from")
    return {"password": password}
