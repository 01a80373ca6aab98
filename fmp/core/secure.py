"""
Locked, wipeable byte buffers for decrypted secret material.

Python cannot stop the interpreter from making its own copies of data, so
this is best-effort hardening: the buffers we own are pinned against swap
with mlock/VirtualLock and overwritten with zeros as soon as they go out of
scope. Use SecretBytes as a context manager so the wipe happens on every
exit path, including exceptions.
"""

import ctypes
import hmac
import sys

from .logging import logger


def _libc():
    if sys.platform == "win32":
        return None
    try:
        libc = ctypes.CDLL(None, use_errno=True)
    except OSError:
        return None
    for name in ("mlock", "munlock"):
        fn = getattr(libc, name, None)
        if fn is None:
            return None
        fn.argtypes = [ctypes.c_void_p, ctypes.c_size_t]
        fn.restype = ctypes.c_int
    return libc


def _kernel32():
    if sys.platform != "win32":
        return None
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    for name in ("VirtualLock", "VirtualUnlock"):
        fn = getattr(kernel32, name)
        fn.argtypes = [ctypes.c_void_p, ctypes.c_size_t]
        fn.restype = ctypes.c_int
    return kernel32


_LIBC = _libc()
_KERNEL32 = _kernel32()


def _address(buf: bytearray) -> int:
    return ctypes.addressof((ctypes.c_char * len(buf)).from_buffer(buf))


def lock_memory(buf: bytearray) -> bool:
    """Pin ``buf`` in RAM. Returns False when the OS refuses (e.g. RLIMIT_MEMLOCK)."""
    if not buf:
        return False

    address = _address(buf)
    if _KERNEL32 is not None:
        ok = bool(_KERNEL32.VirtualLock(address, len(buf)))
    elif _LIBC is not None:
        ok = _LIBC.mlock(address, len(buf)) == 0
    else:
        ok = False

    if not ok:
        logger.debug("Memory lock unavailable for %d byte buffer", len(buf))
    return ok


def unlock_memory(buf: bytearray) -> None:
    if not buf:
        return
    address = _address(buf)
    if _KERNEL32 is not None:
        _KERNEL32.VirtualUnlock(address, len(buf))
    elif _LIBC is not None:
        _LIBC.munlock(address, len(buf))


def zeroize(buf: bytearray) -> None:
    if buf:
        ctypes.memset(_address(buf), 0, len(buf))


class SecretBytes:
    """A bytearray that is memory-locked while alive and zeroed on wipe()."""

    __slots__ = ("_buf", "_locked")

    def __init__(self, data=b""):
        self._buf = bytearray(data)
        self._locked = lock_memory(self._buf)

    @classmethod
    def adopt(cls, buf: bytearray) -> "SecretBytes":
        """Take ownership of ``buf`` without copying it."""
        secret = cls.__new__(cls)
        secret._buf = buf
        secret._locked = lock_memory(buf)
        return secret

    def expose(self) -> memoryview:
        """Read-only view of the secret. Do not keep it past the owner's lifetime."""
        return memoryview(self._buf).toreadonly()

    def find(self, sub: bytes) -> int:
        return self._buf.find(sub)

    def wipe(self) -> None:
        if not self._buf:
            return
        zeroize(self._buf)
        if self._locked:
            unlock_memory(self._buf)
            self._locked = False
        self._buf = bytearray()

    @property
    def wiped(self) -> bool:
        return not self._buf

    def __len__(self) -> int:
        return len(self._buf)

    def __bool__(self) -> bool:
        return bool(self._buf)

    def __eq__(self, other):
        if isinstance(other, SecretBytes):
            other = other._buf
        if isinstance(other, (bytes, bytearray, memoryview)):
            return hmac.compare_digest(bytes(self._buf), bytes(other))
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"SecretBytes(<{len(self._buf)} bytes redacted>)"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False

    def __del__(self):
        try:
            self.wipe()
        except Exception:
            # interpreter shutdown may have torn down ctypes already
            pass
