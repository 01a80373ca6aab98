"""
Password strength estimation and random password generation.

Both are pure functions over whatever password is currently in the front
end's buffer; nothing here touches the vaults.
"""

import enum
import hashlib
import hmac
import math
import re
import secrets
import string
from collections import Counter
from typing import NamedTuple

MAX_PENALTY = 100.0

COMMON_PASSWORDS = (
    "password", "123456", "12345678", "123456789", "1234567890", "qwerty",
    "qwertyuiop", "abc123", "111111", "123123", "letmein", "welcome", "admin",
    "administrator", "login", "master", "monkey", "dragon", "football",
    "baseball", "basketball", "soccer", "hockey", "iloveyou", "sunshine",
    "princess", "shadow", "superman", "batman", "trustno1", "starwars",
    "whatever", "freedom", "secret", "hello", "charlie", "michael", "jennifer",
    "jordan", "hunter", "ranger", "buster", "thomas", "tigger", "robert",
    "killer", "pepper", "ginger", "summer", "winter", "flower", "cookie",
    "cheese", "chocolate", "computer", "internet", "mustang", "harley",
    "matrix", "passw0rd", "zaq1zaq1", "1q2w3e4r", "asdfgh", "zxcvbn",
    "changeme", "default", "guest", "root", "test", "love", "lovely",
    "access", "pass", "qazwsx", "mypass", "mypassword", "google", "apple",
)

LEET = str.maketrans({
    "0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "8": "b",
    "9": "g", "@": "a", "$": "s", "!": "i", "+": "t", "|": "l",
})
# "1" is read as "l" as often as "i"
LEET_ALT = str.maketrans({"1": "l"})

KEYBOARD_ROWS = (
    "`1234567890-=",
    "qwertyuiop[]\\",
    "asdfghjkl;'",
    "zxcvbnm,./",
)

CALENDAR_WORDS = (
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday",
    "sunday",
)

YEAR_RE = re.compile(r"19\d\d|20\d\d")

PENALTY_EXACT = 60.0
PENALTY_DICTIONARY = 25.0
PENALTY_REPEAT = 40.0
PENALTY_SEQUENCE = 15.0
PENALTY_KEYBOARD = 15.0
PENALTY_YEAR = 10.0
PENALTY_CALENDAR = 10.0
PENALTY_ONE_CLASS = 20.0
PENALTY_TWO_CLASSES = 10.0


class Rating(enum.IntEnum):
    VERY_WEAK = 0
    WEAK = 1
    OKAY = 2
    STRONG = 3
    VERY_STRONG = 4

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()

    def __str__(self) -> str:
        return self.label


class Strength(NamedTuple):
    bits: float
    rating: Rating


def shannon_bits(password: str) -> float:
    """Character-frequency entropy per symbol times length."""
    if not password:
        return 0.0
    length = len(password)
    per_char = -sum(
        (n / length) * math.log2(n / length) for n in Counter(password).values()
    )
    return per_char * length


def rate(bits: float) -> Rating:
    if math.isnan(bits) or bits <= 28:
        return Rating.VERY_WEAK
    if bits <= 35:
        return Rating.WEAK
    if bits <= 59:
        return Rating.OKAY
    if bits <= 127:
        return Rating.STRONG
    return Rating.VERY_STRONG


def _has_run(text: str, length: int = 4) -> bool:
    """Ascending or descending run of consecutive character codes."""
    up = down = 1
    for prev, cur in zip(text, text[1:]):
        delta = ord(cur) - ord(prev)
        up = up + 1 if delta == 1 else 1
        down = down + 1 if delta == -1 else 1
        if up >= length or down >= length:
            return True
    return False


def _has_keyboard_run(text: str, length: int = 4) -> bool:
    for i in range(len(text) - length + 1):
        chunk = text[i:i + length]
        for row in KEYBOARD_ROWS:
            if chunk in row or chunk[::-1] in row:
                return True
    return False


def _char_classes(password: str) -> int:
    return sum((
        any(c.islower() for c in password),
        any(c.isupper() for c in password),
        any(c.isdigit() for c in password),
        any(not c.isalnum() for c in password),
    ))


def penalty(password: str) -> float:
    lower = password.lower()
    leet = lower.translate(LEET)
    leet_alt = lower.translate(LEET_ALT).translate(LEET)
    forms = {lower, leet, leet_alt}

    total = 0.0

    if any(f in COMMON_PASSWORDS or f[::-1] in COMMON_PASSWORDS for f in forms):
        total += PENALTY_EXACT
    elif any(w in f for f in forms for w in COMMON_PASSWORDS if len(w) >= 4):
        total += PENALTY_DICTIONARY

    if len(password) > 1 and len(set(password)) == 1:
        total += PENALTY_REPEAT
    if _has_run(password):
        total += PENALTY_SEQUENCE
    if _has_keyboard_run(lower):
        total += PENALTY_KEYBOARD
    if YEAR_RE.search(password):
        total += PENALTY_YEAR
    if any(w in lower for w in CALENDAR_WORDS):
        total += PENALTY_CALENDAR

    classes = _char_classes(password)
    if classes < 2:
        total += PENALTY_ONE_CLASS
    elif classes == 2 and len(password) <= 10:
        total += PENALTY_TWO_CLASSES

    return min(max(total, 0.0), MAX_PENALTY)


def estimate(password: str) -> Strength:
    """Entropy in bits (after weak-pattern penalties) and its rating."""
    if not password:
        return Strength(0.0, Rating.VERY_WEAK)
    bits = max(shannon_bits(password) - penalty(password), 0.0)
    return Strength(bits, rate(bits))


class StrengthMeter:
    """
    Caches the last estimate so a UI can call it every frame.

    The cache key is an HMAC of the password under a per-meter random key,
    so the plaintext is never stored.
    """

    def __init__(self):
        self._key = secrets.token_bytes(32)
        self._last_digest = None
        self._last = None

    def __call__(self, password: str) -> Strength:
        digest = hmac.new(self._key, password.encode("utf-8"), hashlib.sha256).digest()
        if self._last is None or not hmac.compare_digest(digest, self._last_digest):
            self._last = estimate(password)
            self._last_digest = digest
        return self._last


LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = string.punctuation
SPACE = " "
ACCENTED = "àáâãäåæçèéêëìíîïñòóôõöøùúûüýÿÀÁÂÃÄÅÆÇÈÉÊËÌÍÎÏÑÒÓÔÕÖØÙÚÛÜÝß"


def build_pool(
    lowercase: bool = True,
    uppercase: bool = True,
    digits: bool = True,
    symbols: bool = True,
    space: bool = False,
    accented: bool = False,
    include: str = "",
    exclude: str = "",
) -> list[str]:
    """(selected classes - exclude) | include, sorted for stable output."""
    selected = (
        (lowercase, LOWERCASE),
        (uppercase, UPPERCASE),
        (digits, DIGITS),
        (symbols, SYMBOLS),
        (space, SPACE),
        (accented, ACCENTED),
    )
    pool = set()
    for enabled, chars in selected:
        if enabled:
            pool.update(chars)
    pool -= set(exclude)
    pool |= set(include)
    return sorted(pool)


def generate_password(length: int, **options) -> str | None:
    """
    ``length`` characters drawn uniformly with replacement from build_pool(**options).

    Returns None when the pool is empty.
    """
    if length < 0:
        raise ValueError("Password length cannot be negative")

    pool = build_pool(**options)
    if not pool:
        return None
    return "".join(secrets.choice(pool) for _ in range(length))
