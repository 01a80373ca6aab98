import math

import pytest

from fmp.core.password import (
    ACCENTED,
    DIGITS,
    LOWERCASE,
    Rating,
    StrengthMeter,
    build_pool,
    estimate,
    generate_password,
    penalty,
    rate,
    shannon_bits,
)


def test_empty_password():
    bits, rating = estimate("")
    assert bits == 0.0
    assert rating is Rating.VERY_WEAK


@pytest.mark.parametrize("bits,expected", [
    (0, Rating.VERY_WEAK),
    (28, Rating.VERY_WEAK),
    (28.5, Rating.WEAK),
    (35, Rating.WEAK),
    (36, Rating.OKAY),
    (59, Rating.OKAY),
    (60, Rating.STRONG),
    (127, Rating.STRONG),
    (128, Rating.VERY_STRONG),
    (math.nan, Rating.VERY_WEAK),
])
def test_rate_thresholds(bits, expected):
    assert rate(bits) is expected


def test_rating_labels():
    assert Rating.VERY_WEAK.label == "Very Weak"
    assert str(Rating.VERY_STRONG) == "Very Strong"


def test_single_symbol_has_no_entropy():
    assert shannon_bits("aaaa") == 0.0
    assert shannon_bits("ab") == pytest.approx(2.0)


def test_appending_new_characters_never_lowers_bits():
    base = "Tr0ub4dor&"
    bits = [shannon_bits(base[:i]) for i in range(1, len(base) + 1)]
    assert bits == sorted(bits)


def test_common_password_is_at_most_okay():
    _, rating = estimate("password123")
    assert rating <= Rating.OKAY


def test_leet_substitution_still_penalised():
    assert penalty("p@ssw0rd") >= 60


def test_patterns_penalised():
    assert penalty("abcdXYZ!") > 0
    assert penalty("qwerty-Zk9!") > 0
    assert penalty("Zk9!1987xx") > 0
    assert penalty("Zk9!januaryx") > 0


def test_penalty_capped():
    assert penalty("aaaaaaaa") <= 100


def test_random_password_rates_high():
    _, rating = estimate("v7#Qp!Lr2@Zx9$Kd4^Wm8&Bn")
    assert rating >= Rating.STRONG


def test_bits_never_negative():
    bits, _ = estimate("1111")
    assert bits == 0.0


def test_strength_meter_caches():
    meter = StrengthMeter()
    first = meter("correct horse battery staple")
    assert meter("correct horse battery staple") is first
    assert meter("something else") is not first


def test_pool_defaults():
    pool = build_pool()
    assert "a" in pool and "Z" in pool and "5" in pool and "!" in pool
    assert " " not in pool
    assert pool == sorted(pool)


def test_pool_include_wins_over_exclude():
    pool = build_pool(lowercase=False, uppercase=False, digits=False, symbols=False,
                      include="xy", exclude="xz")
    assert pool == ["x", "y"]


def test_pool_exclude():
    pool = build_pool(uppercase=False, symbols=False, exclude="aeiou0")
    assert set(pool) == (set(LOWERCASE) | set(DIGITS)) - set("aeiou0")


def test_pool_optional_sets():
    pool = build_pool(space=True, accented=True)
    assert " " in pool
    assert set(ACCENTED) <= set(pool)


def test_generate_respects_pool():
    password = generate_password(64, lowercase=False, uppercase=False, symbols=False)
    assert len(password) == 64
    assert set(password) <= set(DIGITS)


def test_generate_empty_pool():
    assert generate_password(
        10, lowercase=False, uppercase=False, digits=False, symbols=False
    ) is None


def test_generate_zero_length():
    assert generate_password(0) == ""


def test_generate_negative_length():
    with pytest.raises(ValueError):
        generate_password(-1)
