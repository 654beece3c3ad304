import dexagg.decimalmath as dm


def test_truncate_drops_digits():
    assert dm.truncateToDecimals("1.23456", 2) == "1.23"


def test_truncate_never_rounds_up():
    assert dm.truncateToDecimals("1.999", 2) == "1.99"


def test_truncate_negative_toward_zero():
    assert dm.truncateToDecimals("-1.239", 2) == "-1.23"


def test_truncate_negative_zero():
    assert dm.truncateToDecimals("-0.001", 2) == "0"
    assert dm.normalizeDecimal("-0") == "0"
    assert dm.normalizeDecimal("-0.000") == "0"


def test_truncate_trailing_zero_cleanup():
    assert dm.truncateToDecimals("1.5000", 3) == "1.5"
    assert dm.truncateToDecimals("100", 2) == "100"
    assert dm.truncateToDecimals("007.10", 4) == "7.1"


def test_truncate_zero_decimals():
    assert dm.truncateToDecimals("103948.5", 0) == "103948"


def test_truncate_negative_places_unchanged():
    assert dm.truncateToDecimals("1.239", -1) == "1.239"


def test_truncate_malformed():
    assert dm.truncateToDecimals("abc", 2) == "0"
    assert dm.truncateToDecimals(None, 2) == "0"
    assert dm.truncateToDecimals("", 2) == "0"
    assert dm.truncateToDecimals("NaN", 2) == "0"
    assert dm.truncateToDecimals("inf", 2) == "0"


def test_truncate_huge_values():
    assert dm.truncateToDecimals("1e30", 2) == "1" + "0" * 30
    assert (
        dm.truncateToDecimals("123456789012345678901234567890.123456", 2)
        == "123456789012345678901234567890.12"
    )


def test_truncate_idempotent():
    for x in ["1.23456", "-0.0009", "103948.5", "0", "42", "-7.77777", "1e-9"]:
        for n in range(0, 8):
            once = dm.truncateToDecimals(x, n)
            assert dm.truncateToDecimals(once, n) == once


def test_floats_do_not_expand():
    assert dm.normalizeDecimal(0.1) == "0.1"
    assert dm.normalizeDecimal(1e-7) == "0.0000001"
    assert dm.truncateToDecimals(2.675, 2) == "2.67"


def test_sig_figs():
    assert dm.truncateToSignificantFigures("123456", 3) == "123000"
    assert dm.truncateToSignificantFigures("0.00123456", 2) == "0.0012"
    assert dm.truncateToSignificantFigures("-98765", 2) == "-98000"
    assert dm.truncateToSignificantFigures("1.99999", 5) == "1.9999"


def test_sig_figs_zero():
    assert dm.truncateToSignificantFigures("0", 3) == "0"
    assert dm.truncateToSignificantFigures("0.000", 3) == "0"
    assert dm.truncateToSignificantFigures("junk", 3) == "0"


def test_magnitude():
    assert dm.magnitude("103948.5") == 5
    assert dm.magnitude("0.05") == -2
    assert dm.magnitude("-7") == 0
    assert dm.magnitude("0") is None
    assert dm.magnitude("x") is None


def test_format_price_large():
    # decimal limit 6-5=1, sig fig limit forces 0: stricter wins
    assert dm.formatPrice("103948.5", 5) == "103948"


def test_format_price_medium():
    assert dm.formatPrice("1234.56", 5) == "1234.5"


def test_format_price_decimal_limit_wins():
    assert dm.formatPrice("12.345", 5) == "12.3"


def test_format_price_small():
    assert dm.formatPrice("0.0123456", 0) == "0.012345"


def test_format_price_integer_passthrough():
    assert dm.formatPrice("100000", 5) == "100000"
    assert dm.formatPrice("123456789", 0) == "123456789"


def test_format_price_malformed():
    assert dm.formatPrice("garbage", 2) == "0"


def test_price_decimals():
    assert dm.priceDecimals("103948.5", 5) == 0
    assert dm.priceDecimals("1234.56", 5) == 1
    assert dm.priceDecimals("0.5", 0) == 5
    assert dm.priceDecimals("0", 2) == 0


def test_format_size():
    assert dm.formatSize("0.123456", 4) == "0.1234"
    assert dm.formatSize("5", 0) == "5"


def test_decimals_from_step():
    assert dm.decimalsFromStep("0.01") == 2
    assert dm.decimalsFromStep("0.0100") == 2
    assert dm.decimalsFromStep("1") == 0
    assert dm.decimalsFromStep("10") == 0
    assert dm.decimalsFromStep("0") == 0
    assert dm.decimalsFromStep("x") == 0


def test_to_decimal_rejects_non_numbers():
    assert dm.toDecimal(True) is None
    assert dm.toDecimal([1]) is None
    assert dm.toDecimal("1,000.5") == dm.toDecimal("1000.5")


def test_int_and_float_fallbacks():
    assert dm.intOr("4", 0) == 4
    assert dm.intOr(None, 2) == 2
    assert dm.intOr("junk", 2) == 2
    assert dm.floatOr("50.00") == 50.0
    assert dm.floatOr("n/a") is None
    assert dm.floatOr(None, 25.0) == 25.0
