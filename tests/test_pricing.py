import pytest

from inventory_suite.domain.pricing import bill_total, compute_ppp, effective_rate, normalize_date_iso


def test_compute_ppp_applies_rate_and_carrying():
    assert compute_ppp(10, 2, 5) == 25.0
    assert compute_ppp("12.5", 3) == 37.5


def test_compute_ppp_treats_missing_rate_as_one():
    assert effective_rate(None) == 1.0
    assert effective_rate(0) == 1.0
    assert compute_ppp(7, -4, 1) == 8.0


def test_compute_ppp_rounds_to_four_decimals():
    assert compute_ppp(1, 0.333333333) == 0.3333


def test_bill_total_sums_quantity_times_ppp():
    rows = [{"quantity": 3, "ppp": 25}, {"quantity": 2, "ppp": 1.5}, {"quantity": None, "ppp": 9}]
    assert bill_total(rows) == 78.0
    assert bill_total([]) == 0.0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-03-15", "2024-03-15"),
        ("2024-3-5", "2024-03-05"),
        ("2024-03-15T10:20:00", "2024-03-15"),
        ("15.03.2024", "2024-03-15"),
        ("15/03/2024", "2024-03-15"),
        ("15-03-2024", "2024-03-15"),
        ("01.02.24", "2024-02-01"),
    ],
)
def test_normalize_date_iso_accepts_common_formats(raw, expected):
    assert normalize_date_iso(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "yesterday", "31.02.2024", "2024-13-01"])
def test_normalize_date_iso_rejects_invalid_values(raw):
    assert normalize_date_iso(raw) is None
