"""Boundary parsing and histogram binning."""

import pytest

from pendium_backend.kpi.bins import OVERFLOW_LABEL, bin_values, parse_bins
from pendium_backend.kpi.errors import KpiInputError


class TestParseBins:
    def test_parses_comma_separated_numbers(self):
        assert parse_bins("0, 1,5,10") == (0.0, 1.0, 5.0, 10.0)

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing_bins_return_none(self, raw):
        assert parse_bins(raw) is None

    @pytest.mark.parametrize("raw", ["1,a,3", "5,1", "1,1,2", "5", "0,inf"])
    def test_rejects_invalid_bins(self, raw):
        with pytest.raises(KpiInputError):
            parse_bins(raw)


class TestBinValues:
    def test_half_open_buckets_with_overflow(self):
        values = {"a": 0, "b": 1, "c": 4, "d": 9, "e": 12}
        result = bin_values(values, (0, 1, 5, 10))
        buckets = {bucket["label"]: bucket for bucket in result["buckets"]}

        assert list(buckets) == ["0-1", "1-5", "5-10", OVERFLOW_LABEL]
        assert buckets["0-1"]["users"] == ["a"]
        assert buckets["1-5"]["users"] == ["b", "c"]
        assert buckets["5-10"]["users"] == ["d"]
        assert buckets[OVERFLOW_LABEL]["users"] == ["e"]
        assert result["totalUsers"] == 5

    def test_values_below_first_boundary_overflow(self):
        result = bin_values({"neg": -1}, (0, 10))
        assert result["buckets"][-1]["count"] == 1

    def test_counts_sum_to_defined_values(self):
        values = {"a": 0.5, "b": None, "c": 3, "d": 100}
        result = bin_values(values, (0, 1, 2))
        assert sum(bucket["count"] for bucket in result["buckets"]) == 3
        assert all("b" not in bucket["users"] for bucket in result["buckets"])

    def test_fractional_labels(self):
        result = bin_values({}, (0, 0.5, 1))
        assert [bucket["label"] for bucket in result["buckets"]] == ["0-0.5", "0.5-1", OVERFLOW_LABEL]
        assert result["totalUsers"] == 0
