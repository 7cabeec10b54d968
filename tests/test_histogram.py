"""Tests for the console difference histogram."""

from relay_bench.histogram import NUM_BINS, bin_index, make_histogram


class TestBinIndex:
    def test_lower_tail(self):
        assert bin_index(-250.0) == 0
        assert bin_index(-10.5) == 0

    def test_upper_tail(self):
        assert bin_index(10.01) == NUM_BINS - 1
        assert bin_index(900.0) == NUM_BINS - 1

    def test_unit_bins(self):
        assert bin_index(-9.5) == 1
        assert bin_index(0.5) == 11
        assert bin_index(9.5) == 20

    def test_exact_edges(self):
        assert bin_index(-10.0) == 0
        assert bin_index(0.0) == 10
        assert bin_index(10.0) == 20


class TestMakeHistogram:
    def test_empty(self):
        assert make_histogram([]) == ""

    def test_one_line_per_bin(self):
        out = make_histogram([0.5, 0.7, -20.0, 30.0])
        lines = out.rstrip("\n").split("\n")
        assert len(lines) == NUM_BINS
        assert lines[0].startswith(" -∞ <-> -10")
        assert lines[-1].startswith(" 10 <->  +∞")

    def test_shares_and_counts(self):
        out = make_histogram([0.5, 0.7, -20.0, 30.0])
        lines = out.rstrip("\n").split("\n")
        assert "50.00%" in lines[11]
        assert lines[11].split()[4] == "2"
        assert "25.00%" in lines[0]
        assert "25.00%" in lines[-1]
        assert "0.00%" in lines[5]
