"""Unit tests for statistics helpers and I/O utilities."""

import json
import logging

import numpy as np
import pandas as pd
import pytest

from mnn_integrator.utils.stats import (
    MAD_SCALE,
    robust_zscore,
    mad_outlier_bounds,
    is_outlier,
    normalized_entropy,
    adjust_pvalues,
)
from mnn_integrator.io import (
    setup_logging,
    get_timestamped_log_path,
    log_json,
    log_yaml,
    ensure_output_dir,
    infer_separator,
    read_table,
    write_dataframe,
)


class TestRobustStatistics:
    """Tests for MAD-based statistics."""

    def test_robust_zscore_median_is_zero(self):
        """Test that the median maps to zero and outliers to large scores."""
        z = robust_zscore([1, 2, 3, 4, 100])
        assert z[2] == pytest.approx(0.0)
        assert z[4] == pytest.approx(97 / MAD_SCALE)

    def test_robust_zscore_constant(self):
        """Test that constant values give zero scores."""
        z = robust_zscore([5, 5, 5])
        assert np.allclose(z, 0.0)

    def test_robust_zscore_keeps_nan(self):
        """Test that non-finite inputs stay NaN."""
        z = robust_zscore([1.0, np.nan, 3.0])
        assert np.isnan(z[1])
        assert np.isfinite(z[0])

    def test_mad_outlier_bounds(self):
        """Test bounds are median -/+ nmads scaled MADs."""
        lower, upper = mad_outlier_bounds([1, 2, 3, 4, 5], nmads=2)
        assert lower == pytest.approx(3 - 2 * MAD_SCALE)
        assert upper == pytest.approx(3 + 2 * MAD_SCALE)

    def test_mad_outlier_bounds_empty(self):
        """Test bounds of empty input are NaN."""
        lower, upper = mad_outlier_bounds([])
        assert np.isnan(lower) and np.isnan(upper)


class TestIsOutlier:
    """Tests for is_outlier."""

    def test_log_lower(self):
        """Test that a tiny library size is flagged on the log scale."""
        flags = is_outlier([100, 110, 120, 90, 95, 105, 1], nmads=3, direction="lower", log=True)
        assert flags.tolist() == [False] * 6 + [True]

    def test_zero_is_lower_outlier_on_log_scale(self):
        """Test that zeros become -inf and are flagged."""
        flags = is_outlier([100, 100, 100, 0], direction="lower", log=True)
        assert flags[3]
        assert not flags[:3].any()

    def test_higher_does_not_flag_low_values(self):
        """Test one-sided detection."""
        flags = is_outlier([10, 11, 12, 11, 10, 0], direction="higher")
        assert not flags.any()

    def test_grouped_thresholds(self):
        """Test that thresholds are computed within each group."""
        values = [10, 11, 12, 50, 50, 51, 49, 52]
        groups = ["A"] * 4 + ["B"] * 4
        flags = is_outlier(values, nmads=3, direction="higher", groups=groups)
        assert flags.tolist() == [False, False, False, True, False, False, False, False]

    def test_nan_never_flagged(self):
        """Test that missing values are not outliers."""
        flags = is_outlier([1.0, 1.1, 0.9, np.nan, 1.0])
        assert not flags[3]

    def test_invalid_direction(self):
        """Test that an unknown direction raises."""
        with pytest.raises(ValueError, match="direction"):
            is_outlier([1, 2, 3], direction="sideways")

    def test_group_length_mismatch(self):
        """Test that groups must match values."""
        with pytest.raises(ValueError, match="groups"):
            is_outlier([1, 2, 3], groups=["A", "B"])


class TestNormalizedEntropy:
    """Tests for normalized_entropy."""

    def test_even_counts(self):
        """Test that even spread gives one."""
        assert normalized_entropy([5, 5]) == pytest.approx(1.0)

    def test_single_category(self):
        """Test that one populated category gives zero."""
        assert normalized_entropy([10, 0]) == pytest.approx(0.0)

    def test_scaled_by_category_count(self):
        """Test normalization over the number of possible categories."""
        assert normalized_entropy([1, 1], n_categories=4) == pytest.approx(0.5)

    def test_empty_counts(self):
        """Test that zero total gives NaN."""
        assert np.isnan(normalized_entropy([0, 0]))

    def test_one_category(self):
        """Test that a single possible category gives zero."""
        assert normalized_entropy([3], n_categories=1) == 0.0


class TestAdjustPvalues:
    """Tests for adjust_pvalues."""

    def test_benjamini_hochberg(self):
        """Test BH adjustment in the input order."""
        adjusted = adjust_pvalues([0.04, 0.01, 0.03, 0.2])
        np.testing.assert_allclose(adjusted, [0.16 / 3, 0.04, 0.16 / 3, 0.2])

    def test_monotone_and_bounded(self):
        """Test that adjusted values keep the p-value order and stay below one."""
        p = np.array([0.9, 0.5, 0.001, 0.7, 0.95])
        adjusted = adjust_pvalues(p)
        order = np.argsort(p)
        assert np.all(np.diff(adjusted[order]) >= 0)
        assert adjusted.max() <= 1.0
        assert np.all(adjusted >= p)

    def test_bonferroni(self):
        """Test Bonferroni adjustment."""
        np.testing.assert_allclose(adjust_pvalues([0.1, 0.5], "bonferroni"), [0.2, 1.0])

    def test_empty_and_unknown(self):
        """Test empty input and unknown methods."""
        assert adjust_pvalues([]).size == 0
        with pytest.raises(ValueError, match="Unknown correction method"):
            adjust_pvalues([0.1], method="holm")


class TestTables:
    """Tests for table I/O helpers."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("counts.csv", ","),
            ("counts.csv.gz", ","),
            ("counts.tsv", "\t"),
            ("counts.txt.gz", "\t"),
        ],
    )
    def test_infer_separator(self, name, expected):
        """Test separator inference from suffixes."""
        assert infer_separator(name) == expected

    def test_ensure_output_dir(self, tmp_path):
        """Test nested directory creation."""
        path = ensure_output_dir(tmp_path / "a" / "b")
        assert path.is_dir()

    def test_write_and_read(self, tmp_path):
        """Test that written tables read back with a string index."""
        df = pd.DataFrame({"gene": ["A", "B"], "value": [1.5, 2.5]}, index=[1, 2])
        path = write_dataframe(df, tmp_path / "sub" / "table.tsv", index=True)
        loaded = read_table(path)
        assert loaded.index.tolist() == ["1", "2"]
        assert loaded["value"].tolist() == [1.5, 2.5]

    @pytest.mark.parametrize("name,sep", [("table.tsv", "\t"), ("table.csv", ",")])
    def test_write_uses_suffix_separator(self, tmp_path, name, sep):
        """Test that the written delimiter matches the file suffix."""
        df = pd.DataFrame({"gene": ["A", "B"], "value": [1, 2]})
        path = write_dataframe(df, tmp_path / name)
        header = path.read_text().splitlines()[0]
        assert header == f"gene{sep}value"
        assert read_table(path, index_col=None).columns.tolist() == ["gene", "value"]

    def test_read_missing(self, tmp_path):
        """Test that a missing file raises."""
        with pytest.raises(FileNotFoundError):
            read_table(tmp_path / "missing.csv")

    def test_read_empty(self, tmp_path):
        """Test that a header-only table raises."""
        path = tmp_path / "empty.csv"
        path.write_text("cell,value\n")
        with pytest.raises(ValueError, match="empty"):
            read_table(path)


class TestLogging:
    """Tests for logging helpers."""

    def test_setup_logging_writes_file(self, tmp_path):
        """Test console plus file handler setup."""
        logger = setup_logging("mnn_integrator.test_stage", log_dir=tmp_path, log_filename="stage.log")
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert len(logger.handlers) == 2
        assert "hello" in (tmp_path / "stage.log").read_text()

    def test_setup_logging_verbose(self):
        """Test debug level with verbose."""
        logger = setup_logging("mnn_integrator.test_verbose", verbose=True)
        assert logger.level == logging.DEBUG

    def test_timestamped_log_path(self, tmp_path):
        """Test that timestamped log paths keep the stem and suffix."""
        path = get_timestamped_log_path(tmp_path / "run.log")
        assert path.parent == tmp_path
        assert path.name.startswith("run_")
        assert path.suffix == ".log"

    def test_log_json(self, tmp_path):
        """Test JSON lines are appended."""
        path = tmp_path / "logs" / "events.jsonl"
        log_json(path, {"stage": "qc", "n": 1})
        log_json(path, {"stage": "merge", "n": 2})
        lines = path.read_text().splitlines()
        assert [json.loads(line)["stage"] for line in lines] == ["qc", "merge"]

    def test_log_yaml_file(self, tmp_path):
        """Test YAML documents are appended with a separator."""
        path = tmp_path / "summary.yaml"
        log_yaml(path, {"n_cells": 10})
        text = path.read_text()
        assert "n_cells: 10" in text
        assert text.rstrip().endswith("---")

    def test_log_yaml_needs_destination(self):
        """Test that log_yaml without a path or logger raises."""
        with pytest.raises(ValueError):
            log_yaml(None, {"a": 1})
