"""
Tests for job file parsing.
"""

import pytest

from ms2uvfits.pipeline.config_parser import (
    ConversionConfig, load_config, parse_bool, _parse_pipe_table,
)


JOBS = """
convert: |
  MS file   | Output    | Vis col        | Undo phase | Reset weights | Batch rows
  --------- | --------- | -------------- | ---------- | ------------- | ----------
  obs1.ms   | out/obs1  | DATA           | true       | false         | 5000
  obs2.ms   | out/obs2  | CORRECTED_DATA | no         | yes           |
  obs3.ms   | out/obs3  |
"""


class TestPipeTable:
    """Test pipe-delimited table parsing."""

    def test_rows(self):
        rows = _parse_pipe_table("A | B\n--|--\n1 | 2\n3 | 4\n")
        assert rows == [{"A": "1", "B": "2"}, {"A": "3", "B": "4"}]

    def test_padding(self):
        rows = _parse_pipe_table("A | B | C\n1 | 2\n")
        assert rows == [{"A": "1", "B": "2", "C": ""}]

    def test_header_only(self):
        assert _parse_pipe_table("A | B") == []


class TestParseBool:

    @pytest.mark.parametrize("text", ["true", "True", "yes", "1", "on"])
    def test_true(self, text):
        assert parse_bool(text) is True

    @pytest.mark.parametrize("text", ["false", "no", "0", "", "off"])
    def test_false(self, text):
        assert parse_bool(text) is False

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_bool("maybe")


class TestLoadConfig:
    """Test loading job files."""

    def test_jobs(self, tmp_path):
        path = tmp_path / "jobs.yaml"
        path.write_text(JOBS)
        jobs = load_config(str(path))
        assert len(jobs) == 3

        assert jobs[0].ms_path == "obs1.ms"
        assert jobs[0].output_base == "out/obs1"
        assert jobs[0].undo_phase_tracking is True
        assert jobs[0].reset_weights is False
        assert jobs[0].batch_rows == 5000

        assert jobs[1].data_column == "CORRECTED_DATA"
        assert jobs[1].undo_phase_tracking is False
        assert jobs[1].reset_weights is True
        assert jobs[1].batch_rows == 10000

        assert jobs[2].data_column == "DATA"
        assert jobs[2].keep_partial is False

    def test_verbose(self, tmp_path):
        path = tmp_path / "jobs.yaml"
        path.write_text(JOBS)
        assert all(job.verbose for job in load_config(str(path), verbose=True))

    def test_missing_table(self, tmp_path):
        path = tmp_path / "jobs.yaml"
        path.write_text("other: 1\n")
        with pytest.raises(ValueError, match="convert"):
            load_config(str(path))

    def test_missing_output(self, tmp_path):
        path = tmp_path / "jobs.yaml"
        path.write_text("convert: |\n  MS file | Output\n  ------- | ------\n  a.ms    |\n")
        with pytest.raises(ValueError, match="row 1"):
            load_config(str(path))

    def test_bad_batch_rows(self, tmp_path):
        path = tmp_path / "jobs.yaml"
        path.write_text(
            "convert: |\n  MS file | Output | Batch rows\n  a.ms | a | many\n"
        )
        with pytest.raises(ValueError, match="Batch rows"):
            load_config(str(path))


class TestConversionConfig:
    """Test config defaults and validation."""

    def test_defaults(self):
        cfg = ConversionConfig("a.ms", "out/a")
        assert cfg.data_column == "DATA"
        assert cfg.undo_phase_tracking is False
        assert cfg.recompute_uvw is True
        assert cfg.batch_rows == 10000
        assert cfg.field_id == 0

    def test_bad_batch_rows(self):
        with pytest.raises(ValueError):
            ConversionConfig("a.ms", "out/a", batch_rows=0)

    def test_missing_output(self):
        with pytest.raises(ValueError):
            ConversionConfig("a.ms", "")
