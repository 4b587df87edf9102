"""Tests for the transfer-foundry command line."""

import logging
from pathlib import Path

import pytest

from transfers.__main__ import EXIT_CONFIG, EXIT_DONE, EXIT_FAILED, build_parser, main
from transfers.lib.io import is_complete


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _job_file(tmp_path, extra: str = "") -> str:
    path = tmp_path / "seed.yaml"
    path.write_text(
        f"""
job:
  name: seed
  partitioner: dummy
  extractor: dummy
  output_dir: out
  options:
    num_partitions: 3
{extra}
""",
        encoding="utf-8",
    )
    return str(path)


class TestRunCommand:
    """Tests for `transfer-foundry run`."""

    def test_done(self, tmp_path, capsys) -> None:
        assert main(["run", _job_file(tmp_path), "--workers", "2"]) == EXIT_DONE
        assert "DONE: 30 record(s) written to 1 file(s)" in capsys.readouterr().out
        assert is_complete(str(tmp_path / "out"))

    def test_failed(self, tmp_path, capsys) -> None:
        path = _job_file(tmp_path, "    fail_partition: 2")
        assert main(["run", path]) == EXIT_FAILED
        assert "FAILED: partitions 1 did not complete" in capsys.readouterr().out

    def test_merge_failure(self, tmp_path) -> None:
        path = Path(_job_file(tmp_path))
        content = path.read_text(encoding="utf-8").replace("extractor: dummy", "extractor: dummy_reversed")
        path.write_text(content + "  merge:\n    mode: concat\n", encoding="utf-8")
        assert main(["run", str(path)]) == EXIT_FAILED

    def test_invalid_config(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("job:\n  partitioner: nope\n", encoding="utf-8")
        assert main(["run", str(path)]) == EXIT_CONFIG

    def test_missing_config(self, tmp_path) -> None:
        assert main(["run", str(tmp_path / "missing.yaml")]) == EXIT_CONFIG

    def test_existing_output(self, tmp_path) -> None:
        path = _job_file(tmp_path)
        assert main(["run", path]) == EXIT_DONE
        assert main(["run", path]) == EXIT_CONFIG

    def test_verbose_after_subcommand(self) -> None:
        args = build_parser().parse_args(["run", "job.yaml", "--verbose", "--json-logs"])
        assert args.verbose and args.json_logs
        assert args.config == "job.yaml"


class TestInspectCommands:
    """Tests for `list` and `cat`."""

    def test_list(self, capsys) -> None:
        assert main(["list"]) == EXIT_DONE
        out = capsys.readouterr().out
        for expected in ["Partitioners:", "  range", "Extractors:", "  sql", "Loaders:", "  sequence", "  gzip"]:
            assert expected in out

    def test_cat(self, tmp_path, capsys) -> None:
        main(["run", _job_file(tmp_path)])
        capsys.readouterr()
        assert main(["cat", str(tmp_path / "out"), "--limit", "2"]) == EXIT_DONE
        lines = [line for line in capsys.readouterr().out.splitlines() if line and "[" not in line]
        assert lines == ["10,10.0,10", "11,11.0,11"]
