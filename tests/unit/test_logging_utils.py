"""Unit tests for the logging helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from fusion_pipeline.logging_utils import (
    StreamProgress,
    get_project_root,
    setup_file_logging,
)


@pytest.fixture
def root_handlers() -> Iterator[list[logging.Handler]]:
    """Remove handlers a test adds to the root logger."""
    root = logging.getLogger()
    before = list(root.handlers)
    yield before
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()


class TestStreamProgress:
    def test_yields_all_items(self) -> None:
        assert list(StreamProgress(range(4))) == [0, 1, 2, 3]

    def test_total_inferred(self) -> None:
        progress = StreamProgress([1, 2, 3])
        assert progress.total == 3

    def test_total_unknown_for_generators(self) -> None:
        progress = StreamProgress(x for x in range(3))
        assert progress.total is None

    def test_final_line_at_debug(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        logger = logging.getLogger("test.progress")
        with caplog.at_level(logging.DEBUG, logger="test.progress"):
            list(
                StreamProgress(range(5), desc="rows", unit="px", logger=logger)
            )
        records = [r for r in caplog.records if r.name == "test.progress"]
        assert len(records) == 1
        assert records[0].levelno == logging.DEBUG
        message = records[0].getMessage()
        assert message.startswith("rows: 5/5 [100.0%] px")

    def test_intermediate_lines_at_info(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        logger = logging.getLogger("test.progress")
        with caplog.at_level(logging.DEBUG, logger="test.progress"):
            list(StreamProgress(range(3), logger=logger, log_interval_s=0.0))
        levels = [r.levelno for r in caplog.records]
        assert levels.count(logging.INFO) == 3
        assert levels[-1] == logging.DEBUG

    def test_update_counts(self) -> None:
        progress = StreamProgress([], log_interval_s=3600.0)
        progress.update(7)
        assert progress.n == 7


class TestSetupFileLogging:
    def test_creates_log_file(
        self, tmp_path: Path, root_handlers: list[logging.Handler]
    ) -> None:
        log_path = setup_file_logging(tmp_path / "logs", name="job")
        assert log_path == tmp_path / "logs" / "job.log"
        logging.getLogger("test.file").warning("hello file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello file" in log_path.read_text()

    def test_same_file_added_once(
        self, tmp_path: Path, root_handlers: list[logging.Handler]
    ) -> None:
        setup_file_logging(tmp_path, name="job")
        setup_file_logging(tmp_path, name="job")
        added = [
            h for h in logging.getLogger().handlers if h not in root_handlers
        ]
        assert len(added) == 1


class TestGetProjectRoot:
    def test_contains_pyproject(self) -> None:
        assert (get_project_root() / "pyproject.toml").exists()
