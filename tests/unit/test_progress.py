from __future__ import annotations

from unittest.mock import patch

from sheetload.models.processing_result import ReportAccumulator
from sheetload.services.progress import POSTFIX_EVERY, RowProgress, is_tty_enabled


def test_is_tty_enabled_returns_stdout_isatty():
    with patch("sys.stdout.isatty", return_value=True):
        assert is_tty_enabled() is True
    with patch("sys.stdout.isatty", return_value=False):
        assert is_tty_enabled() is False


def test_disabled_progress_counts_without_tqdm():
    with patch("sheetload.services.progress.tqdm") as mock_tqdm:
        progress = RowProgress(enabled=False)
        progress.advance(ReportAccumulator(), rows=3)
        progress.finish(ReportAccumulator())
    mock_tqdm.assert_not_called()
    assert progress.rows_seen == 3


def test_tty_default_creates_open_ended_bar():
    with patch("sheetload.services.progress.is_tty_enabled", return_value=True), \
         patch("sheetload.services.progress.tqdm") as mock_tqdm:
        progress = RowProgress(description="Loading")
    assert progress.enabled is True
    kwargs = mock_tqdm.call_args.kwargs
    assert kwargs["desc"] == "Loading"
    assert kwargs["unit"] == "row"
    assert "total" not in kwargs


def test_postfix_refreshed_every_interval_and_on_finish():
    acc = ReportAccumulator()
    with patch("sheetload.services.progress.tqdm") as mock_tqdm:
        bar = mock_tqdm.return_value
        with RowProgress(enabled=True) as progress:
            for _ in range(POSTFIX_EVERY - 1):
                progress.advance(acc)
            bar.set_postfix.assert_not_called()
            progress.advance(acc)
            assert bar.set_postfix.call_count == 1
            progress.finish(acc)
    assert bar.update.call_count == POSTFIX_EVERY
    assert bar.set_postfix.call_count == 2
    bar.close.assert_called_once()
    assert progress.pbar is None
