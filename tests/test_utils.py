from pathlib import Path
from unittest.mock import Mock, patch

from common.utils import clear_screen, configure_logging, logger


class TestUtils:
    """Test cases for the shared logging and console helpers."""

    def test_configure_logging_writes_debug_and_info_files(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"

        handler_ids = configure_logging(str(log_dir))
        try:
            logger.debug("settle timer armed")
            logger.info("Watch added: /project")
        finally:
            for handler_id in handler_ids:
                logger.remove(handler_id)

        debug_log = (log_dir / "debug.log").read_text()
        info_log = (log_dir / "info.log").read_text()
        assert "settle timer armed" in debug_log
        assert "Watch added: /project" in debug_log
        assert "Watch added: /project" in info_log
        assert "settle timer armed" not in info_log

    @patch("common.utils.console")
    def test_clear_screen_skips_scrollback_when_not_a_terminal(self, mock_console: Mock) -> None:
        mock_console.is_terminal = False

        clear_screen()

        mock_console.file.write.assert_not_called()
        mock_console.clear.assert_called_once()

    @patch("common.utils.console")
    def test_clear_screen_clears_scrollback_on_terminal(self, mock_console: Mock) -> None:
        mock_console.is_terminal = True

        clear_screen()

        mock_console.file.write.assert_called_once_with("\x1b[3J")
        mock_console.clear.assert_called_once()

    def test_exported_names_are_defined(self) -> None:
        import common.utils as utils

        assert sorted(utils.__all__) == sorted(
            ["console", "error_console", "logger", "configure_logging", "clear_screen"]
        )
        for name in utils.__all__:
            assert hasattr(utils, name)
