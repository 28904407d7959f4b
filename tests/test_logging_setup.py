from okx_gateway.config import LoggingConfig
from okx_gateway.logging_setup import logger, setup_from_config, setup_logging


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "gateway.log"

    setup_logging(str(log_file), level="DEBUG", enable_console=False)
    try:
        logger.debug("Clock synced | offset_ms=12")
        assert "offset_ms=12" in log_file.read_text()
    finally:
        setup_logging(None, level="INFO", enable_console=True)


def test_setup_logging_respects_level(tmp_path):
    log_file = tmp_path / "gateway.log"

    setup_logging(str(log_file), level="warning", enable_console=False)
    try:
        logger.info("not written")
        logger.warning("written")
        content = log_file.read_text()
        assert "written" in content
        assert "not written" not in content
    finally:
        setup_logging(None, level="INFO", enable_console=True)


def test_setup_logging_without_file_creates_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    setup_logging(None, level="INFO", enable_console=False)
    try:
        logger.info("console only")
        assert list(tmp_path.iterdir()) == []
    finally:
        setup_logging(None, level="INFO", enable_console=True)


def test_setup_from_config(tmp_path):
    log_file = tmp_path / "gateway.log"
    section = LoggingConfig(
        log_file=str(log_file),
        log_level="DEBUG",
        enable_console=False,
        rotation="1 MB",
        retention="1 day",
    )

    setup_from_config(section)
    try:
        logger.debug("Rates refreshed | pairs=4")
        content = log_file.read_text()
        assert "Logging configured" in content
        assert "rotation=1 MB" in content
        assert "pairs=4" in content
    finally:
        setup_logging(None, level="INFO", enable_console=True)
