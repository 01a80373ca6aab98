import logging

from fmp.core.logging import setup_logger


def test_setup_logger_writes_to_file(tmp_path):
    path = tmp_path / "logs" / "fmp.log"
    logger = setup_logger("fmp.test.file", path=path, level="debug")

    logger.info("Vault created vault=%s", "work")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert "[INFO] fmp.test.file: Vault created vault=work" in path.read_text()


def test_setup_logger_configures_once(tmp_path):
    first = setup_logger("fmp.test.once", path=tmp_path / "a.log")
    second = setup_logger("fmp.test.once", path=tmp_path / "b.log", level="WARNING")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.WARNING
    assert not (tmp_path / "b.log").exists()
