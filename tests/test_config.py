import logging

import pytest

from chat_relay.config import setup_logging
from chat_relay.stats import RelayStats


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def test_setup_logging_writes_to_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "relay.log"
    setup_logging("debug", str(log_file))

    logging.getLogger("chat_relay.test").debug("hello file")
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert restore_root_logger.level == logging.DEBUG
    assert "hello file" in log_file.read_text(encoding="utf-8")


def test_stats_counters():
    stats = RelayStats()
    stats.incr("messages_relayed")
    stats.incr("lines_delivered", 3)
    snapshot = stats.snapshot()
    assert snapshot["messages_relayed"] == 1
    assert snapshot["lines_delivered"] == 3
    assert snapshot["connections_accepted"] == 0

    with pytest.raises(KeyError):
        stats.incr("bogus")
