# test_log_setup.py
#
#
# Imports
import io
import logging
import sys
#
# Third-Party Imports
import pytest
from loguru import logger
#
# Local Imports
from tempo_data.app.core.Utils.log_setup import InterceptHandler, setup_logging
#
#######################################################################################################################
#
# Functions:

STDLIB_LOGGER = "tempo_data_tests.stdlib"


@pytest.fixture
def sink():
    stream = io.StringIO()
    yield stream
    logger.remove()
    logger.add(sys.stderr)
    stdlib_logger = logging.getLogger(STDLIB_LOGGER)
    stdlib_logger.handlers = []
    stdlib_logger.propagate = True


def test_level_filtering(sink):
    setup_logging("warning", sink=sink, intercept=())
    logger.info("quiet message")
    logger.warning("loud message")
    output = sink.getvalue()
    assert "quiet message" not in output
    assert "loud message" in output
    assert "| WARNING  |" in output


def test_stdlib_records_are_routed(sink):
    setup_logging("DEBUG", sink=sink, intercept=(STDLIB_LOGGER,))
    stdlib_logger = logging.getLogger(STDLIB_LOGGER)
    assert isinstance(stdlib_logger.handlers[0], InterceptHandler)
    assert stdlib_logger.propagate is False

    stdlib_logger.warning("driver said %s", "hello")
    assert "driver said hello" in sink.getvalue()


def test_returns_handler_id(sink):
    handler_id = setup_logging("INFO", sink=sink, intercept=())
    logger.remove(handler_id)
    logger.info("after removal")
    assert "after removal" not in sink.getvalue()

#
# End of test_log_setup.py
#######################################################################################################################
