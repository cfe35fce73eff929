import json
import logging
import sys

from rx_fulfillment.log import JSONFormatter, setup_logging


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("stock row locked")
    except RuntimeError:
        record = logging.LogRecord(
            "rx_fulfillment.agents.fulfillment", logging.ERROR, __file__, 1,
            "Stock update failed for sale %s", ("sale-1",), sys.exc_info(),
        )

    entry = json.loads(JSONFormatter().format(record))
    assert entry["level"] == "ERROR"
    assert entry["logger"] == "rx_fulfillment.agents.fulfillment"
    assert entry["message"] == "Stock update failed for sale sale-1"
    assert entry["exception"] == "stock row locked"


def test_setup_logging_honours_level_and_format():
    previous = logging.root.handlers[:], logging.root.level
    try:
        setup_logging(level="debug", json_output=False)
        assert logging.root.level == logging.DEBUG
        assert not isinstance(logging.root.handlers[0].formatter, JSONFormatter)

        setup_logging(level="WARNING", json_output=True)
        assert logging.root.level == logging.WARNING
        assert isinstance(logging.root.handlers[0].formatter, JSONFormatter)
    finally:
        logging.root.handlers, level = previous
        logging.root.setLevel(level)
