import io
import logging

from buildnest.logutil import LevelFormatter, LogsFilter, pause


def _make_logger(name, stream):
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(LevelFormatter())
    logger.addHandler(handler)
    return logger, handler


def _record(level, msg):
    return logging.LogRecord("x", level, __file__, 1, msg, None, None)


def test_filter_drops_matching_message():
    f = LogsFilter([logging.INFO], "noisy")
    assert f.filter(_record(logging.INFO, "a noisy line")) is False
    assert f.filter(_record(logging.INFO, "a quiet line")) is True


def test_filter_ignores_other_levels():
    f = LogsFilter([logging.INFO], "noisy")
    assert f.filter(_record(logging.WARNING, "a noisy line")) is True


def test_filter_on_handler():
    stream = io.StringIO()
    logger, handler = _make_logger("buildnest.test.filter", stream)
    handler.addFilter(LogsFilter([logging.INFO], "noisy"))
    logger.info("noisy entry")
    logger.info("kept entry")
    output = stream.getvalue()
    assert "kept entry" in output
    assert "noisy" not in output


def test_formatter():
    assert LevelFormatter().format(_record(logging.WARNING, "hello")) == "WARNING: hello"


def test_pause_buffers_until_resume():
    stream = io.StringIO()
    logger, handler = _make_logger("buildnest.test.pause", stream)
    resume = pause(logger)
    logger.info("first")
    assert stream.getvalue() == ""
    resume()
    assert stream.getvalue() == "INFO: first\n"
    assert handler.stream is stream
    logger.info("second")
    assert stream.getvalue().endswith("INFO: second\n")
    resume()
    assert stream.getvalue().count("first") == 1