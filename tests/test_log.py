import json
import logging

from fulcio.log import configure_logger, context_logger, create_cli_logger, logger


def test_context_logger_without_metadata_is_base_logger():
    assert context_logger(None) is logger
    assert context_logger({}) is logger


def test_context_logger_tags_single_request_id():
    adapter = context_logger({"x-request-id": ["abc"]})
    assert isinstance(adapter, logging.LoggerAdapter)
    assert adapter.extra == {"requestID": "abc"}


def test_context_logger_key_is_case_insensitive():
    adapter = context_logger({"X-Request-Id": "r1"})
    assert adapter.extra == {"requestID": "r1"}


def test_context_logger_ignores_multiple_request_ids():
    assert context_logger({"x-request-id": ["a", "b"]}) is logger


def test_context_logger_ignores_other_keys():
    assert context_logger({"authorization": ["Bearer token"]}) is logger


def test_prod_logger_writes_json_to_stderr(capsys):
    try:
        configure_logger("prod")
        logger.info("hello")
        captured = capsys.readouterr()
        entry = json.loads(captured.err.strip())
        assert entry["severity"] == "info"
        assert entry["message"] == "hello"
        assert captured.out == ""
    finally:
        configure_logger("dev")


def test_prod_logger_includes_request_id(capsys):
    try:
        configure_logger("prod")
        context_logger({"x-request-id": ["abc"]}).warning("tagged")
        entry = json.loads(capsys.readouterr().err.strip())
        assert entry["requestID"] == "abc"
        assert entry["message"] == "tagged"
    finally:
        configure_logger("dev")


def test_prod_logger_skips_debug():
    try:
        configured = configure_logger("prod")
        assert not configured.isEnabledFor(logging.DEBUG)
        assert configured.isEnabledFor(logging.INFO)
    finally:
        configure_logger("dev")


def test_dev_logger_writes_to_stdout(capsys):
    configured = configure_logger("dev")
    assert configured.isEnabledFor(logging.DEBUG)
    configured.info("hello dev")
    captured = capsys.readouterr()
    assert "hello dev" in captured.out
    assert "INFO" in captured.out
    assert "hello dev" not in captured.err


def test_cli_logger_writes_message_only(capsys):
    cli = create_cli_logger()
    cli.info("plain message")
    assert capsys.readouterr().err == "plain message\n"