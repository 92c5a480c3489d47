"""
Tests for client configuration sources and logging setup.
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from ario.core.config import ClientConfig
from ario.core.constants import DEFAULT_CU_URL, DEFAULT_PROCESS_ID
from ario.core.exceptions import (
    DeliveryError,
    InvalidConfigurationError,
    ResultTimeoutError,
    TransportError,
    get_error_context,
    is_recoverable_error,
)
from ario.core.logging_config import setup_logging


class TestClientConfig:
    """Defaults, environment and YAML sources."""

    def test_defaults(self):
        config = ClientConfig()
        assert config.process_id == DEFAULT_PROCESS_ID
        assert config.cu_url == DEFAULT_CU_URL
        assert config.retry_policy.max_retries == 5

    def test_from_env(self):
        config = ClientConfig.from_env(
            {
                "ARIO_PROCESS_ID": "custom",
                "ARIO_CU_URL": "https://cu.example",
                "ARIO_MAX_RETRIES": "3",
                "ARIO_INITIAL_DELAY": "0.1",
                "ARIO_LOG_LEVEL": "debug",
            }
        )
        assert config.process_id == "custom"
        assert config.cu_url == "https://cu.example"
        assert config.retry_policy.max_retries == 3
        assert config.retry_policy.initial_delay == 0.1
        assert config.retry_policy.backoff_multiplier == 2.0
        assert config.log_level == "DEBUG"

    def test_empty_env_keeps_defaults(self):
        assert ClientConfig.from_env({"ARIO_PROCESS_ID": "  "}) == ClientConfig()

    @pytest.mark.parametrize(
        "environ",
        [
            {"ARIO_MAX_RETRIES": "many"},
            {"ARIO_HTTP_TIMEOUT": "-1"},
            {"ARIO_CU_URL": "ftp://cu"},
        ],
    )
    def test_bad_env_values(self, environ):
        with pytest.raises(InvalidConfigurationError):
            ClientConfig.from_env(environ)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "ario.yaml"
        path.write_text(
            "process_id: from-yaml\n"
            "gateway_url: https://gw.example\n"
            "retry_policy:\n"
            "  max_retries: 2\n"
            "  initial_delay: 0.2\n"
            "  backoff_multiplier: 1.0\n"
        )
        config = ClientConfig.from_yaml(path)
        assert config.process_id == "from-yaml"
        assert config.gateway_url == "https://gw.example"
        assert config.retry_policy.delays() == [0.2]

    @pytest.mark.parametrize(
        "content",
        ["colour: blue\n", "- a list\n", "retry_policy:\n  retries: 2\n", "key: [unclosed\n"],
        ids=["unknown-key", "not-a-mapping", "bad-retry", "bad-yaml"],
    )
    def test_bad_yaml(self, tmp_path, content):
        path = tmp_path / "ario.yaml"
        path.write_text(content)
        with pytest.raises(InvalidConfigurationError):
            ClientConfig.from_yaml(path)

    def test_missing_yaml_file(self, tmp_path):
        with pytest.raises(InvalidConfigurationError):
            ClientConfig.from_yaml(tmp_path / "absent.yaml")

    def test_merged_ignores_none(self):
        config = ClientConfig().merged(cu_url=None, mu_url="https://mu.example")
        assert config.cu_url == DEFAULT_CU_URL
        assert config.mu_url == "https://mu.example"


class TestLogging:
    """Structured logging setup."""

    def test_json_records_carry_context(self):
        stream = io.StringIO()
        logger = setup_logging("ario", level="INFO", json_format=True, stream=stream)
        logging.getLogger("ario.process.client").info(
            "Message sent", extra={"process_id": "pid", "message_id": "mid"}
        )
        record = json.loads(stream.getvalue().strip())
        assert record["message"] == "Message sent"
        assert record["process_id"] == "pid"
        assert record["message_id"] == "mid"
        assert record["level"] == "info"
        assert record["service"] == "ario"
        assert logger.propagate is False

    def test_reconfiguring_does_not_stack_handlers(self):
        setup_logging("ario", level="INFO")
        logger = setup_logging("ario", level="DEBUG")
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            setup_logging("ario", level="LOUD")

    def test_plain_format(self):
        stream = io.StringIO()
        setup_logging("ario", level="WARNING", stream=stream)
        logging.getLogger("ario.contracts.resolver").warning("cache down")
        logging.getLogger("ario.contracts.resolver").info("hidden")
        output = stream.getvalue()
        assert "WARNING ario.contracts.resolver: cache down" in output
        assert "hidden" not in output


class TestErrorContext:
    """Error helpers used by the CLI and logs."""

    def test_transport_errors_are_recoverable(self):
        assert is_recoverable_error(TransportError("reset"))
        assert not is_recoverable_error(InvalidConfigurationError("bad"))
        assert is_recoverable_error(ConnectionError())

    def test_context_includes_ids(self):
        context = get_error_context(ResultTimeoutError("mid", 5))
        assert context["message_id"] == "mid"
        assert context["attempts"] == 5
        assert context["recoverable"] is True

    def test_delivery_context(self):
        context = get_error_context(DeliveryError("gave up", attempts=3))
        assert context["error_type"] == "DeliveryError"
        assert context["attempts"] == 3
