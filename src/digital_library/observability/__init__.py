"""Logfire observability for the Digital Library."""

import logging

import logfire

from .config import ObservabilityConfig
from .context import trace_repository_operation
from .decorators import trace_tool
from .metrics import record_annotation_event, record_loan_event

logger = logging.getLogger(__name__)

_config: ObservabilityConfig | None = None


def initialize_observability(config: ObservabilityConfig | None = None) -> None:
    """Configure Logfire. Spans stay local unless a token is set and sending is on."""
    global _config  # noqa: PLW0603
    _config = config or ObservabilityConfig()

    if not _config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=_config.token or None,
        service_name=_config.service_name,
        environment=_config.environment,
        send_to_logfire=_config.should_send,
        console=None if _config.console_output else False,
    )
    logger.info(
        "Logfire configured (environment=%s, sending=%s)",
        _config.environment,
        _config.should_send,
    )


def get_config() -> ObservabilityConfig:
    """Get current observability configuration."""
    global _config  # noqa: PLW0603
    if _config is None:
        _config = ObservabilityConfig()
    return _config


__all__ = [
    "ObservabilityConfig",
    "get_config",
    "initialize_observability",
    "logfire",
    "record_annotation_event",
    "record_loan_event",
    "trace_repository_operation",
    "trace_tool",
]
