"""
Shared logging configuration for the personalization engine.

Log lines are JSON on stderr so that stdout stays free for command output.
Events are tagged with the service name and the component (logger name
after the first dot). Once a page load is correlated they also carry its
session id and page URL.
"""

import sys
import logging
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

import structlog

# Context variables for page-load correlation
session_id_var: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
page_url_var: ContextVar[Optional[str]] = ContextVar('page_url', default=None)

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured JSON logging; log_level is a stdlib level name."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            component_processor(service_name),
            add_correlation_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def component_processor(service_name: str) -> Processor:
    """Tag events with the service and the component that logged them."""
    def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["service"] = service_name
        logger_name = event_dict.get("logger", "")
        if "." in logger_name:
            event_dict["component"] = logger_name.split(".", 1)[1]
        return event_dict

    return add_component


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add page-load correlation context to log events."""
    session_id = session_id_var.get()
    if session_id:
        event_dict["session_id"] = session_id

    page_url = page_url_var.get()
    if page_url:
        event_dict["page_url"] = page_url

    return event_dict


def set_page_context(session_id: Optional[str] = None, page_url: Optional[str] = None):
    """Set page-load correlation context in logging."""
    if session_id:
        session_id_var.set(session_id)
    if page_url:
        page_url_var.set(page_url)


def clear_context():
    session_id_var.set(None)
    page_url_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
