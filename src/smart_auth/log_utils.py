"""Structured logging helpers for the SMART authorization core.

The adapter returned by :func:`get_auth_logger` restricts **which** contextual
attributes are attached to log records in order to avoid leaking secrets.
Only these *non-sensitive* fields are ever injected:

- ``server_url``     – FHIR server the token belongs to
- ``client_id``      – registered OAuth client identifier
- ``grant_type``     – ``authorization_code`` / ``refresh_token``
- ``correlation_id`` – placeholder, wired by outer layers

Usage
-----
>>> from smart_auth.log_utils import get_auth_logger
>>> log = get_auth_logger(
...     base_logger_name="smart-auth.exchange",
...     server_url="https://fhir.example.org/r4",
...     client_id="my-app",
... )
>>> log.info("Exchanging authorization code")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return *value* with everything but the first *keep* characters masked."""
    if not value:
        return "<empty>"
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}{'*' * 4}"


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("server_url", "client_id", "grant_type", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if extra and k in extra and extra[k] is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "smart-auth",
    server_url: str | None = None,
    client_id: str | None = None,
    grant_type: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "server_url": server_url,
            "client_id": client_id,
            "grant_type": grant_type,
            "correlation_id": correlation_id,
        },
    )
