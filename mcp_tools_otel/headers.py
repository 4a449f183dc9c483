"""Parsing of OTLP exporter headers from a raw configuration string.

The raw format is a comma-separated list of ``key=value`` pairs, e.g.::

    Authorization=Api-Token abc123,x-tenant=prod

Whitespace around keys and values is insignificant and values may be empty.
Malformed entries are skipped with a warning; parsing never raises.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import TracingConfig

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"


def has_authorization(headers: dict[str, str]) -> bool:
    """Check for an authorization header, ignoring key case."""
    return any(key.lower() == AUTHORIZATION_HEADER.lower() for key in headers)


def _parse(raw: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for segment in raw.split(","):
        segment = segment.strip()
        if not segment:
            continue

        key, sep, value = segment.partition("=")
        if not sep:
            logger.warning(f"Skipping malformed header entry (missing '='): {segment!r}")
            continue

        key = key.strip()
        if not key:
            logger.warning(f"Skipping header entry with empty key: {segment!r}")
            continue

        # Last occurrence wins
        headers[key] = value.strip()
    return headers


def parse_headers(raw: str | None, warn_missing_authorization: bool = True) -> dict[str, str]:
    """Parse a raw header string into a header mapping.

    Args:
        raw: Comma-separated key=value pairs. None or blank yields {}.
        warn_missing_authorization: Warn when no authorization header is
            present (the collector may reject unauthenticated exports).

    Returns:
        Mapping of header name to value. Empty on any unexpected failure.
    """
    if raw is None or not raw.strip():
        return {}

    try:
        headers = _parse(raw)
    except Exception:
        logger.exception("Failed to parse exporter headers, continuing without headers")
        return {}

    if warn_missing_authorization and not has_authorization(headers):
        logger.warning(
            "No authorization header configured; the trace collector may reject exports"
        )

    logger.debug(f"Parsed {len(headers)} exporter header(s)")
    return headers


def resolve_headers(config: TracingConfig) -> dict[str, str]:
    """Resolve the exporter headers for a configuration.

    Parses ``config.raw_headers`` and, when an API token is configured and
    no authorization header was given, adds ``Authorization: Api-Token <token>``.

    Args:
        config: TracingConfig with raw_headers and api_token.

    Returns:
        Header mapping to hand to the exporter.
    """
    headers = parse_headers(config.raw_headers, warn_missing_authorization=not config.api_token)
    if config.api_token and not has_authorization(headers):
        headers[AUTHORIZATION_HEADER] = f"Api-Token {config.api_token}"
    return headers
