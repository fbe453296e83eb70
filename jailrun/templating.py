"""Best-effort placeholder substitution for option values.

Paths in runner options may contain Jinja2 placeholders (``{{ workdir }}``)
that are resolved per call from a substitution context. Substitution never
fails a call: an entry that cannot be rendered is kept verbatim.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import jinja2

logger = logging.getLogger(__name__)

# StrictUndefined turns a missing key into an error so the entry passes
# through untouched instead of collapsing to an empty string.
_env = jinja2.Environment(  # nosec B701 - renders paths, never HTML
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
)


def _has_placeholder(value: str) -> bool:
    return "{{" in value or "{%" in value


def process_template(value: str, params: Mapping[str, Any] | None) -> str:
    """Render one string against ``params``, returning it unchanged on failure."""
    if not _has_placeholder(value):
        return value
    try:
        return _env.from_string(value).render(**(params or {}))
    except jinja2.TemplateError as exc:
        logger.debug("Keeping %r unsubstituted: %s", value, exc)
        return value


def process_template_list(values: Iterable[str], params: Mapping[str, Any] | None) -> list[str]:
    """Render every entry of ``values``; failing entries keep their original text."""
    return [process_template(v, params) for v in values]
