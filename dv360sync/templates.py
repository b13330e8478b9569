"""URI template helpers.

Templates use ``${name}`` placeholders. Resolution is deliberately partial:
unknown names stay in the output so a template can be resolved in several
stages, first against sheet-level input parameters and later against the
identifiers of an individual row.
"""
from __future__ import annotations

import re
from typing import Any, List, Mapping

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")


def resolve(template: str, params: Mapping[str, Any]) -> str:
    """Replace every ``${name}`` in ``template`` with ``params[name]``.

    Values are inserted verbatim; callers pre-encode anything that may
    contain reserved URI characters.
    """

    output = template
    for name, value in params.items():
        if value is None:
            continue
        output = output.replace("${" + str(name) + "}", str(value))
    return output


def unresolved_placeholders(template: str) -> List[str]:
    """Return the placeholder names still present in ``template``."""

    return _PLACEHOLDER_RE.findall(template)


def query_param_separator(url: str) -> str:
    """Return ``&`` if ``url`` already has a query string, otherwise ``?``."""

    return "&" if "?" in url else "?"


def append_query(url: str, key: str, value: str) -> str:
    return f"{url}{query_param_separator(url)}{key}={value}"


__all__ = ["append_query", "query_param_separator", "resolve", "unresolved_placeholders"]
