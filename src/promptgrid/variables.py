# Copyright (c) Syntropy Systems
"""Template variable detection and substitution.

Instruction text may reference variables as ``{{name}}`` or ``${name}``.
Whitespace around the name is ignored.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

CURLY_PATTERN = re.compile(r"\{\{(.*?)\}\}")
DOLLAR_PATTERN = re.compile(r"\$\{([^}]*)\}")


def substitute_variables(text: str, variables: Mapping[str, str]) -> str:
    """Replace every known variable reference in ``text``.

    References whose name is missing from ``variables`` (or maps to an empty
    value) are left exactly as written.
    """

    def _replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1).strip())
        return value if value else match.group(0)

    result = CURLY_PATTERN.sub(_replace, text)
    return DOLLAR_PATTERN.sub(_replace, result)


def detect_variables(text: str) -> list[str]:
    """Return the unique variable names referenced in ``text``.

    ``{{name}}`` references are listed before ``${name}`` ones; each group
    keeps first-seen order. Blank names are skipped.
    """
    names = [m.strip() for m in CURLY_PATTERN.findall(text)]
    names += [m.strip() for m in DOLLAR_PATTERN.findall(text)]

    seen: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
    return seen


def variable_formats(name: str, text: str) -> list[str]:
    """List the reference styles ``text`` uses for ``name``."""
    escaped = re.escape(name)
    formats: list[str] = []
    if re.search(r"\{\{\s*" + escaped + r"\s*\}\}", text):
        formats.append("{{" + name + "}}")
    if re.search(r"\$\{\s*" + escaped + r"\s*\}", text):
        formats.append("${" + name + "}")
    return formats
