from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
import re


BAD_WORDS: Tuple[str, ...] = (
    "ALTER", "CREATE", "DELETE", "DROP", "GRANT", "INSERT", "INTO", "TRUNCATE", "UPDATE",
)

_BAD_WORD_RE = re.compile(r"\b(" + "|".join(BAD_WORDS) + r")\b", re.IGNORECASE)
_PREFIX_RE = re.compile(r"\bprefix_(?=\w+)", re.IGNORECASE)
# ``:name`` placeholders; ``::type`` casts are not placeholders.
_PLACEHOLDER_RE = re.compile(r"(?<!:):([a-z][a-z0-9_]*)")


def contains_bad_word(sql: str) -> bool:
    """Whole-word, case-insensitive match against the mutating keyword blocklist."""
    return _BAD_WORD_RE.search(sql or "") is not None


def apply_table_prefix(sql: str, prefix: str) -> str:
    """Rewrite ``prefix_user`` style table references to the deployment prefix."""
    return _PREFIX_RE.sub(lambda _m: prefix, sql)


def is_integer(value: Any) -> bool:
    """True for ints and for strings that look exactly like an int ("42", not "042" or "4.2")."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if not isinstance(value, str):
        return False
    try:
        return str(int(value)) == value
    except ValueError:
        return False


def coerce_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Turn integer-looking values into real ints so they match typed columns."""
    out: Dict[str, Any] = {}
    for name, value in (params or {}).items():
        out[name] = int(value) if is_integer(value) else value
    return out


def get_query_placeholders(sql: str) -> List[str]:
    """Placeholder names (without the colon) in order of first appearance."""
    seen: List[str] = []
    for m in _PLACEHOLDER_RE.finditer(sql or ""):
        if m.group(1) not in seen:
            seen.append(m.group(1))
    return seen


@dataclass(frozen=True)
class ParamStyle:
    """How a driver spells a named parameter.

    Queries are written with ``:name`` placeholders; each data source renders
    them in its own style before execution.
    """

    template: str  # e.g. "${name}" or "%({name})s"
    escape_percent: bool = False

    def render(self, sql: str) -> str:
        if self.escape_percent:
            sql = sql.replace("%", "%%")
        return _PLACEHOLDER_RE.sub(lambda m: self.template.format(name=m.group(1)), sql)


DOLLAR = ParamStyle(template="${name}")
PYFORMAT = ParamStyle(template="%({name})s", escape_percent=True)
