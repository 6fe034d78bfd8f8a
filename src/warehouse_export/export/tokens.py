from __future__ import annotations
from dataclasses import dataclass
from typing import Any

# Input tokens, replaced in the stored SQL before it runs.
USERID_TOKEN = "%%USERID%%"
COURSEID_TOKEN = "%%COURSEID%%"
CMID_TOKEN = "%%CMID%%"

# Output tokens, replaced in cell values before they are written.
WWWROOT_TOKEN = "%%WWWROOT%%"
OUTPUT_ESCAPES = (
    ("%%Q%%", "?"),
    ("%%C%%", ":"),
    ("%%S%%", ";"),
)


@dataclass(frozen=True)
class RunContext:
    """Who runs the export and from which quiz.

    The ids are spliced straight into SQL text, so they are forced to ints here.
    """

    user_id: int
    course_id: int
    course_module_id: int
    quiz_id: int = 0

    def __post_init__(self) -> None:
        for name in ("user_id", "course_id", "course_module_id", "quiz_id"):
            object.__setattr__(self, name, _as_id(getattr(self, name), name))


def _as_id(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer id, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError(f"{name} must be an integer id, got {value!r}")


def substitute_user_token(sql: str, user_id: int) -> str:
    return sql.replace(USERID_TOKEN, str(int(user_id)))


def substitute_course_id(sql: str, course_id: int) -> str:
    return sql.replace(COURSEID_TOKEN, str(int(course_id)))


def substitute_course_module_id(sql: str, cmid: int) -> str:
    return sql.replace(CMID_TOKEN, str(int(cmid)))


def prepare_sql(querysql: str, context: RunContext) -> str:
    sql = substitute_user_token(querysql, context.user_id)
    sql = substitute_course_module_id(sql, context.course_module_id)
    sql = substitute_course_id(sql, context.course_id)
    return sql


def substitute_output_tokens(value: str, wwwroot: str) -> str:
    value = value.replace(WWWROOT_TOKEN, wwwroot)
    for token, char in OUTPUT_ESCAPES:
        value = value.replace(token, char)
    return value
