from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List
from urllib.parse import urlparse

from warehouse_export.db.utils import contains_bad_word
from warehouse_export.exceptions.errors import ValidationError


@dataclass
class Query:
    id: int
    name: str
    querysql: str
    description: str = ""
    enabled: bool = True
    sortorder: int = 0
    in_use: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Backend:
    id: int
    name: str
    url: str
    description: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    enabled: bool = True
    # Comma-separated user ids allowed to deliver to this backend; empty = everyone.
    alloweduser: str = ""
    in_use: bool = False

    def allowed_user_ids(self) -> List[int]:
        out: List[int] = []
        for part in (self.alloweduser or "").split(","):
            part = part.strip()
            if part.isdigit():
                out.append(int(part))
        return out

    def allows(self, user_id: int) -> bool:
        allowed = self.allowed_user_ids()
        return not allowed or int(user_id) in allowed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_query(query: Query, existing: Iterable[Query] = ()) -> None:
    """Edit-time checks for a query definition.

    Literal ``;`` and ``?`` are refused: authors write ``%%S%%`` and ``%%Q%%``
    instead and get the characters back in the output.
    """
    name = (query.name or "").strip()
    if not name:
        raise ValidationError("A name is required", field="name")
    # The name becomes part of the export file name.
    if "/" in name or "\\" in name:
        raise ValidationError("The name may not contain '/' or '\\'", field="name")
    for other in existing:
        if other.id != query.id and other.name.strip().lower() == name.lower():
            raise ValidationError(f"A query named '{name}' already exists", field="name")

    sql = (query.querysql or "").strip()
    if not sql:
        raise ValidationError("The query SQL is required", field="querysql")
    if contains_bad_word(sql):
        raise ValidationError("The query contains a data-modifying keyword", field="querysql")
    if ";" in sql:
        raise ValidationError("The query may not contain ';' (use %%S%%)", field="querysql")
    if "?" in sql:
        raise ValidationError("The query may not contain '?' (use %%Q%%)", field="querysql")


def validate_backend(backend: Backend) -> None:
    if not (backend.name or "").strip():
        raise ValidationError("A name is required", field="name")
    parsed = urlparse((backend.url or "").strip())
    if parsed.scheme != "https" or not parsed.netloc:
        raise ValidationError("The backend URL must be an https:// URL", field="url")
    for part in (backend.alloweduser or "").split(","):
        if part.strip() and not part.strip().isdigit():
            raise ValidationError(f"Invalid user id in allowed users: {part.strip()}", field="alloweduser")


def query_from_dict(payload: Dict[str, Any]) -> Query:
    return Query(**{k: payload[k] for k in Query.__dataclass_fields__ if k in payload})


def backend_from_dict(payload: Dict[str, Any]) -> Backend:
    return Backend(**{k: payload[k] for k in Backend.__dataclass_fields__ if k in payload})

