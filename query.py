"""
Advanced query results

Turns a flat query string such as

    /courses?tuition[gte]=1000&minimumSkill=beginner&select=title,tuition&sort=-tuition&page=2&limit=10

into one filtered, sorted, paginated and field-selected find against any
collection, and wraps the page in the standard list envelope:

    {success, status, message, count, pagination: {next?, prev?}, data}

Nothing here knows about a specific collection. Callers pass the collection
name, the Pydantic schema used to cast filter values, a display name for the
message and optionally the relations to expand (`Populate`).
"""
import logging
import re
from datetime import datetime
from types import UnionType
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple, Type, Union, get_args, get_origin

from fastapi import Depends, Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import get_db, sanitize, to_obj_id
from errors import InvalidObjectId

logger = logging.getLogger(__name__)

CONTROL_KEYS = ("select", "sort", "page", "limit")
OPERATORS = ("gt", "gte", "lt", "lte", "in")
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 25
DEFAULT_SORT = [("createdAt", DESCENDING)]

_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")


class Populate(BaseModel):
    """A relation to expand into each record.

    Forward reference (the record stores the other document's id):
        Populate(path="bootcamp", collection="bootcamp", select=["name"])
    Reverse relation (other documents store this record's id):
        Populate(path="courses", collection="course", local_field="_id",
                 foreign_field="bootcamp", many=True)
    """

    path: str
    collection: str
    select: Optional[List[str]] = None
    local_field: Optional[str] = None
    foreign_field: str = "_id"
    many: bool = False


class QueryPlan(BaseModel):
    filter: Dict[str, Any]
    projection: Optional[Dict[str, int]] = None
    sort: List[Tuple[str, int]]
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


# ---------------------------------------------------------------------------
# Query string -> filter
# ---------------------------------------------------------------------------

def parse_query_string(items: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """Expand bracket keys (`tuition[gt]=10`) into nested dicts.

    Keys starting with `$` are dropped so clients cannot inject store operators
    directly, and a repeated key keeps its last value.
    """
    result: Dict[str, Any] = {}
    for key, value in items:
        match = _KEY_RE.match(key)
        if not match:
            continue
        parts = [match.group(1)] + _BRACKET_RE.findall(match.group(2))
        if any(not p or p.startswith("$") for p in parts):
            logger.debug("Dropping query key %r", key)
            continue
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return result


def rewrite_operators(node: Any, depth: int = 0) -> Any:
    """Prefix comparison tokens nested under a field with `$` (`gt` -> `$gt`).

    Only keys are rewritten and only below the top level, so field names that
    merely contain `gt`, `in` etc. are left alone.
    """
    if not isinstance(node, dict):
        return node
    out = {}
    for key, value in node.items():
        if depth > 0 and key in OPERATORS:
            key = f"${key}"
        out[key] = rewrite_operators(value, depth + 1)
    return out


def _flatten(node: Dict[str, Any], prefix: str = "") -> Iterable[Tuple[str, Any]]:
    for key, value in node.items():
        path = f"{prefix}.{key}" if prefix else key
        if not isinstance(value, dict):
            yield path, value
            continue
        ops = {k: v for k, v in value.items() if k.startswith("$")}
        rest = {k: v for k, v in value.items() if not k.startswith("$")}
        if ops:
            yield path, ops
        if rest:
            yield from _flatten(rest, path)


def _unwrap(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Union or origin is UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        return _unwrap(args[0]) if len(args) == 1 else annotation
    if origin in (list, tuple, set, frozenset):
        args = get_args(annotation)
        return _unwrap(args[0]) if args else str
    if origin is Literal:
        return type(get_args(annotation)[0])
    return annotation


def field_type(model: Type[BaseModel], path: str) -> Any:
    """Declared type of a (possibly dotted) field path, or None if unknown."""
    annotation: Any = model
    for part in path.split("."):
        annotation = _unwrap(annotation)
        if not (isinstance(annotation, type) and issubclass(annotation, BaseModel)):
            return None
        field = annotation.model_fields.get(part)
        if field is None:
            return None
        annotation = field.annotation
    return _unwrap(annotation)


def cast_value(tp: Any, raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    if tp is bool:
        lowered = raw.lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
        return raw
    if tp is int or tp is float:
        try:
            return int(raw) if tp is int else float(raw)
        except ValueError:
            try:
                return float(raw)
            except ValueError:
                return raw
    if tp is datetime:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return raw
    return raw


def _cast_condition(tp: Any, condition: Any) -> Any:
    if not isinstance(condition, dict):
        return cast_value(tp, condition)
    out = {}
    for op, value in condition.items():
        if op == "$in":
            values = value.split(",") if isinstance(value, str) else list(value)
            out[op] = [cast_value(tp, v) for v in values]
        else:
            out[op] = cast_value(tp, value)
    return out


def build_filter(params: Mapping[str, Any], model: Type[BaseModel]) -> Dict[str, Any]:
    data = {k: v for k, v in params.items() if k not in CONTROL_KEYS}
    data = rewrite_operators(data)
    return {path: _cast_condition(field_type(model, path), cond) for path, cond in _flatten(data)}


# ---------------------------------------------------------------------------
# select / sort / page / limit
# ---------------------------------------------------------------------------

def _split_fields(raw: Optional[str]) -> List[str]:
    if not raw or not isinstance(raw, str):
        return []
    # a bare "-" names no field
    return [f for f in (p.strip() for p in raw.split(",")) if f.lstrip("-")]


def build_projection(raw: Optional[str]) -> Optional[Dict[str, int]]:
    fields = _split_fields(raw)
    if not fields:
        return None
    include = {f: 1 for f in fields if not f.startswith("-")}
    if include:
        return include
    return {f[1:]: 0 for f in fields}


def build_sort(raw: Optional[str]) -> List[Tuple[str, int]]:
    fields = _split_fields(raw)
    if not fields:
        return list(DEFAULT_SORT)
    return [(f[1:], DESCENDING) if f.startswith("-") else (f, ASCENDING) for f in fields]


def _positive_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def build_plan(items: Union[Mapping[str, str], Iterable[Tuple[str, str]]], model: Type[BaseModel]) -> QueryPlan:
    pairs = list(items.items()) if isinstance(items, Mapping) else list(items)
    params = parse_query_string(pairs)
    control = {k: params.get(k) for k in CONTROL_KEYS}
    return QueryPlan(
        filter=build_filter(params, model),
        projection=build_projection(control["select"]),
        sort=build_sort(control["sort"]),
        page=_positive_int(control["page"], DEFAULT_PAGE),
        limit=_positive_int(control["limit"], DEFAULT_LIMIT),
    )


def paginate(page: int, limit: int, total: int) -> Dict[str, Dict[str, int]]:
    pagination: Dict[str, Dict[str, int]] = {}
    if page * limit < total:
        pagination["next"] = {"page": page + 1, "limit": limit}
    if page > 1:
        pagination["prev"] = {"page": page - 1, "limit": limit}
    return pagination


# ---------------------------------------------------------------------------
# Relation expansion
# ---------------------------------------------------------------------------

def _foreign_keys(values: Sequence[Any], foreign_field: str) -> List[Any]:
    if foreign_field != "_id":
        return list(values)
    keys = []
    for value in values:
        try:
            keys.append(to_obj_id(value))
        except InvalidObjectId:
            continue
    return keys


def populate_documents(database: Database, docs: List[Dict], populate: Union[Populate, Sequence[Populate], None]) -> List[Dict]:
    """Embed related documents into `docs` in place (one query per relation)."""
    if not populate or not docs:
        return docs
    specs = [populate] if isinstance(populate, Populate) else list(populate)
    for spec in specs:
        local_field = spec.local_field or spec.path
        local_values = {str(d[local_field]) for d in docs if d.get(local_field) is not None}
        if not local_values:
            continue
        projection = None
        if spec.select:
            projection = {f: 1 for f in spec.select}
            projection[spec.foreign_field] = 1
        keys = _foreign_keys(sorted(local_values), spec.foreign_field)
        related = database[spec.collection].find({spec.foreign_field: {"$in": keys}}, projection)

        grouped: Dict[str, List[Dict]] = {}
        for rel in related:
            grouped.setdefault(str(rel.get(spec.foreign_field)), []).append(sanitize(rel))
        for doc in docs:
            if doc.get(local_field) is None:
                continue
            matches = grouped.get(str(doc[local_field]), [])
            if spec.many:
                doc[spec.path] = matches
            else:
                doc[spec.path] = matches[0] if matches else None
    return docs


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def advanced_query(
    database: Database,
    collection_name: str,
    model: Type[BaseModel],
    resource_name: str,
    params: Union[Mapping[str, str], Iterable[Tuple[str, str]]],
    populate: Union[Populate, Sequence[Populate], None] = None,
) -> Dict[str, Any]:
    plan = build_plan(params, model)
    collection = database[collection_name]

    total = collection.count_documents(plan.filter)
    cursor = collection.find(plan.filter, plan.projection).sort(plan.sort).skip(plan.skip).limit(plan.limit)
    docs = populate_documents(database, list(cursor), populate)

    return {
        "success": True,
        "status": True,
        "message": f"All {resource_name} retrieved successfully",
        "count": total,
        "pagination": paginate(plan.page, plan.limit, total),
        "data": [sanitize(d) for d in docs],
    }


def advanced_results(
    collection_name: str,
    model: Type[BaseModel],
    resource_name: str,
    populate: Union[Populate, Sequence[Populate], None] = None,
):
    """Route dependency running `advanced_query` against the request's query string."""

    def dependency(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
        return advanced_query(db, collection_name, model, resource_name, request.query_params.multi_items(), populate)

    return dependency
