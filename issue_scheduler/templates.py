"""
Issue templates and the in-memory template store.

A template is built from a raw field map by evaluating FIELD_RULES in a single
loop; every failing field is collected before a ValidationError is raised so a
caller can report all problems with a template at once.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from dateutil import parser as date_parser

from issue_scheduler import recurrence
from issue_scheduler.errors import DuplicateNameError, NotFoundError, ValidationError


@dataclass(frozen=True)
class Template:
    name: str
    schedule: str
    project: str
    summary: str
    component: Optional[str] = None
    description: Optional[str] = None
    issue_type: Optional[str] = None
    due_date: Optional[date] = None


# A validator returns None when the value is acceptable, otherwise the reason.
Validator = Callable[[Any], Optional[str]]
Converter = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldRule:
    required: bool
    validate: Validator
    convert: Optional[Converter] = None


def _non_empty_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return "must be a string"
    if not value.strip():
        return "must be a non-empty string"
    return None


def _valid_schedule(value: Any) -> Optional[str]:
    reason = _non_empty_string(value)
    if reason:
        return reason
    if not recurrence.is_valid(value):
        return f"'{value}' is not a valid cron string or recurrence rule"
    return None


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date_parser.parse(value.strip()).date()
        except (ValueError, OverflowError):
            return None
    return None


def _valid_date(value: Any) -> Optional[str]:
    if _parse_date(value) is None:
        return f"'{value}' is not a valid date"
    return None


def _upcase(value: str) -> str:
    return value.strip().upper()


def _strip(value: str) -> str:
    return value.strip()


FIELD_RULES: Dict[str, FieldRule] = {
    "name": FieldRule(required=True, validate=_non_empty_string, convert=_strip),
    "schedule": FieldRule(required=True, validate=_valid_schedule, convert=_strip),
    "project": FieldRule(required=True, validate=_non_empty_string, convert=_upcase),
    "summary": FieldRule(required=True, validate=_non_empty_string),
    "component": FieldRule(required=False, validate=_non_empty_string),
    "description": FieldRule(required=False, validate=_non_empty_string),
    "issue_type": FieldRule(required=False, validate=_non_empty_string),
    "due_date": FieldRule(required=False, validate=_valid_date, convert=_parse_date),
}


def build_template(fields: Mapping[str, Any]) -> Template:
    """Validate a raw field map and return a Template.

    Optional fields that are absent or null stay None. An optional field given
    as an empty string is an error, not a missing value.
    """
    errors: List[str] = []
    values: Dict[str, Any] = {}

    unknown = [key for key in fields if key not in FIELD_RULES]
    for key in unknown:
        errors.append(f"{key}: unknown field")

    for field_name, rule in FIELD_RULES.items():
        value = fields.get(field_name)
        if value is None:
            if rule.required:
                errors.append(f"{field_name}: required")
            values[field_name] = None
            continue
        reason = rule.validate(value)
        if reason:
            errors.append(f"{field_name}: {reason}")
            continue
        values[field_name] = rule.convert(value) if rule.convert else value

    if errors:
        name = fields.get("name")
        raise ValidationError(errors, name=name if isinstance(name, str) else None)
    return Template(**values)


class TemplateStore:
    """Uniquely keyed, insertion-ordered collection of validated templates.

    Writers are expected to be serialized by the caller. The lock only makes
    ``replace_with`` atomic with respect to readers.
    """

    def __init__(self) -> None:
        self._by_name: Dict[str, Template] = {}
        self._order: List[str] = []
        self._lock = threading.RLock()

    def create(self, fields: Mapping[str, Any]) -> Template:
        template = build_template(fields)
        self.insert(template)
        return template

    def insert(self, template: Template) -> None:
        with self._lock:
            if template.name in self._by_name:
                raise DuplicateNameError(template.name)
            self._by_name[template.name] = template
            self._order.append(template.name)

    def find(self, name: str) -> Template:
        with self._lock:
            try:
                return self._by_name[name]
            except KeyError:
                raise NotFoundError(name) from None

    def get(self, name: str) -> Optional[Template]:
        with self._lock:
            return self._by_name.get(name)

    def list(self) -> List[Template]:
        with self._lock:
            return [self._by_name[name] for name in self._order]

    def names(self) -> List[str]:
        with self._lock:
            return list(self._order)

    def clear(self) -> None:
        with self._lock:
            self._by_name.clear()
            self._order.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._order)

    def replace_with(self, other: "TemplateStore") -> None:
        """Swap in the contents of another store in one step."""
        snapshot = other.list()
        with self._lock:
            self._by_name = {template.name: template for template in snapshot}
            self._order = [template.name for template in snapshot]

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._by_name

    def __iter__(self) -> Iterator[Template]:
        return iter(self.list())
