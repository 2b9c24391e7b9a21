"""
Template loading: discover sources, parse YAML, validate and store.

A load pass never aborts on a single bad source. Every source that cannot be
read, parsed or validated becomes a SkipEntry in the returned LoadReport.
"""

from __future__ import annotations

import glob
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import yaml

from issue_scheduler.errors import DuplicateNameError, ParseError, ValidationError
from issue_scheduler.templates import TemplateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateSource:
    identifier: str
    data: Optional[bytes]
    error: Optional[str] = None


@dataclass(frozen=True)
class SkipEntry:
    source: str
    errors: List[str]

    def message(self) -> str:
        return f"Skipping invalid issue template {self.source}: {', '.join(self.errors)}"


@dataclass
class LoadReport:
    loaded: List[str] = field(default_factory=list)
    skipped: List[SkipEntry] = field(default_factory=list)

    @property
    def loaded_count(self) -> int:
        return len(self.loaded)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def ok(self) -> bool:
        return not self.skipped

    def summary_lines(self) -> List[str]:
        lines = [f"Loaded templates: {self.loaded_count}"]
        lines.extend(f"- {name}" for name in self.loaded)
        if self.skipped:
            lines.append(f"Skipped templates: {self.skipped_count}")
            lines.extend(f"- {entry.source}: {', '.join(entry.errors)}" for entry in self.skipped)
        return lines


def parse_template_source(data: bytes) -> Dict[str, Any]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"not valid UTF-8: {exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError(f"YAML is not valid: {exc}") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"YAML issue template is not an object, contained {payload!r}")
    return {str(key): value for key, value in payload.items()}


def load_templates(sources: Iterable[TemplateSource], store: TemplateStore) -> LoadReport:
    report = LoadReport()
    for source in sources:
        try:
            name = _load_one(source, store)
        except (ParseError, ValidationError, DuplicateNameError) as exc:
            entry = SkipEntry(source=source.identifier, errors=_skip_reasons(exc))
            logger.warning(entry.message())
            report.skipped.append(entry)
            continue
        report.loaded.append(name)
    return report


def _load_one(source: TemplateSource, store: TemplateStore) -> str:
    if source.error is not None or source.data is None:
        raise ParseError(source.error or "could not be read")
    fields = parse_template_source(source.data)
    template = store.create({"name": source.identifier, **fields})
    return template.name


def _skip_reasons(exc: Exception) -> List[str]:
    if isinstance(exc, ValidationError):
        return exc.errors
    if isinstance(exc, DuplicateNameError):
        return [f"name: '{exc.name}' is already defined"]
    return [f"source: {exc}"]


def reload_templates(store: TemplateStore, sources: Iterable[TemplateSource]) -> LoadReport:
    """Rebuild ``store`` from ``sources`` without exposing a partially loaded store."""
    staged = TemplateStore()
    report = load_templates(sources, staged)
    store.replace_with(staged)
    logger.info(
        "Loaded %s issue template(s), skipped %s.",
        report.loaded_count,
        report.skipped_count,
    )
    return report


def glob_sources(
    patterns: Union[str, Sequence[str]],
    base_dir: Optional[Path] = None,
) -> List[TemplateSource]:
    if isinstance(patterns, str):
        patterns = [patterns]
    paths: List[str] = []
    seen = set()
    for pattern in patterns:
        expanded = os.path.expanduser(pattern)
        if base_dir is not None and not os.path.isabs(expanded):
            expanded = str(base_dir / expanded)
        for match in sorted(glob.glob(expanded, recursive=True)):
            if match in seen or not os.path.isfile(match):
                continue
            seen.add(match)
            paths.append(match)

    sources: List[TemplateSource] = []
    for path in paths:
        try:
            sources.append(TemplateSource(identifier=path, data=Path(path).read_bytes()))
        except OSError as exc:
            sources.append(TemplateSource(identifier=path, data=None, error=f"could not be read: {exc}"))
    return sources
