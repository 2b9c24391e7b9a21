from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

from issue_scheduler.errors import ParseError
from issue_scheduler.loader import (
    TemplateSource,
    glob_sources,
    load_templates,
    parse_template_source,
    reload_templates,
)
from issue_scheduler.templates import TemplateStore


def _source(identifier: str, fields: Dict[str, Any]) -> TemplateSource:
    return TemplateSource(identifier=identifier, data=yaml.safe_dump(fields, sort_keys=False).encode("utf-8"))


def _valid(summary: str = "Take out trash") -> Dict[str, Any]:
    return {"schedule": "0 7 * * 1-5", "project": "myproj", "summary": summary}


def test_load_single_template_named_after_source() -> None:
    store = TemplateStore()
    report = load_templates([_source("a.yaml", _valid())], store)
    assert report.loaded == ["a.yaml"]
    assert report.ok
    template = store.find("a.yaml")
    assert template.project == "MYPROJ"
    assert template.component is None
    assert template.due_date is None


def test_missing_schedule_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    store = TemplateStore()
    load_templates([_source("a.yaml", _valid())], store)
    missing = _valid()
    del missing["schedule"]

    with caplog.at_level(logging.WARNING):
        report = load_templates([_source("b.yaml", missing)], store)

    assert report.loaded_count == 0
    assert report.skipped_count == 1
    assert report.skipped[0].source == "b.yaml"
    assert report.skipped[0].errors == ["schedule: required"]
    assert store.size() == 1
    assert "Skipping invalid issue template b.yaml: schedule: required" in caplog.text


def test_one_bad_source_does_not_abort_the_pass() -> None:
    sources = [_source(f"t{idx}.yaml", _valid(f"Task {idx}")) for idx in range(5)]
    broken = _valid()
    del broken["project"]
    sources.insert(2, _source("broken.yaml", broken))

    store = TemplateStore()
    report = load_templates(sources, store)

    assert report.loaded_count == 5
    assert [entry.source for entry in report.skipped] == ["broken.yaml"]
    assert report.skipped[0].errors == ["project: required"]
    assert store.names() == ["t0.yaml", "t1.yaml", "t2.yaml", "t3.yaml", "t4.yaml"]


def test_unparseable_and_unreadable_sources_are_skipped() -> None:
    sources = [
        TemplateSource(identifier="bad_yaml.yaml", data=b"summary: '''\n"),
        TemplateSource(identifier="list.yaml", data=b"- one\n- two\n"),
        TemplateSource(identifier="empty.yaml", data=b""),
        TemplateSource(identifier="binary.yaml", data=b"\xff\xfe\x00"),
        TemplateSource(identifier="gone.yaml", data=None, error="could not be read: permission denied"),
        _source("good.yaml", _valid()),
    ]
    store = TemplateStore()
    report = load_templates(sources, store)

    assert report.loaded == ["good.yaml"]
    skipped = {entry.source: entry.errors for entry in report.skipped}
    assert set(skipped) == {"bad_yaml.yaml", "list.yaml", "empty.yaml", "binary.yaml", "gone.yaml"}
    assert skipped["bad_yaml.yaml"][0].startswith("source: YAML is not valid")
    assert "is not an object" in skipped["list.yaml"][0]
    assert skipped["gone.yaml"] == ["source: could not be read: permission denied"]


def test_explicit_name_overrides_identifier_and_duplicates_are_skipped() -> None:
    first = dict(_valid(), name="shared")
    second = dict(_valid("Other"), name="shared")
    store = TemplateStore()
    report = load_templates([_source("x.yaml", first), _source("y.yaml", second)], store)

    assert report.loaded == ["shared"]
    assert report.skipped[0].source == "y.yaml"
    assert report.skipped[0].errors == ["name: 'shared' is already defined"]
    assert store.find("shared").summary == "Take out trash"


def test_skip_reports_every_field() -> None:
    store = TemplateStore()
    report = load_templates(
        [_source("c.yaml", {"schedule": "nope", "project": "p", "summary": "s", "due_date": "99-99-99"})],
        store,
    )
    assert report.skipped[0].errors == [
        "schedule: 'nope' is not a valid cron string or recurrence rule",
        "due_date: '99-99-99' is not a valid date",
    ]
    assert "c.yaml" in report.summary_lines()[-1]


def test_yaml_dates_are_accepted() -> None:
    data = b"schedule: '0 7 * * 1-5'\nproject: myproj\nsummary: Trash\ndue_date: 2022-05-03\n"
    store = TemplateStore()
    load_templates([TemplateSource(identifier="d.yaml", data=data)], store)
    assert store.find("d.yaml").due_date == date(2022, 5, 3)


def test_parse_template_source_errors() -> None:
    with pytest.raises(ParseError, match="not an object"):
        parse_template_source(b"just a string\n")
    assert parse_template_source(b"project: x\n") == {"project": "x"}


def test_reload_replaces_store_contents() -> None:
    store = TemplateStore()
    reload_templates(store, [_source("a.yaml", _valid()), _source("b.yaml", _valid())])
    assert store.names() == ["a.yaml", "b.yaml"]

    report = reload_templates(store, [_source("b.yaml", _valid("Edited"))])
    assert report.loaded == ["b.yaml"]
    assert store.names() == ["b.yaml"]
    assert store.find("b.yaml").summary == "Edited"


def test_glob_sources(tmp_path: Path) -> None:
    nested = tmp_path / "templates" / "team"
    nested.mkdir(parents=True)
    (tmp_path / "templates" / "a.yaml").write_text("summary: a\n", encoding="utf-8")
    (nested / "b.yaml").write_text("summary: b\n", encoding="utf-8")
    (nested / "notes.txt").write_text("ignored\n", encoding="utf-8")

    sources = glob_sources(["templates/**/*.yaml", "templates/*.yaml"], base_dir=tmp_path)

    identifiers = [source.identifier for source in sources]
    assert identifiers == [
        str(tmp_path / "templates" / "a.yaml"),
        str(nested / "b.yaml"),
    ]
    assert sources[0].data == b"summary: a\n"


def test_glob_sources_no_matches(tmp_path: Path) -> None:
    assert glob_sources(str(tmp_path / "missing" / "*.yaml")) == []
