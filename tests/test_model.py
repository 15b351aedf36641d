"""
Tests for project validation and the resource model.
"""

import pytest

from workon.constants import ResourceKind
from workon.errors import ValidationError
from workon.model import (
    ALWAYS_NEW,
    AbsoluteNamed,
    AbsoluteNumeric,
    MatchField,
    Project,
    Relative,
    ReusePolicy,
    format_placement,
    parse_reuse,
    parse_tag_spec,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0, Relative(0)),
        (2, Relative(2)),
        (-1, Relative(-1)),
        ("0", Relative(0)),
        ("+2", Relative(2)),
        ("-1", Relative(-1)),
        ("3", AbsoluteNumeric(3)),
        ("docs", AbsoluteNamed("docs")),
        ("  chat ", AbsoluteNamed("chat")),
    ],
)
def test_parse_tag_spec(raw, expected):
    assert parse_tag_spec(raw) == expected


@pytest.mark.parametrize("raw", [True, None, 1.5, "", "   "])
def test_parse_tag_spec_rejects(raw):
    with pytest.raises(ValueError):
        parse_tag_spec(raw)


def test_format_placement():
    assert format_placement(Relative(0)) == "0"
    assert format_placement(Relative(2)) == "+2"
    assert format_placement(Relative(-1)) == "-1"
    assert format_placement(AbsoluteNumeric(3)) == '"3"'
    assert format_placement(AbsoluteNamed("docs")) == "docs"


def test_parse_reuse_variants():
    assert parse_reuse(None) is ALWAYS_NEW
    assert parse_reuse(False).always_new
    assert parse_reuse(True) == ReusePolicy(MatchField.CWD)
    assert parse_reuse("title") == ReusePolicy(MatchField.TITLE)
    assert parse_reuse({"match": "class", "value": "Firefox"}) == ReusePolicy(
        MatchField.CLASS, "Firefox"
    )
    assert parse_reuse(True).describe() == "reuse-if-match(cwd)"
    assert ALWAYS_NEW.describe() == "always-new"


def test_parse_reuse_rejects_unknown_keys():
    with pytest.raises(ValueError, match="unknown reuse keys"):
        parse_reuse({"match": "title", "pattern": "x"})


def test_project_from_list_and_mapping_keep_order():
    as_list = Project.from_dict(
        {
            "name": "p",
            "resources": [
                {"id": "b", "cmd": "x"},
                {"id": "a", "cmd": "y"},
            ],
        }
    )
    as_mapping = Project.from_dict(
        {"name": "p", "resources": {"b": {"cmd": "x"}, "a": {"cmd": "y"}}}
    )
    assert [r.id for r in as_list.resources] == ["b", "a"]
    assert [r.id for r in as_mapping.resources] == ["b", "a"]


def test_resource_defaults_and_aliases():
    project = Project.from_dict(
        {
            "name": "p",
            "resources": [
                {
                    "id": "web",
                    "type": "browser",
                    "command": "firefox",
                    "urls": ["https://example.org"],
                    "env": {"MOZ_ENABLE_WAYLAND": "0"},
                }
            ],
        }
    )
    spec = project.resource("web")
    assert spec.kind is ResourceKind.BROWSER
    assert spec.command == "firefox"
    assert spec.placement == Relative(0)
    assert spec.reuse is ALWAYS_NEW
    assert spec.urls == ("https://example.org",)
    assert spec.env == (("MOZ_ENABLE_WAYLAND", "0"),)
    assert project.resource("missing") is None


def test_unparsable_command_rejected():
    with pytest.raises(ValidationError, match="cmd cannot be parsed"):
        Project.from_dict(
            {"name": "p", "resources": [{"id": "v", "cmd": "vim \"unterminated", "reuse": "class"}]}
        )


def test_validation_collects_every_problem():
    with pytest.raises(ValidationError) as excinfo:
        Project.from_dict(
            {
                "name": "bad",
                "colour": "blue",
                "resources": [
                    {"id": "a", "cmd": ""},
                    {"id": "b", "cmd": "x", "kind": "robot"},
                    {"id": "b", "cmd": "y"},
                ],
                "hooks": {"pre_start": "echo hi"},
            }
        )
    problems = excinfo.value.problems
    assert any("unknown project keys: colour" in p for p in problems)
    assert any("cmd field is required" in p for p in problems)
    assert any("unknown kind 'robot'" in p for p in problems)
    assert any("unknown hook type: pre_start" in p for p in problems)
    assert len(problems) >= 4


def test_duplicate_ids_rejected():
    with pytest.raises(ValidationError, match="duplicate resource id 'a'"):
        Project.from_dict(
            {"name": "p", "resources": [{"id": "a", "cmd": "x"}, {"id": "a", "cmd": "y"}]}
        )


def test_empty_resources_rejected():
    with pytest.raises(ValidationError, match="at least one resource"):
        Project.from_dict({"name": "p", "resources": []})


def test_missing_name_rejected():
    with pytest.raises(ValidationError, match="name field is required"):
        Project.from_dict({"resources": [{"id": "a", "cmd": "x"}]})


def test_unknown_resource_key_rejected():
    with pytest.raises(ValidationError, match="unknown keys workdir"):
        Project.from_dict(
            {"name": "p", "resources": [{"id": "a", "cmd": "x", "workdir": "/tmp"}]}
        )


def test_layout_must_reference_known_resources():
    with pytest.raises(ValidationError, match="unknown resource 'ghost'"):
        Project.from_dict(
            {
                "name": "p",
                "resources": [{"id": "a", "cmd": "x"}],
                "layouts": {"wide": {"ghost": 2}},
            }
        )


def test_unknown_layout_requested():
    project = Project.from_dict(
        {"name": "p", "resources": [{"id": "a", "cmd": "x"}], "layouts": {"wide": {"a": "2"}}}
    )
    assert project.placements("wide") == {"a": AbsoluteNumeric(2)}
    with pytest.raises(ValidationError, match="unknown layout 'narrow'"):
        project.placements("narrow")


def test_hooks_are_parsed():
    project = Project.from_dict(
        {
            "name": "p",
            "resources": [{"id": "a", "cmd": "x"}],
            "hooks": {"start": "make up", "stop": "make down"},
        }
    )
    assert project.start_hook == "make up"
    assert project.stop_hook == "make down"
