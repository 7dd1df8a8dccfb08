from datetime import datetime

import pytest

from journeygraph.contracts import StepMapEntry, dump_step_map, parse_step_map, to_step_map
from journeygraph.db.models import JourneyStep, JourneyStepChild
from journeygraph.errors import StepMapValidationError


def test_parse_step_map_applies_defaults():
    step_map = parse_step_map(
        {
            "start": {"type": "entrance", "children": [{"external_id": "wait"}]},
            "wait": {"type": "delay", "x": 10, "y": None, "data": None},
        }
    )
    start = step_map["start"]
    assert isinstance(start, StepMapEntry)
    assert start.x == 0 and start.y == 0
    assert start.data == {}
    assert start.children[0].external_id == "wait"
    assert start.children[0].data == {}

    wait = step_map["wait"]
    assert wait.x == 10
    assert wait.y == 0
    assert wait.data == {}
    assert wait.children == []


def test_parse_step_map_keeps_unknown_step_types():
    step_map = parse_step_map({"x": {"type": "webhook", "data": {"url": "https://e.x"}}})
    assert step_map["x"].type == "webhook"
    assert step_map["x"].data == {"url": "https://e.x"}


def test_parse_step_map_normalises_payloads_to_json():
    step_map = parse_step_map(
        {
            "a": {
                "type": "action",
                "data": {"ids": (1, 2), "labels": {1: "one"}},
                "children": [{"external_id": "b", "data": {"pair": ("x", "y")}}],
            }
        }
    )
    assert step_map["a"].data == {"ids": [1, 2], "labels": {"1": "one"}}
    assert step_map["a"].children[0].data == {"pair": ["x", "y"]}


@pytest.mark.parametrize(
    "raw",
    [
        {"a": {"x": 1}},
        {"a": {"type": ""}},
        {"a": {"type": "   "}},
        {"a": "entrance"},
        {"a": {"type": "action", "children": [{"data": {}}]}},
        {"": {"type": "action"}},
        {"a": {"type": "action", "data": {"at": datetime(2024, 5, 1)}}},
        {"a": {"type": "action", "data": {"ratio": float("nan")}}},
        {
            "a": {
                "type": "action",
                "children": [{"external_id": "b", "data": {"at": datetime(2024, 5, 1)}}],
            }
        },
    ],
)
def test_parse_step_map_rejects_malformed_entries(raw):
    with pytest.raises(StepMapValidationError) as info:
        parse_step_map(raw)
    assert info.value.status_code == 400


def test_parse_step_map_reports_error_locations():
    with pytest.raises(StepMapValidationError) as info:
        parse_step_map({"a": {"type": "action"}, "b": {}})
    assert any(error["loc"][0] == "b" for error in info.value.errors)


def test_parse_step_map_rejects_non_mapping():
    with pytest.raises(StepMapValidationError):
        parse_step_map([{"type": "action"}])


def test_to_step_map_orders_children_and_drops_foreign_edges():
    steps = [
        JourneyStep(id=1, journey_id=1, type="entrance", external_id="a", data={}),
        JourneyStep(id=2, journey_id=1, type="action", external_id="b", data={"t": 1}, x=5, y=6),
        JourneyStep(id=3, journey_id=1, type="delay", external_id="c", data={}),
    ]
    children = [
        JourneyStepChild(id=11, step_id=1, child_id=3, data={"branch": "no"}),
        JourneyStepChild(id=10, step_id=1, child_id=2, data={"branch": "yes"}),
        JourneyStepChild(id=12, step_id=2, child_id=99, data={}),
    ]

    step_map = to_step_map(steps, children)

    assert list(step_map) == ["a", "b", "c"]
    assert [c.external_id for c in step_map["a"].children] == ["b", "c"]
    assert step_map["a"].children[0].data == {"branch": "yes"}
    assert step_map["b"].children == []
    assert step_map["b"].x == 5 and step_map["b"].y == 6
    assert dump_step_map(step_map)["b"] == {
        "type": "action",
        "x": 5.0,
        "y": 6.0,
        "data": {"t": 1},
        "children": [],
    }
