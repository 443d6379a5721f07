"""Tests for subtask.values — normalization into the canonical tree."""

from __future__ import annotations

import dataclasses
import datetime
import decimal
import enum

from pydantic import BaseModel

from subtask.values import is_sequence, to_plain


class Colour(enum.Enum):
    RED = "red"


@dataclasses.dataclass
class Point:
    x: int
    y: int


class Owner(BaseModel):
    name: str
    points: list[Point] = []


class Bag:
    def __init__(self):
        self.visible = (1, 2)
        self._hidden = "no"


def test_scalars_unchanged():
    for value in ("a", 1, 2.5, True, None):
        assert to_plain(value) == value


def test_mixed_shapes_fold_into_dicts_and_lists():
    value = {
        "owner": Owner(name="ada", points=[Point(1, 2)]),
        "tags": ("a", "b"),
        "colour": Colour.RED,
        "bag": Bag(),
        "when": datetime.date(2024, 1, 2),
        "price": decimal.Decimal("1.50"),
    }
    assert to_plain(value) == {
        "owner": {"name": "ada", "points": [{"x": 1, "y": 2}]},
        "tags": ["a", "b"],
        "colour": "red",
        "bag": {"visible": [1, 2]},
        "when": "2024-01-02",
        "price": 1.5,
    }


def test_generators_and_sets_become_lists():
    assert to_plain(x * 2 for x in range(3)) == [0, 2, 4]
    assert to_plain(frozenset({"only"})) == ["only"]


def test_mapping_keys_become_strings():
    assert to_plain({1: {2: "x"}}) == {"1": {"2": "x"}}


def test_is_sequence():
    assert is_sequence([1])
    assert is_sequence((1,))
    assert not is_sequence("abc")
    assert not is_sequence({"a": 1})
    assert not is_sequence(Owner(name="x"))
