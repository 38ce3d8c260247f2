"""Unit tests for deterministic plan cache keys and stable JSON helpers."""
from __future__ import annotations

import json
import math

import pytest

from conductor.cache.key_policy import dumps_json, make_cache_key, make_plan_cache_key
from conductor.errors import ValidationError


def _plan_key(parameters: dict, constraints: dict | None = None, level: str = "standard") -> str:
    return make_plan_cache_key("launch", parameters, constraints or {}, level, version="v1")


def test_same_request_produces_identical_plan_key() -> None:
    parameters = {"region": "eu", "budget": 1500, "channels": ["email", "social"]}

    assert _plan_key(parameters) == _plan_key(dict(parameters))
    assert _plan_key(parameters).startswith("plan:v1:")


def test_parameter_order_does_not_affect_plan_key() -> None:
    p1 = {"b": 2, "a": 1, "nested": {"y": 2, "x": 1}}
    p2 = {"nested": {"x": 1, "y": 2}, "a": 1, "b": 2}

    assert _plan_key(p1) == _plan_key(p2)


def test_any_request_component_changes_the_plan_key() -> None:
    base = _plan_key({"region": "eu"})

    assert _plan_key({"region": "us"}) != base
    assert _plan_key({"region": "eu"}, {"max_duration_ms": 1000}) != base
    assert _plan_key({"region": "eu"}, level="aggressive") != base
    assert make_plan_cache_key("other", {"region": "eu"}, {}, "standard", version="v1") != base
    assert make_plan_cache_key("launch", {"region": "eu"}, {}, "standard", version="v2") != base


def test_int_and_float_parameters_stay_distinct() -> None:
    assert _plan_key({"budget": 1}) != _plan_key({"budget": 1.0})


def test_hashing_behavior_when_key_exceeds_threshold() -> None:
    key = make_cache_key("plan", parts={"text": "x" * 1000}, max_key_length=64)
    assert key.startswith("plan:v1:h:")
    assert len(key.split(":")[-1]) == 64


def test_long_parameters_hash_the_plan_key() -> None:
    key = _plan_key({"brief": "y" * 500})
    assert key.startswith("plan:v1:h:")


def test_dumps_json_stability_for_nested_objects() -> None:
    obj1 = {"z": [3, 2, 1], "a": {"b": 2, "a": 1}}
    obj2 = {"a": {"a": 1, "b": 2}, "z": [3, 2, 1]}
    s1 = dumps_json(obj1)
    s2 = dumps_json(obj2)
    assert s1 == s2
    assert json.loads(s1) == {"a": {"a": 1, "b": 2}, "z": [3, 2, 1]}


def test_ascii_only_output_for_non_ascii_input() -> None:
    text = dumps_json({"word": "café"})
    assert "café" not in text
    assert "\\u00e9" in text


def test_non_finite_float_values_rejected() -> None:
    for value in (math.nan, math.inf, -math.inf):
        with pytest.raises(ValueError):
            make_cache_key("x", parts={"v": value})


def test_uncacheable_parameters_are_a_validation_error() -> None:
    with pytest.raises(ValidationError, match="not cacheable"):
        _plan_key({"budget": math.nan})
    with pytest.raises(ValidationError):
        _plan_key({"when": object()})
    with pytest.raises(ValidationError):
        _plan_key({"nested": {1: "non-string key"}})
