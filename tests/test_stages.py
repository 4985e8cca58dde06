"""Tests for stage parsing, ordering and the default pipeline."""

import pytest

from gltf_optimizer.errors import ConfigurationError
from gltf_optimizer.stages import (
    DEFAULT_WELD_LADDER,
    StageDescriptor,
    StageKind,
    default_stages,
    order_violations,
    parse_stages,
)


class TestStageKind:
    def test_parse_normalizes(self):
        assert StageKind.parse("Generate_Tangents") == StageKind.GENERATE_TANGENTS
        assert StageKind.parse(StageKind.WELD) is StageKind.WELD

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError, match="Unknown stage kind"):
            StageKind.parse("explode")


class TestStageDescriptor:
    def test_string_entry(self):
        stage = StageDescriptor.parse("prune")
        assert stage.name == StageKind.PRUNE
        assert dict(stage.params) == {}

    def test_name_params_entry(self):
        stage = StageDescriptor.parse({"name": "simplify", "params": {"ratio": 0.5}})
        assert stage.name == StageKind.SIMPLIFY
        assert stage.params["ratio"] == 0.5

    def test_single_key_entry(self):
        stage = StageDescriptor.parse({"weld": {"tolerance": 0.001}})
        assert stage.name == StageKind.WELD
        assert stage.params == {"tolerance": 0.001}

    def test_params_are_read_only(self):
        stage = StageDescriptor.parse({"weld": {"tolerance": 0.001}})
        with pytest.raises(TypeError):
            stage.params["tolerance"] = 1

    @pytest.mark.parametrize(
        "entry",
        [42, {"name": "weld", "extra": 1}, {"weld": [1, 2]}, {"a": {}, "b": {}}],
    )
    def test_invalid_entries(self, entry):
        with pytest.raises(ConfigurationError):
            StageDescriptor.parse(entry)

    def test_describe(self):
        assert StageDescriptor(StageKind.PRUNE).describe() == "prune"
        assert StageDescriptor(StageKind.WELD, {"tolerance": 0.5}).describe() == "weld(tolerance=0.5)"

    def test_parse_stages_requires_list(self):
        with pytest.raises(ConfigurationError):
            parse_stages("prune")


class TestOrdering:
    def test_canonical_order_has_no_violations(self):
        assert order_violations(default_stages()) == []

    def test_out_of_order_is_reported(self):
        stages = parse_stages(["simplify", "prune"])
        ((earlier, later),) = order_violations(stages)
        assert earlier.name == StageKind.SIMPLIFY
        assert later.name == StageKind.PRUNE

    def test_weld_may_repeat_after_simplify(self):
        stages = parse_stages(["weld", "simplify", "weld"])
        assert order_violations(stages) == []


class TestDefaultStages:
    def test_shape(self):
        kinds = [stage.name for stage in default_stages()]
        assert kinds == [
            StageKind.PRUNE,
            StageKind.DEDUP,
            StageKind.WELD,
            StageKind.SIMPLIFY,
            StageKind.WELD,
            StageKind.WELD,
            StageKind.NORMALS,
            StageKind.TEXTURE_COMPRESS,
        ]

    def test_weld_ladder_is_configurable(self):
        stages = default_stages(weld_ladder=[(0.01, 0.5)])
        welds = [stage for stage in stages if stage.name == StageKind.WELD]
        assert len(welds) == 1
        assert welds[0].params == {"tolerance": 0.01, "tolerance_normal": 0.5}

    def test_ladder_tolerances(self):
        welds = [stage for stage in default_stages() if stage.name == StageKind.WELD]
        assert [stage.params["tolerance"] for stage in welds] == [t for t, _ in DEFAULT_WELD_LADDER]

    def test_empty_ladder_rejected(self):
        with pytest.raises(ConfigurationError):
            default_stages(weld_ladder=[])
