"""
Unit tests for LabelTable loading and AffineTransform math.
"""
import json

import pytest

from visual_clutter.core.events import BoundingBox
from visual_clutter.core.geometry import AffineTransform
from visual_clutter.core.labels import LabelTable
from visual_clutter.utils.failures import ConfigError


class TestLabelTable:
    """Tests for LabelTable"""

    def test_sequence_behaviour(self):
        labels = LabelTable(["floor", " table ", "clutter"])
        assert len(labels) == 3
        assert labels[1] == "table"
        assert list(labels) == ["floor", "table", "clutter"]
        assert labels == ["floor", "table", "clutter"]

    @pytest.mark.parametrize("names", [[], ["ok", ""], ["ok", 3]])
    def test_rejects_invalid_names(self, names):
        with pytest.raises(ConfigError):
            LabelTable(names)

    def test_from_text_file(self, tmp_path):
        path = tmp_path / "labels.txt"
        path.write_text("# classes\nfloor\n\ntable\n")
        assert LabelTable.from_file(path) == ["floor", "table"]

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "labels.json"
        path.write_text(json.dumps(["floor", "table"]))
        assert LabelTable.from_file(path) == ["floor", "table"]

    def test_json_file_must_hold_a_list(self, tmp_path):
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"0": "floor"}))
        with pytest.raises(ConfigError):
            LabelTable.from_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            LabelTable.from_file(tmp_path / "absent.txt")

    def test_from_config(self, tmp_path):
        assert LabelTable.from_config({"labels": ["a", "b"]}) == ["a", "b"]
        assert LabelTable.from_config({"labels": [], "labels_file": None}) is None

        path = tmp_path / "labels.txt"
        path.write_text("x\ny\n")
        assert LabelTable.from_config({"labels": ["a"], "labels_file": str(path)}) == ["x", "y"]


class TestAffineTransform:
    """Tests for AffineTransform"""

    def test_identity(self):
        assert AffineTransform.identity().apply_point(3, 4) == (3, 4)

    def test_concat_applies_self_first(self):
        transform = AffineTransform.scale(2, 3).concat(AffineTransform.translate(1, 1))
        assert transform.apply_point(1, 1) == (3, 4)

        reverse = AffineTransform.translate(1, 1).concat(AffineTransform.scale(2, 3))
        assert reverse.apply_point(1, 1) == (4, 6)

    def test_to_display(self):
        box = AffineTransform.to_display(640, 480).apply_rect(BoundingBox(0.5, 0.25, 0.25, 0.5))
        assert box == BoundingBox(320, 120, 160, 240)

    def test_apply_rect_normalises_flipped_axes(self):
        box = AffineTransform.scale(1, -1).apply_rect(BoundingBox(0, 0, 2, 1))
        assert box == BoundingBox(0, -1, 2, 1)
