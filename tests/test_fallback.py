"""
Unit tests for the local fallback engine.
"""

import pytest

from resilient_ai.core.fallback import (
    LOCAL_ID_PREFIX,
    LocalFallbackEngine,
    harmony_colors,
    keyword_base_color,
)
from resilient_ai.core.tasks import RequestPayload, validate_payload


def _without_id(data):
    return {k: v for k, v in data.items() if k != "id"}


def _payload(task, **params):
    return validate_payload(RequestPayload(task, params))


class TestLocalFallbackEngine:
    """Test deterministic synthesis."""

    def setup_method(self):
        self.engine = LocalFallbackEngine()

    @pytest.mark.parametrize("payload", [
        _payload("recipe", ingredients=["chicken", "rice"]),
        _payload("recipe", ingredients=["dragonfruit"], cuisine="martian", difficulty="hard"),
        _payload("palette", keyword="ocean"),
        _payload("palette", keyword="quantum flux", harmony="triadic", color_count=7),
        _payload("code_review", code="print('hi')\nvar x = 1"),
    ])
    def test_deterministic_modulo_id(self, payload):
        first = self.engine.synthesize(payload)
        second = self.engine.synthesize(payload)
        assert _without_id(first) == _without_id(second)
        assert first["id"].startswith(LOCAL_ID_PREFIX)
        assert first["id"] != second["id"]

    def test_recipe_uses_template(self):
        data = self.engine.synthesize(
            _payload("recipe", ingredients=["chicken", "rice"], cuisine="korean", servings=4)
        )
        assert data["title"] == "Korean Chicken Stir-Fry"
        assert data["servings"] == 4
        assert data["instructions"]
        assert all("{" not in step for step in data["instructions"])
        assert "korean" in data["tags"]

    def test_recipe_unknown_ingredient_uses_default_branch(self):
        data = self.engine.synthesize(_payload("recipe", ingredients=["dragonfruit"]))
        assert data["title"] == "Dragonfruit Skillet"
        assert len(data["instructions"]) == 5

    def test_recipe_respects_cooking_time(self):
        data = self.engine.synthesize(
            _payload("recipe", ingredients=["potato"], cooking_time=15)
        )
        assert data["ready_in_minutes"] == 15

    def test_recipe_shape_matches_provider_results(self):
        data = self.engine.synthesize(_payload("recipe", ingredients=["egg"]))
        assert set(data) == {
            "id", "title", "description", "ingredients", "instructions",
            "ready_in_minutes", "servings", "difficulty", "tags", "nutrition",
        }

    @pytest.mark.parametrize("harmony", ["complementary", "analogous", "triadic", "monochromatic"])
    @pytest.mark.parametrize("count", [1, 2, 5, 10])
    def test_palette_colours_accessible(self, harmony, count):
        data = self.engine.synthesize(
            _payload("palette", keyword="sunset", harmony=harmony, color_count=count)
        )
        assert len(data["colors"]) == count
        for color in data["colors"]:
            assert color["contrast"] >= 4.5
            assert 0 <= color["h"] < 360

    def test_code_review_flags_rules(self):
        data = self.engine.synthesize(_payload(
            "code_review",
            code="try:\n    eval(x)\nexcept:\n    pass\n",
        ))
        types = {issue["type"] for issue in data["issues"]}
        assert "security" in types
        assert "bug" in types
        assert data["score"] == 80
        assert "Offline analysis" in data["summary"]

    def test_clean_code_scores_full(self):
        data = self.engine.synthesize(_payload("code_review", code="def add(a, b):\n    return a + b\n"))
        assert data["issues"] == []
        assert data["score"] == 100


class TestPaletteHelpers:
    """Test palette building blocks."""

    def test_known_keyword(self):
        assert keyword_base_color("Ocean") == (200, 70, 50)

    def test_keyword_inside_phrase(self):
        assert keyword_base_color("calm forest morning") == (120, 60, 40)

    def test_unknown_keywords_are_stable_and_distinct(self):
        assert keyword_base_color("quantum") == keyword_base_color("quantum")
        words = ["quantum", "velvet", "harbor", "ember"]
        assert len({keyword_base_color(w) for w in words}) > 1

    def test_complementary_alternates(self):
        colors = harmony_colors((10, 50, 50), "complementary", 2)
        assert [c[0] for c in colors] == [10, 190]

    def test_triadic_spacing(self):
        colors = harmony_colors((0, 50, 50), "triadic", 3)
        assert [c[0] for c in colors] == [0, 120, 240]
