"""
Tests for scene decomposition and scene editing.
"""
import asyncio
import json

import pytest

from storystudio.models import Scene, SceneEmotion
from storystudio.providers.exceptions import DecompositionError
from storystudio.services.scene_decomposer import (
    SceneDecomposer,
    clamp_duration,
    fit_scene_count,
    normalize_emotion,
    scene_count_bounds,
)
from storystudio.services.scene_editor import delete_scene, edit_scene, reorder_scenes
from tests.conftest import FakeTextGenerator


def scene_payload(count, **overrides):
    scenes = []
    for index in range(count):
        item = {
            "order": index + 1,
            "narration_text": f"Sentence number {index + 1}.",
            "visual_description": f"Picture {index + 1}",
            "emotion": "joyful",
            "duration_estimate_seconds": 15,
            "characters": ["Luna"],
        }
        item.update(overrides)
        scenes.append(item)
    return json.dumps({"scenes": scenes})


def make_scenes(count):
    return [Scene(order=i + 1, narration_text=f"Text {i + 1}", visual_description=f"V{i + 1}") for i in range(count)]


class TestSceneCountBounds:
    """Scene count tiers by story length."""

    @pytest.mark.parametrize("minutes,expected", [
        (3, (6, 8)),
        (4.9, (6, 8)),
        (5, (8, 12)),
        (7, (8, 12)),
        (10, (12, 15)),
        (20, (12, 15)),
    ])
    def test_tiers(self, minutes, expected):
        assert scene_count_bounds(minutes) == expected

    def test_explicit_target_wins(self):
        assert scene_count_bounds(3, target_count=10) == (10, 10)

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValueError):
            scene_count_bounds(0)


class TestNormalization:
    """Emotion snapping and duration clamping."""

    def test_exact_and_case_insensitive(self):
        assert normalize_emotion("Curious") == SceneEmotion.CURIOUS

    def test_alias(self):
        assert normalize_emotion("happy") == SceneEmotion.JOYFUL
        assert normalize_emotion("medo") == SceneEmotion.SCARED

    def test_compound_label(self):
        assert normalize_emotion("calm, sleepy") == SceneEmotion.CALM

    def test_near_miss(self):
        assert normalize_emotion("joyfull") == SceneEmotion.JOYFUL

    def test_unknown_rejected(self):
        assert normalize_emotion("bureaucratic") is None
        assert normalize_emotion(None) is None

    @pytest.mark.parametrize("raw,expected", [
        (5, 10),
        (45, 30),
        (22, 22),
        ("18 seconds", 18),
        (None, 15),
        ("soon", 15),
        (float("nan"), 15),
    ])
    def test_clamp_duration(self, raw, expected):
        assert clamp_duration(raw) == expected


class TestDecompose:
    """SceneDecomposer against a scripted text model."""

    def test_valid_response(self):
        """Seven well-formed scenes for a 3 minute story."""
        generator = FakeTextGenerator([scene_payload(7)])
        decomposer = SceneDecomposer(generator)

        scenes = asyncio.run(decomposer.decompose("A long story.", 3, character_names=["Luna"]))

        assert [s.order for s in scenes] == list(range(1, 8))
        assert all(s.emotion == SceneEmotion.JOYFUL for s in scenes)
        assert scenes[0].character_names == ["Luna"]
        assert "between 6 and 8" in generator.prompts[0]
        assert "Luna" in generator.prompts[0]

    def test_out_of_range_values_normalized(self):
        generator = FakeTextGenerator([scene_payload(6, emotion="bureaucratic", duration_estimate_seconds=90)])
        scenes = asyncio.run(SceneDecomposer(generator).decompose("Story.", 3))

        assert all(s.emotion == SceneEmotion.CALM for s in scenes)
        assert all(s.duration_estimate_seconds == 30 for s in scenes)

    def test_orders_follow_array_position(self):
        raw = json.loads(scene_payload(6))
        for item in raw["scenes"]:
            item["order"] = 99
        generator = FakeTextGenerator([json.dumps(raw)])

        scenes = asyncio.run(SceneDecomposer(generator).decompose("Story.", 3))
        assert [s.order for s in scenes] == [1, 2, 3, 4, 5, 6]
        assert scenes[2].narration_text == "Sentence number 3."

    def test_fenced_response_with_prose(self):
        generator = FakeTextGenerator(["Here you go:\n```json\n" + scene_payload(6) + "\n```\nEnjoy!"])
        scenes = asyncio.run(SceneDecomposer(generator).decompose("Story.", 3))
        assert len(scenes) == 6

    def test_too_many_scenes_are_merged(self):
        generator = FakeTextGenerator([scene_payload(10)])
        scenes = asyncio.run(SceneDecomposer(generator).decompose("Story.", 3))

        assert len(scenes) == 8
        assert [s.order for s in scenes] == list(range(1, 9))
        text = " ".join(s.narration_text for s in scenes)
        for index in range(1, 11):
            assert f"Sentence number {index}." in text

    def test_too_few_scenes_rejected(self):
        generator = FakeTextGenerator([scene_payload(3)])
        with pytest.raises(DecompositionError):
            asyncio.run(SceneDecomposer(generator).decompose("Story.", 3))

    def test_unparseable_response(self):
        generator = FakeTextGenerator(["Sorry, I can't do that."])
        with pytest.raises(DecompositionError):
            asyncio.run(SceneDecomposer(generator).decompose("Story.", 3))

    def test_empty_narration_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(SceneDecomposer(FakeTextGenerator()).decompose("  ", 3))

    def test_fit_scene_count_passthrough(self):
        scenes = make_scenes(7)
        assert len(fit_scene_count(scenes, (6, 8))) == 7


class TestSceneEditor:
    """Reorder, delete and edit keep orders contiguous."""

    def test_reorder(self):
        scenes = reorder_scenes(make_scenes(4), [3, 1, 4, 2])
        assert [s.order for s in scenes] == [1, 2, 3, 4]
        assert [s.narration_text for s in scenes] == ["Text 3", "Text 1", "Text 4", "Text 2"]

    def test_reorder_requires_permutation(self):
        with pytest.raises(ValueError):
            reorder_scenes(make_scenes(3), [1, 1, 2])

    def test_delete_renumbers(self):
        scenes = delete_scene(make_scenes(4), 2)
        assert [s.order for s in scenes] == [1, 2, 3]
        assert [s.narration_text for s in scenes] == ["Text 1", "Text 3", "Text 4"]

    def test_delete_unknown(self):
        with pytest.raises(KeyError):
            delete_scene(make_scenes(2), 5)

    def test_edit_normalizes_values(self):
        scenes = edit_scene(make_scenes(2), 2, {"emotion": "happy", "duration_estimate_seconds": 3})
        assert scenes[1].emotion == SceneEmotion.JOYFUL
        assert scenes[1].duration_estimate_seconds == 10

    def test_edit_rejects_unknown_field(self):
        with pytest.raises(ValueError):
            edit_scene(make_scenes(2), 1, {"image_url": "x.png"})

    def test_edit_rejects_unknown_emotion(self):
        with pytest.raises(ValueError):
            edit_scene(make_scenes(2), 1, {"emotion": "bureaucratic"})

    def test_visual_edit_clears_built_prompt(self):
        scenes = make_scenes(2)
        for scene in scenes:
            scene.generated_prompt = "old prompt"

        scenes = edit_scene(scenes, 1, {"visual_description": "A snowy mountain at dawn"})
        assert scenes[0].generated_prompt is None
        assert scenes[1].generated_prompt == "old prompt"

        scenes = edit_scene(scenes, 2, {"narration_text": "New words."})
        assert scenes[1].generated_prompt == "old prompt"

        scenes = edit_scene(scenes, 2, {"character_names": ["Luna"]})
        assert scenes[1].generated_prompt is None
