"""
Scene list editing. Every operation returns scenes numbered 1..N.
"""
from typing import Dict, List, Optional, Sequence

from storystudio.models import Scene, SceneEmotion
from storystudio.services.scene_decomposer import clamp_duration, normalize_emotion, renumber

EDITABLE_FIELDS = ("narration_text", "visual_description", "emotion", "duration_estimate_seconds", "character_names", "image_prompt")

# Changing any of these makes the last built image prompt stale.
PROMPT_INPUTS = ("visual_description", "emotion", "character_names")


def reorder_scenes(scenes: List[Scene], new_order: Sequence[int]) -> List[Scene]:
    """
    Rearrange scenes.

    Args:
        scenes: current scene list
        new_order: current order numbers listed in their new sequence

    Raises:
        ValueError: new_order is not a permutation of the current orders
    """
    by_order: Dict[int, Scene] = {scene.order: scene for scene in scenes}
    if sorted(new_order) != sorted(by_order) or len(new_order) != len(scenes):
        raise ValueError(f"new order must be a permutation of {sorted(by_order)}")
    return renumber([by_order[order] for order in new_order])


def delete_scene(scenes: List[Scene], order: int) -> List[Scene]:
    remaining = [scene for scene in sorted(scenes, key=lambda s: s.order) if scene.order != order]
    if len(remaining) == len(scenes):
        raise KeyError(order)
    return renumber(remaining)


def edit_scene(scenes: List[Scene], order: int, changes: Dict[str, object]) -> List[Scene]:
    """Apply text edits to one scene. Artifacts (image/audio) are left untouched."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields not editable: {sorted(unknown)}")

    target: Optional[Scene] = next((s for s in scenes if s.order == order), None)
    if target is None:
        raise KeyError(order)

    for name, value in changes.items():
        if name == "emotion":
            emotion = normalize_emotion(value)
            if emotion is None:
                raise ValueError(f"Unknown emotion: {value!r}; expected one of {[e.value for e in SceneEmotion]}")
            value = emotion
        elif name == "duration_estimate_seconds":
            value = clamp_duration(value)
        elif name == "character_names":
            value = [str(n).strip() for n in (value or []) if str(n).strip()]
        setattr(target, name, value)

    if any(name in changes for name in PROMPT_INPUTS):
        target.generated_prompt = None

    return renumber(sorted(scenes, key=lambda s: s.order))
