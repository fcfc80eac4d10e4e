"""
Prompt construction for scene illustrations and character reference sheets.

Image models follow long prompts poorly, so descriptor text and the scene
description each get their own budget and the whole prompt a total budget.
"""
import re
from typing import Iterable, Optional

from storystudio.models import CharacterDescriptor, Scene

VISUAL_STYLES = {
    "pixar_3d": "3D animated movie style, soft global illumination, expressive rounded characters",
    "watercolor": "delicate watercolor illustration, soft washes, paper texture, gentle pastel palette",
    "retro_cartoon": "retro 1950s cartoon style, bold outlines, flat saturated colors",
    "anime": "Japanese anime style, clean line art, vibrant cel shading",
    "pencil_sketch": "hand-drawn pencil sketch, soft graphite shading, light cross-hatching",
    "classic_storybook": "classic children's book illustration, warm gouache colors, detailed and cozy",
}


def style_fragment(visual_style: Optional[str]) -> str:
    if not visual_style:
        return VISUAL_STYLES["classic_storybook"]
    return VISUAL_STYLES.get(visual_style, visual_style)


def compact_text(text: str, limit: int) -> str:
    """Collapse whitespace and cut at a word boundary with an ellipsis."""
    text = re.sub(r"\s+", " ", text or "").strip()
    if len(text) <= limit:
        return text
    cut = text[:max(0, limit - 3)]
    if " " in cut:
        cut = cut[:cut.rfind(" ")]
    return cut.rstrip(" ,.;:") + "..."


def describe_character(descriptor: CharacterDescriptor, limit: int) -> str:
    if descriptor.full_description:
        body = descriptor.full_description
    else:
        traits = [descriptor.species, descriptor.main_colors, descriptor.clothing, descriptor.accessories]
        body = ", ".join(t for t in traits if t)
    return compact_text(f"{descriptor.name}: {body}" if body else descriptor.name, limit)


def build_scene_prompt(
    scene: Scene,
    characters: Iterable[CharacterDescriptor],
    visual_style: Optional[str],
    max_chars: int = 800,
    descriptor_max_chars: int = 160,
    scene_max_chars: int = 240,
) -> str:
    """
    Style, character traits, scene description, mood, in that order.

    Character traits go ahead of the free description and the description
    only gets what is left of the total budget, so a long description can
    never push the traits out of the prompt.
    """
    head = [f"{style_fragment(visual_style)}."]
    described = [describe_character(c, descriptor_max_chars) for c in characters]
    if described:
        head.append("Characters: " + " | ".join(described) + ".")
    tail = [f"Mood: {scene.emotion.value}.", "Wide 16:9 composition, no text."]

    fixed = len(" ".join(head + tail)) + 1
    budget = min(scene_max_chars, max_chars - fixed)
    description = compact_text(scene.visual_description, budget) if budget > 3 else ""

    return compact_text(" ".join(line for line in head + [description] + tail if line), max_chars)


def build_reference_prompt(descriptor: CharacterDescriptor, visual_style: Optional[str], max_chars: int = 800) -> str:
    traits = describe_character(descriptor, max_chars // 2)
    return compact_text(
        f"Character reference sheet: {traits}. Full body, front view, neutral pose, "
        f"plain white background, single character only. {style_fragment(visual_style)}.",
        max_chars,
    )


def build_cover_prompt(
    title: str,
    characters: Iterable[CharacterDescriptor],
    visual_style: Optional[str],
    max_chars: int = 800,
    descriptor_max_chars: int = 160,
) -> str:
    described = [describe_character(c, descriptor_max_chars) for c in characters]
    if not described:
        return compact_text(
            f'Title card: "{title}". Large, readable title lettering, magical and vibrant. '
            f"{style_fragment(visual_style)}.",
            max_chars,
        )
    return compact_text(
        f'Title card for "{title}". Characters: {" | ".join(described)}. '
        f"They pose happily next to the title text, cinematic lighting, wide 16:9 poster layout. "
        f"{style_fragment(visual_style)}.",
        max_chars,
    )
