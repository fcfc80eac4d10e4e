"""
Scene Decomposer - splits narration text into an ordered scene list.

The text model is asked for a JSON scene list; its answer goes through the
defensive parser and every scene is normalized (emotion vocabulary,
duration clamp, contiguous order) before it is returned.
"""
import difflib
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from storystudio.models import Scene, SceneEmotion
from storystudio.providers.exceptions import DecompositionError, ParseError
from storystudio.providers.text.base import TextGenerator
from storystudio.services.json_repair import parse_model_json

logger = logging.getLogger(__name__)

MIN_SCENE_SECONDS = 10
MAX_SCENE_SECONDS = 30
DEFAULT_SCENE_SECONDS = 15
DEFAULT_EMOTION = SceneEmotion.CALM

EMOTION_ALIASES: Dict[str, SceneEmotion] = {
    "happy": SceneEmotion.JOYFUL,
    "joy": SceneEmotion.JOYFUL,
    "cheerful": SceneEmotion.JOYFUL,
    "excited": SceneEmotion.JOYFUL,
    "alegre": SceneEmotion.JOYFUL,
    "feliz": SceneEmotion.JOYFUL,
    "peaceful": SceneEmotion.CALM,
    "serene": SceneEmotion.CALM,
    "relaxed": SceneEmotion.CALM,
    "calma": SceneEmotion.CALM,
    "calmo": SceneEmotion.CALM,
    "adventure": SceneEmotion.ADVENTUROUS,
    "brave": SceneEmotion.ADVENTUROUS,
    "aventura": SceneEmotion.ADVENTUROUS,
    "surprise": SceneEmotion.SURPRISED,
    "amazed": SceneEmotion.SURPRISED,
    "astonished": SceneEmotion.SURPRISED,
    "surpresa": SceneEmotion.SURPRISED,
    "fear": SceneEmotion.SCARED,
    "afraid": SceneEmotion.SCARED,
    "frightened": SceneEmotion.SCARED,
    "medo": SceneEmotion.SCARED,
    "sadness": SceneEmotion.SAD,
    "unhappy": SceneEmotion.SAD,
    "melancholic": SceneEmotion.SAD,
    "tristeza": SceneEmotion.SAD,
    "triste": SceneEmotion.SAD,
    "curiosity": SceneEmotion.CURIOUS,
    "wonder": SceneEmotion.CURIOUS,
    "inquisitive": SceneEmotion.CURIOUS,
    "curiosidade": SceneEmotion.CURIOUS,
}

_EMOTION_LOOKUP: Dict[str, SceneEmotion] = {e.value: e for e in SceneEmotion}
_EMOTION_LOOKUP.update(EMOTION_ALIASES)


def scene_count_bounds(duration_minutes: float, target_count: Optional[int] = None) -> Tuple[int, int]:
    """Inclusive (min, max) scene count for a story length."""
    if target_count:
        if target_count < 1:
            raise ValueError("target scene count must be positive")
        return target_count, target_count
    if duration_minutes <= 0:
        raise ValueError("target duration must be positive")
    if duration_minutes < 5:
        return 6, 8
    if duration_minutes < 10:
        return 8, 12
    return 12, 15


def normalize_emotion(raw: Any) -> Optional[SceneEmotion]:
    """
    Snap a raw emotion label to the vocabulary.

    Returns None when nothing is close enough. The caller decides what a
    rejected label becomes.
    """
    if isinstance(raw, SceneEmotion):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None

    word = raw.strip().lower()
    if word in _EMOTION_LOOKUP:
        return _EMOTION_LOOKUP[word]

    # "happy and excited" / "calm, sleepy"
    for token in re.split(r"[\s,/;|-]+", word):
        if token in _EMOTION_LOOKUP:
            return _EMOTION_LOOKUP[token]

    close = difflib.get_close_matches(word, list(_EMOTION_LOOKUP), n=1, cutoff=0.75)
    if close:
        return _EMOTION_LOOKUP[close[0]]
    return None


def clamp_duration(raw: Any) -> int:
    if isinstance(raw, str):
        match = re.search(r"\d+(?:\.\d+)?", raw)
        raw = match.group(0) if match else None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_SCENE_SECONDS
    if value != value:  # NaN
        return DEFAULT_SCENE_SECONDS
    return int(round(min(MAX_SCENE_SECONDS, max(MIN_SCENE_SECONDS, value))))


def _first(item: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in item and item[key] not in (None, ""):
            return item[key]
    return default


def _character_list(raw: Any) -> List[str]:
    if isinstance(raw, str):
        raw = re.split(r"[,;]", raw)
    if not isinstance(raw, list):
        return []
    names: List[str] = []
    for name in raw:
        if isinstance(name, dict):
            name = name.get("name")
        if isinstance(name, str) and name.strip() and name.strip() not in names:
            names.append(name.strip())
    return names


def renumber(scenes: List[Scene]) -> List[Scene]:
    for position, scene in enumerate(scenes, start=1):
        scene.order = position
    return scenes


def merge_scenes(first: Scene, second: Scene) -> Scene:
    """Fold `second` into `first` without losing narration."""
    names = list(first.character_names)
    names.extend(n for n in second.character_names if n not in names)
    return Scene(
        order=first.order,
        narration_text=f"{first.narration_text} {second.narration_text}".strip(),
        visual_description=f"{first.visual_description} Then, {second.visual_description}".strip(),
        emotion=first.emotion,
        duration_estimate_seconds=clamp_duration(
            first.duration_estimate_seconds + second.duration_estimate_seconds
        ),
        character_names=names,
    )


def fit_scene_count(scenes: List[Scene], bounds: Tuple[int, int]) -> List[Scene]:
    """
    Merge the shortest adjacent pair until the list fits under the maximum.

    Raises DecompositionError when there are fewer scenes than the minimum;
    splitting narration would mean inventing visual descriptions.
    """
    minimum, maximum = bounds
    scenes = list(scenes)

    while len(scenes) > maximum:
        pair = min(
            range(len(scenes) - 1),
            key=lambda i: len(scenes[i].narration_text) + len(scenes[i + 1].narration_text),
        )
        scenes[pair:pair + 2] = [merge_scenes(scenes[pair], scenes[pair + 1])]

    if len(scenes) < minimum:
        raise DecompositionError(
            f"Model returned {len(scenes)} scenes, at least {minimum} required"
        )
    return renumber(scenes)


class SceneDecomposer:
    """
    Split narration into scenes with a text model.

    Args:
        text_generator: capability used for decomposition
        language: language of narration and visual descriptions
    """

    def __init__(self, text_generator: TextGenerator, language: str = "English"):
        self.text_generator = text_generator
        self.language = language

    def build_prompt(self, narration: str, bounds: Tuple[int, int], character_names: List[str]) -> str:
        minimum, maximum = bounds
        count = f"exactly {minimum}" if minimum == maximum else f"between {minimum} and {maximum}"
        emotions = ", ".join(e.value for e in SceneEmotion)
        cast = ", ".join(character_names) if character_names else "none identified"

        return f"""Split the following children's story into {count} scenes for an illustrated video.

Rules:
- Keep the narration text of each scene verbatim from the story, in order, with nothing left out.
- Write each visual description in {self.language} as one paragraph describing what the illustration shows.
- emotion must be one of: {emotions}
- duration_estimate_seconds is the narration time of the scene, between {MIN_SCENE_SECONDS} and {MAX_SCENE_SECONDS}.
- characters lists the names of the characters visible in the scene. Known characters: {cast}.
  Use "protagonist" for the main character when the story never names them.

Respond with JSON only:
{{"scenes": [{{"order": 1, "narration_text": "...", "visual_description": "...", "emotion": "calm", "duration_estimate_seconds": 15, "characters": ["..."]}}]}}

STORY:
{narration}"""

    def normalize(self, raw_scenes: List[Any]) -> List[Scene]:
        """Turn parsed model items into Scenes numbered 1..N in source position order."""
        scenes: List[Scene] = []
        for position, item in enumerate(raw_scenes, start=1):
            if not isinstance(item, dict):
                logger.warning(f"[DECOMPOSER] Skipping non-object scene item at position {position}")
                continue

            narration = str(_first(item, "narration_text", "narration", "narrationText", "text", default="")).strip()
            if not narration:
                logger.warning(f"[DECOMPOSER] Skipping scene at position {position} without narration")
                continue

            raw_emotion = _first(item, "emotion", "mood")
            emotion = normalize_emotion(raw_emotion)
            if emotion is None:
                logger.warning(f"[DECOMPOSER] Rejected emotion {raw_emotion!r}, using {DEFAULT_EMOTION.value}")
                emotion = DEFAULT_EMOTION

            scenes.append(Scene(
                order=position,
                narration_text=narration,
                visual_description=str(_first(
                    item, "visual_description", "visualDescription", "visual", "description", default=narration
                )).strip(),
                emotion=emotion,
                duration_estimate_seconds=clamp_duration(_first(
                    item, "duration_estimate_seconds", "durationEstimate", "duration", "duration_seconds"
                )),
                character_names=_character_list(_first(item, "characters", "character_names", "characterNames", default=[])),
            ))
        return renumber(scenes)

    def parse(self, response: str, bounds: Tuple[int, int]) -> List[Scene]:
        try:
            data = parse_model_json(response, array_key="scenes")
        except ParseError as e:
            raise DecompositionError(f"Scene decomposition failed: {e}", raw=response)

        raw_scenes = data.get("scenes")
        if not isinstance(raw_scenes, list) or not raw_scenes:
            raise DecompositionError("Response contains no scenes array", raw=response)

        scenes = self.normalize(raw_scenes)
        if not scenes:
            raise DecompositionError("No usable scenes in response", raw=response)
        return fit_scene_count(scenes, bounds)

    async def decompose(
        self,
        narration: str,
        duration_minutes: float,
        target_count: Optional[int] = None,
        character_names: Optional[List[str]] = None,
    ) -> List[Scene]:
        if not narration or not narration.strip():
            raise ValueError("narration text is empty")

        bounds = scene_count_bounds(duration_minutes, target_count)
        logger.info(f"[DECOMPOSER] Decomposing {len(narration)} chars into {bounds[0]}-{bounds[1]} scenes")

        prompt = self.build_prompt(narration, bounds, character_names or [])
        response = await self.text_generator.generate(prompt)
        scenes = self.parse(response, bounds)

        logger.info(f"[DECOMPOSER] Produced {len(scenes)} scenes")
        return scenes
