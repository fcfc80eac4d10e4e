"""
Story writer - produces the narration text for a StoryConfig.
"""
import logging
import re
from typing import Tuple

from storystudio.models import StoryConfig
from storystudio.providers.exceptions import ProviderError
from storystudio.providers.text.base import TextGenerator
from storystudio.services.json_repair import strip_code_fences

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = (150, 200)

AGE_GUIDANCE = {
    "3-5": "very short sentences, simple words, gentle repetition",
    "6-8": "short paragraphs, simple vocabulary with a few new words explained by context",
    "9-12": "richer vocabulary, some dialogue, a clear problem and resolution",
}

TONE_GUIDANCE = {
    "calm": "soothing bedtime pace, reassuring ending",
    "adventure": "lively pace, small safe challenges, brave choices",
    "educational": "weave in one simple fact or lesson naturally",
}


def word_target(duration_minutes: float) -> Tuple[int, int]:
    low, high = WORDS_PER_MINUTE
    return int(duration_minutes * low), int(duration_minutes * high)


def clean_story_text(text: str) -> str:
    """Drop fences, markdown headings and emphasis markers the model adds anyway."""
    text = strip_code_fences(text)
    text = re.sub(r"^\s*#+\s.*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"[*_]{1,2}([^*_]+)[*_]{1,2}", r"\1", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class StoryWriter:

    def __init__(self, text_generator: TextGenerator, language: str = "English"):
        self.text_generator = text_generator
        self.language = language

    def build_prompt(self, config: StoryConfig) -> str:
        low, high = word_target(config.target_duration_minutes)
        age = AGE_GUIDANCE.get(config.age_group, config.age_group)
        tone = TONE_GUIDANCE.get(config.tone, config.tone)
        return (
            f"Write an original children's story in {self.language} titled \"{config.title}\".\n"
            f"Length: {low} to {high} words (about {config.target_duration_minutes:g} minutes read aloud).\n"
            f"Audience: ages {config.age_group} ({age}).\n"
            f"Tone: {tone}.\n"
            "Give the main character a name and a distinctive look.\n"
            "Return only the narration as continuous prose: no title, no headings, no scene labels."
        )

    async def write(self, config: StoryConfig) -> str:
        logger.info(f"[WRITER] Writing story '{config.title}' ({config.target_duration_minutes:g} min)")
        text = clean_story_text(await self.text_generator.generate(self.build_prompt(config)))
        if not text:
            raise ProviderError(self.text_generator.name, "Story text came back empty")

        low, high = word_target(config.target_duration_minutes)
        words = len(text.split())
        if not low * 0.7 <= words <= high * 1.3:
            logger.warning(f"[WRITER] Story has {words} words, target was {low}-{high}")
        return text
