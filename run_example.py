"""
Working example: generate a narrated story video end to end.

    python run_example.py "The Brave Little Lighthouse"

Requires GOOGLE_API_KEY in .env and an ffmpeg binary.
"""
import asyncio
import logging
import sys

from storystudio.config import load_config
from storystudio.models import StoryConfig
from storystudio.services import create_pipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def main(title: str):
    config = load_config()
    config.log_status()
    pipeline = create_pipeline(config)

    story = pipeline.create_story(StoryConfig(title=title, target_duration_minutes=2, tone="adventure"))
    print(f"\n[1/7] Story created: {story.story_id}")

    await pipeline.write_narration(story.story_id)
    print("[2/7] Narration text written")

    characters = await pipeline.extract_characters(story.story_id)
    print(f"[3/7] Characters: {[c.name for c in characters]}")
    refs = await pipeline.generate_character_references(story.story_id)
    print(f"      References: {refs.complete} ok, {refs.error} failed")

    await pipeline.narrate_story(story.story_id)
    print("[4/7] Full narration track synthesized")

    scenes = await pipeline.decompose(story.story_id)
    print(f"[5/7] {len(scenes)} scenes")

    images = await pipeline.generate_images(story.story_id)
    print(f"[6/7] Images: {images.complete} ok, {images.error} failed")
    if images.error:
        print("      Re-run generate_images(only_missing=True) to retry failed scenes")
        return

    result = await pipeline.assemble_video(story.story_id)
    print(f"[7/7] Video: {result.output_path} ({result.duration:.1f}s)")
    print(pipeline.status(story.story_id))


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "The Brave Little Lighthouse"))
