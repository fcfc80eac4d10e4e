"""
SQLite Story Repository.
Persists stories, their scene sets, character descriptors and API usage.
"""
import json
import logging
from typing import List, Optional

from storystudio.models import (
    CharacterDescriptor,
    CharacterStatus,
    GenerationStatus,
    Scene,
    SceneEmotion,
    StoryConfig,
    StoryRecord,
    utc_now,
)
from storystudio.providers.exceptions import NotFoundError

from .base import StoryRepository
from .database import Database

logger = logging.getLogger(__name__)


class SQLiteStoryRepository(StoryRepository):

    def __init__(self, database: Database):
        self.db = database

    def close(self) -> None:
        self.db.close()

    # Stories

    def create_story(self, story: StoryRecord) -> StoryRecord:
        conn = self.db.connection
        conn.execute("""
            INSERT INTO stories (
                story_id, config_json, narration_text, full_audio_url, cover_image_url,
                ending_image_url, video_url, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            story.story_id,
            json.dumps(story.config.to_dict()),
            story.narration_text,
            story.full_audio_url,
            story.cover_image_url,
            story.ending_image_url,
            story.video_url,
            story.created_at,
            story.updated_at,
        ))
        logger.info(f"Created story {story.story_id}: {story.config.title}")
        return story

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        row = self.db.connection.execute(
            "SELECT * FROM stories WHERE story_id = ?", (story_id,)
        ).fetchone()
        return self._row_to_story(row) if row else None

    def update_story(self, story: StoryRecord) -> StoryRecord:
        story.updated_at = utc_now()
        cursor = self.db.connection.execute("""
            UPDATE stories SET
                config_json = ?, narration_text = ?, full_audio_url = ?, cover_image_url = ?,
                ending_image_url = ?, video_url = ?, updated_at = ?
            WHERE story_id = ?
        """, (
            json.dumps(story.config.to_dict()),
            story.narration_text,
            story.full_audio_url,
            story.cover_image_url,
            story.ending_image_url,
            story.video_url,
            story.updated_at,
            story.story_id,
        ))
        if cursor.rowcount == 0:
            raise NotFoundError("Story", story.story_id)
        return story

    def delete_story(self, story_id: str) -> bool:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM scenes WHERE story_id = ?", (story_id,))
            conn.execute("DELETE FROM characters WHERE story_id = ?", (story_id,))
            cursor = conn.execute("DELETE FROM stories WHERE story_id = ?", (story_id,))
        return cursor.rowcount > 0

    def list_stories(self, limit: int = 50) -> List[StoryRecord]:
        rows = self.db.connection.execute(
            "SELECT * FROM stories ORDER BY created_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [self._row_to_story(row) for row in rows]

    # Scenes

    def replace_scenes(self, story_id: str, scenes: List[Scene]) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM scenes WHERE story_id = ?", (story_id,))
            for scene in scenes:
                conn.execute("""
                    INSERT INTO scenes (
                        story_id, scene_order, narration_text, visual_description, emotion,
                        duration_seconds, character_names, image_prompt, generated_prompt, image_url,
                        audio_url, image_status, audio_status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    story_id,
                    scene.order,
                    scene.narration_text,
                    scene.visual_description,
                    scene.emotion.value,
                    scene.duration_estimate_seconds,
                    json.dumps(scene.character_names),
                    scene.image_prompt,
                    scene.generated_prompt,
                    scene.image_url,
                    scene.audio_url,
                    json.dumps(scene.image_status.to_dict()),
                    json.dumps(scene.audio_status.to_dict()),
                ))

        logger.info(f"Saved {len(scenes)} scenes for story {story_id}")

    def get_scenes(self, story_id: str) -> List[Scene]:
        rows = self.db.connection.execute(
            "SELECT * FROM scenes WHERE story_id = ? ORDER BY scene_order", (story_id,)
        ).fetchall()
        return [self._row_to_scene(row) for row in rows]

    def update_scene_image(
        self,
        story_id: str,
        order: int,
        status: GenerationStatus,
        image_url: Optional[str] = None,
        generated_prompt: Optional[str] = None,
    ) -> None:
        cursor = self.db.connection.execute("""
            UPDATE scenes SET
                image_status = ?,
                image_url = COALESCE(?, image_url),
                generated_prompt = COALESCE(?, generated_prompt)
            WHERE story_id = ? AND scene_order = ?
        """, (json.dumps(status.to_dict()), image_url, generated_prompt, story_id, order))
        if cursor.rowcount == 0:
            raise NotFoundError("Scene", f"{story_id}#{order}")

    def update_scene_audio(
        self,
        story_id: str,
        order: int,
        status: GenerationStatus,
        audio_url: Optional[str] = None,
    ) -> None:
        cursor = self.db.connection.execute("""
            UPDATE scenes SET
                audio_status = ?,
                audio_url = COALESCE(?, audio_url)
            WHERE story_id = ? AND scene_order = ?
        """, (json.dumps(status.to_dict()), audio_url, story_id, order))
        if cursor.rowcount == 0:
            raise NotFoundError("Scene", f"{story_id}#{order}")

    # Characters

    def upsert_character(self, story_id: str, descriptor: CharacterDescriptor) -> None:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT position FROM characters WHERE story_id = ? AND name = ?",
                (story_id, descriptor.name),
            ).fetchone()
            if row:
                position = row["position"]
            else:
                position = conn.execute(
                    "SELECT COALESCE(MAX(position), -1) + 1 FROM characters WHERE story_id = ?",
                    (story_id,),
                ).fetchone()[0]

            conn.execute("""
                INSERT OR REPLACE INTO characters (
                    story_id, name, position, species, main_colors, clothing, accessories,
                    full_description, status, reference_image_url, reference_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                story_id,
                descriptor.name,
                position,
                descriptor.species,
                descriptor.main_colors,
                descriptor.clothing,
                descriptor.accessories,
                descriptor.full_description,
                descriptor.status.value,
                descriptor.reference_image_url,
                json.dumps(descriptor.reference_status.to_dict()),
            ))

    def get_characters(self, story_id: str) -> List[CharacterDescriptor]:
        rows = self.db.connection.execute(
            "SELECT * FROM characters WHERE story_id = ? ORDER BY position", (story_id,)
        ).fetchall()
        return [self._row_to_character(row) for row in rows]

    def delete_character(self, story_id: str, name: str) -> bool:
        cursor = self.db.connection.execute(
            "DELETE FROM characters WHERE story_id = ? AND name = ?", (story_id, name)
        )
        return cursor.rowcount > 0

    # Usage

    def record_usage(self, story_id: Optional[str], service: str, operation: str, status: str) -> None:
        self.db.connection.execute(
            "INSERT INTO api_usage (story_id, service, operation, status, created_at) VALUES (?, ?, ?, ?, ?)",
            (story_id, service, operation, status, utc_now()),
        )

    def count_usage(self, service: Optional[str] = None, since: Optional[str] = None, status: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM api_usage WHERE 1 = 1"
        params: list = []
        if service:
            query += " AND service = ?"
            params.append(service)
        if since:
            query += " AND created_at >= ?"
            params.append(since)
        if status:
            query += " AND status = ?"
            params.append(status)
        return self.db.connection.execute(query, params).fetchone()[0]

    # Row mapping

    def _row_to_story(self, row) -> StoryRecord:
        return StoryRecord(
            story_id=row["story_id"],
            config=StoryConfig.from_dict(json.loads(row["config_json"])),
            narration_text=row["narration_text"],
            full_audio_url=row["full_audio_url"],
            cover_image_url=row["cover_image_url"],
            ending_image_url=row["ending_image_url"],
            video_url=row["video_url"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_scene(self, row) -> Scene:
        return Scene(
            order=row["scene_order"],
            narration_text=row["narration_text"],
            visual_description=row["visual_description"],
            emotion=SceneEmotion(row["emotion"]),
            duration_estimate_seconds=row["duration_seconds"],
            character_names=json.loads(row["character_names"] or "[]"),
            image_prompt=row["image_prompt"],
            generated_prompt=row["generated_prompt"],
            image_url=row["image_url"],
            audio_url=row["audio_url"],
            image_status=GenerationStatus.from_dict(json.loads(row["image_status"] or "{}")),
            audio_status=GenerationStatus.from_dict(json.loads(row["audio_status"] or "{}")),
        )

    def _row_to_character(self, row) -> CharacterDescriptor:
        return CharacterDescriptor(
            name=row["name"],
            species=row["species"] or "",
            main_colors=row["main_colors"] or "",
            clothing=row["clothing"] or "",
            accessories=row["accessories"] or "",
            full_description=row["full_description"] or "",
            status=CharacterStatus(row["status"]),
            reference_image_url=row["reference_image_url"],
            reference_status=GenerationStatus.from_dict(json.loads(row["reference_status"] or "{}")),
        )
