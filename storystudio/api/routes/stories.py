"""
Story pipeline API routes.

Every stage can be (re)run independently; GET /status reports which stages
are complete based on the artifacts that exist.
"""
import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse

from storystudio.services.pipeline import StoryPipeline

from ..dependencies import get_pipeline
from ..exceptions import ValidationError
from ..schemas import (
    AssembleRequest,
    CharacterModel,
    CoverRequest,
    CreateStoryRequest,
    ImageBatchRequest,
    NarrationRequest,
    PositionalImageRequest,
    ReorderRequest,
    SceneEditRequest,
    StoryConfigModel,
    StoryResponse,
    VoiceRequest,
    characters_payload,
    scenes_payload,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/stories", tags=["Stories"])


# =============================================================================
# Stories
# =============================================================================

@router.post("", response_model=StoryResponse, status_code=status.HTTP_201_CREATED)
async def create_story(request: CreateStoryRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    config = StoryConfigModel(**request.model_dump(exclude={"narration_text"})).to_config()
    story = pipeline.create_story(config, request.narration_text)
    return StoryResponse.from_record(story)


@router.get("", response_model=List[StoryResponse])
async def list_stories(limit: int = 50, pipeline: StoryPipeline = Depends(get_pipeline)):
    return [StoryResponse.from_record(s) for s in pipeline.repository.list_stories(limit)]


@router.get("/{story_id}", response_model=StoryResponse)
async def get_story(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(pipeline.repository.require_story(story_id))


@router.put("/{story_id}/config", response_model=StoryResponse)
async def update_config(story_id: str, request: StoryConfigModel, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(pipeline.update_config(story_id, request.to_config()))


@router.delete("/{story_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_story(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    pipeline.repository.require_story(story_id)
    pipeline.repository.delete_story(story_id)


@router.get("/{story_id}/status")
async def story_status(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return pipeline.status(story_id)


# =============================================================================
# Narration
# =============================================================================

@router.post("/{story_id}/narration", response_model=StoryResponse)
async def write_narration(story_id: str, request: NarrationRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(await pipeline.write_narration(story_id, request.text))


@router.post("/{story_id}/narration/audio", response_model=StoryResponse)
async def narrate_story(story_id: str, request: VoiceRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(await pipeline.narrate_story(story_id, request.voice))


# =============================================================================
# Characters
# =============================================================================

@router.get("/{story_id}/characters")
async def list_characters(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    pipeline.repository.require_story(story_id)
    return {"characters": characters_payload(pipeline.repository.get_characters(story_id))}


@router.post("/{story_id}/characters/extract")
async def extract_characters(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return {"characters": characters_payload(await pipeline.extract_characters(story_id))}


@router.put("/{story_id}/characters/{name}")
async def save_character(
    story_id: str,
    name: str,
    request: CharacterModel,
    pipeline: StoryPipeline = Depends(get_pipeline),
) -> Dict:
    if request.name != name:
        raise ValidationError("Character name in path and body differ")
    descriptor = request.to_descriptor()
    existing = {c.name: c for c in pipeline.repository.get_characters(story_id)}.get(name)
    if existing is not None:
        descriptor.reference_image_url = existing.reference_image_url
        descriptor.reference_status = existing.reference_status
    return pipeline.registry.save_descriptor(story_id, descriptor).to_dict()


@router.post("/{story_id}/characters/references")
async def generate_references(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    result = await pipeline.generate_character_references(story_id)
    return {"complete": result.complete, "error": result.error, "errors": result.errors}


@router.post("/{story_id}/characters/{name}/reference")
async def generate_reference(story_id: str, name: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    descriptor = await pipeline.generate_character_references(story_id, name)
    return descriptor.to_dict()


# =============================================================================
# Scenes
# =============================================================================

@router.get("/{story_id}/scenes")
async def list_scenes(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    pipeline.repository.require_story(story_id)
    return {"scenes": scenes_payload(pipeline.repository.get_scenes(story_id))}


@router.post("/{story_id}/scenes/decompose")
async def decompose(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return {"scenes": scenes_payload(await pipeline.decompose(story_id))}


@router.patch("/{story_id}/scenes/{order}")
async def edit_scene(
    story_id: str,
    order: int,
    request: SceneEditRequest,
    pipeline: StoryPipeline = Depends(get_pipeline),
) -> Dict:
    return {"scenes": scenes_payload(pipeline.edit_scene(story_id, order, request.changes()))}


@router.delete("/{story_id}/scenes/{order}")
async def delete_scene(story_id: str, order: int, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return {"scenes": scenes_payload(pipeline.delete_scene(story_id, order))}


@router.post("/{story_id}/scenes/reorder")
async def reorder_scenes(story_id: str, request: ReorderRequest, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return {"scenes": scenes_payload(pipeline.reorder_scenes(story_id, request.order))}


# =============================================================================
# Images
# =============================================================================

@router.put("/{story_id}/cover-image", response_model=StoryResponse)
async def set_cover_image(story_id: str, request: PositionalImageRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(pipeline.set_cover_image(story_id, request.url))


@router.post("/{story_id}/cover-image", response_model=StoryResponse)
async def generate_cover_image(story_id: str, request: CoverRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(await pipeline.generate_cover(story_id, request.character_names))


@router.put("/{story_id}/ending-image", response_model=StoryResponse)
async def set_ending_image(story_id: str, request: PositionalImageRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    return StoryResponse.from_record(pipeline.set_ending_image(story_id, request.url))


@router.post("/{story_id}/images")
async def generate_images(story_id: str, request: ImageBatchRequest, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    result = await pipeline.generate_images(story_id, only_missing=request.only_missing)
    return result.to_dict()


@router.post("/{story_id}/scenes/{order}/image")
async def regenerate_image(story_id: str, order: int, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return (await pipeline.regenerate_scene_image(story_id, order)).to_dict()


# =============================================================================
# Scene audio
# =============================================================================

@router.post("/{story_id}/audio")
async def generate_audio(story_id: str, request: VoiceRequest, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    result = await pipeline.generate_scene_audio(story_id, request.voice, only_missing=request.only_missing)
    return result.to_dict()


@router.post("/{story_id}/scenes/{order}/audio")
async def regenerate_audio(
    story_id: str,
    order: int,
    request: VoiceRequest,
    pipeline: StoryPipeline = Depends(get_pipeline),
) -> Dict:
    return (await pipeline.regenerate_scene_audio(story_id, order, request.voice)).to_dict()


# =============================================================================
# Video and export
# =============================================================================

@router.post("/{story_id}/video")
async def assemble_video(story_id: str, request: AssembleRequest, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    result = await pipeline.assemble_video(story_id, use_narration=request.use_narration)
    return {
        "video_url": result.output_path,
        "duration": result.duration,
        "clip_count": result.clip_count,
        "has_narration": result.has_narration,
    }


@router.get("/{story_id}/video")
async def download_video(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    story = pipeline.repository.require_story(story_id)
    if not story.video_url:
        raise ValidationError("Video has not been assembled yet")
    return FileResponse(story.video_url, media_type="video/mp4", filename=f"{story_id}.mp4")


@router.get("/{story_id}/export/validate")
async def validate_export(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)) -> Dict:
    return pipeline.validate_export(story_id).to_dict()


@router.post("/{story_id}/export")
async def export_bundle(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    path = await pipeline.export_bundle(story_id)
    return FileResponse(str(path), media_type="application/zip", filename=path.name)
