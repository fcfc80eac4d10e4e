"""
Artifact storage. Artifacts are files under `assets/<story_id>/`; their URL
is the absolute file path. Remote `http(s)://` and `data:` URLs can be read
back as well, so externally chosen cover/ending images work the same way.
"""
import base64
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import aiofiles
import httpx

from storystudio.models import AudioArtifact, ImageArtifact, extension_for

logger = logging.getLogger(__name__)


class AssetStore:

    def __init__(self, root: Path, client: Optional[httpx.AsyncClient] = None):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=60.0, follow_redirects=True)
        return self._client

    async def save(self, story_id: str, stem: str, data: bytes, extension: str) -> str:
        directory = self.root / story_id
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{stem}_{uuid.uuid4().hex[:8]}.{extension}"

        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

        logger.debug(f"[ASSETS] Saved {path} ({len(data)} bytes)")
        return str(path.resolve())

    async def save_image(self, story_id: str, stem: str, artifact: ImageArtifact) -> str:
        return await self.save(story_id, stem, artifact.data, artifact.extension)

    async def save_audio(self, story_id: str, stem: str, artifact: AudioArtifact) -> str:
        return await self.save(story_id, stem, artifact.data, artifact.extension)

    @staticmethod
    def local_path(url: str) -> Optional[Path]:
        if url.startswith("file://"):
            return Path(unquote(urlparse(url).path))
        if "://" in url or url.startswith("data:"):
            return None
        return Path(url)

    @staticmethod
    def guess_mime(url: str) -> str:
        if url.startswith("data:"):
            return url[5:].split(";", 1)[0] or "application/octet-stream"
        mime, _ = mimetypes.guess_type(urlparse(url).path if "://" in url else url)
        return mime or "application/octet-stream"

    def extension_of(self, url: str, default: str = "bin") -> str:
        ext = extension_for(self.guess_mime(url))
        return default if ext == "bin" else ext

    async def load(self, url: str) -> bytes:
        """Read an artifact from a local path, file://, data: or http(s) URL."""
        if url.startswith("data:"):
            header, _, payload = url.partition(",")
            if header.endswith(";base64"):
                return base64.b64decode(payload)
            return unquote(payload).encode()

        if url.startswith(("http://", "https://")):
            response = await self.client.get(url)
            response.raise_for_status()
            return response.content

        path = self.local_path(url)
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    def exists(self, url: Optional[str]) -> bool:
        if not url:
            return False
        path = self.local_path(url)
        return path is None or path.exists()

    async def copy_to(self, url: str, destination: Path) -> Path:
        data = await self.load(url)
        async with aiofiles.open(destination, "wb") as f:
            await f.write(data)
        return destination

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
