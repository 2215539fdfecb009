"""
Artifact Store for CaseGen

Durable container/path -> bytes storage. Containers separate logical buckets
(context snapshots, generated bundle, logs); paths are case-scoped by the
callers.

Key concepts:
- LocalArtifactStore: one directory per container, atomic writes (temp file
  then os.replace) so readers never observe a partial file
- SupabaseArtifactStore: one Supabase Storage bucket per container, upsert
  uploads and recursive listing
- Every save is complete when the awaited call returns
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from ..core.errors import ArtifactNotFoundError

logger = logging.getLogger("casegen")

Data = Union[bytes, str]


def _to_bytes(data: Data) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode("utf-8")
    raise TypeError(f"Artifact data must be bytes or str, got {type(data).__name__}")


def _clean_path(path: str) -> str:
    cleaned = path.replace("\\", "/").strip("/")
    parts = [p for p in cleaned.split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise ValueError(f"Path escapes its container: {path}")
    return "/".join(parts)


class ArtifactStore(ABC):
    """Abstract artifact store."""

    @abstractmethod
    async def save(self, container: str, path: str, data: Data, content_type: Optional[str] = None) -> str:
        """Persist data and return its locator."""

    @abstractmethod
    async def get(self, container: str, path: str) -> bytes:
        """Return stored bytes; raises ArtifactNotFoundError."""

    @abstractmethod
    async def list(self, container: str, prefix: str = "") -> List[str]:
        """All paths under prefix, sorted."""

    @abstractmethod
    async def exists(self, container: str, path: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, container: str, path: str) -> bool:
        pass

    async def get_text(self, container: str, path: str) -> str:
        return (await self.get(container, path)).decode("utf-8")


# ============================================================================
# Local filesystem
# ============================================================================

class LocalArtifactStore(ArtifactStore):
    """Filesystem-backed store rooted at a directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, container: str, path: str) -> Path:
        base = (self.root / _clean_path(container)).resolve()
        target = (base / _clean_path(path)).resolve()
        if base != target and base not in target.parents:
            raise ValueError(f"Path escapes its container: {container}/{path}")
        return target

    def _write_bytes_atomically(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".{target.name}.{os.getpid()}.tmp")
        with open(temp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, target)

    async def save(self, container: str, path: str, data: Data, content_type: Optional[str] = None) -> str:
        target = self._resolve(container, path)
        self._write_bytes_atomically(target, _to_bytes(data))
        locator = f"{container}/{_clean_path(path)}"
        logger.debug(f"[LocalArtifactStore.save] Wrote {locator}")
        return locator

    async def get(self, container: str, path: str) -> bytes:
        target = self._resolve(container, path)
        if not target.is_file():
            raise ArtifactNotFoundError(container, path)
        return target.read_bytes()

    async def list(self, container: str, prefix: str = "") -> List[str]:
        base = self._resolve(container, "")
        if not base.is_dir():
            return []
        clean_prefix = _clean_path(prefix) if prefix else ""
        paths = []
        for file_path in base.rglob("*"):
            if not file_path.is_file() or file_path.name.endswith(".tmp"):
                continue
            relative = file_path.relative_to(base).as_posix()
            if relative.startswith(clean_prefix):
                paths.append(relative)
        return sorted(paths)

    async def exists(self, container: str, path: str) -> bool:
        return self._resolve(container, path).is_file()

    async def delete(self, container: str, path: str) -> bool:
        target = self._resolve(container, path)
        if not target.is_file():
            return False
        target.unlink()
        return True


# ============================================================================
# Supabase Storage
# ============================================================================

class SupabaseArtifactStore(ArtifactStore):
    """Supabase Storage backed store (one bucket per container)."""

    def __init__(self, supabase_url: Optional[str] = None, supabase_key: Optional[str] = None):
        """
        Initialize the Supabase artifact store.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase service role key (for server-side operations)
        """
        self.supabase_url = supabase_url or os.getenv("SUPABASE_URL")
        self.supabase_key = supabase_key or os.getenv("SUPABASE_SERVICE_KEY")
        self.client = None
        self._connected = False

    async def connect(self) -> bool:
        """
        Connect to Supabase.

        Returns:
            True if connection successful, False otherwise
        """
        if not self.supabase_url or not self.supabase_key:
            logger.warning("[SupabaseArtifactStore.connect] SUPABASE_URL/SUPABASE_SERVICE_KEY not configured")
            return False

        try:
            from supabase import create_client
            self.client = create_client(self.supabase_url, self.supabase_key)
            self._connected = True
            return True
        except Exception as e:
            logger.error(f"[SupabaseArtifactStore.connect] Failed to connect to Supabase: {e}")
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        """Check if connected to Supabase."""
        return self._connected and self.client is not None

    def _bucket(self, container: str):
        if not self.is_connected:
            raise RuntimeError("SupabaseArtifactStore is not connected; call connect() first")
        return self.client.storage.from_(container)

    async def save(self, container: str, path: str, data: Data, content_type: Optional[str] = None) -> str:
        clean = _clean_path(path)
        bucket = self._bucket(container)
        options = {"content-type": content_type or "application/octet-stream", "upsert": "true"}
        await asyncio.to_thread(bucket.upload, clean, _to_bytes(data), options)
        return f"{container}/{clean}"

    async def get(self, container: str, path: str) -> bytes:
        bucket = self._bucket(container)
        try:
            return await asyncio.to_thread(bucket.download, _clean_path(path))
        except Exception as e:
            message = str(e).lower()
            if "not found" in message or "404" in message or "does not exist" in message:
                raise ArtifactNotFoundError(container, path) from e
            raise

    async def _list_dir(self, container: str, directory: str) -> List[str]:
        bucket = self._bucket(container)
        results: List[str] = []
        offset = 0
        page_size = 1000
        while True:
            entries = await asyncio.to_thread(
                bucket.list, directory, {"limit": page_size, "offset": offset, "sortBy": {"column": "name", "order": "asc"}}
            )
            for entry in entries or []:
                name = entry.get("name")
                if not name:
                    continue
                child = f"{directory}/{name}" if directory else name
                # Folders come back without an id
                if entry.get("id") is None:
                    results.extend(await self._list_dir(container, child))
                else:
                    results.append(child)
            if not entries or len(entries) < page_size:
                break
            offset += page_size
        return results

    async def list(self, container: str, prefix: str = "") -> List[str]:
        clean_prefix = _clean_path(prefix) if prefix else ""
        directory = clean_prefix.rsplit("/", 1)[0] if "/" in clean_prefix else ""
        paths = await self._list_dir(container, directory)
        return sorted(p for p in paths if p.startswith(clean_prefix))

    async def exists(self, container: str, path: str) -> bool:
        try:
            await self.get(container, path)
            return True
        except ArtifactNotFoundError:
            return False

    async def delete(self, container: str, path: str) -> bool:
        bucket = self._bucket(container)
        removed = await asyncio.to_thread(bucket.remove, [_clean_path(path)])
        return bool(removed)


async def create_artifact_store(settings) -> ArtifactStore:
    """Build the store selected by PipelineSettings.storage_backend."""
    if settings.storage_backend == "supabase":
        key = settings.supabase_key.get_secret_value() if settings.supabase_key else None
        store = SupabaseArtifactStore(settings.supabase_url, key)
        if not await store.connect():
            raise RuntimeError("Supabase storage backend selected but connection failed")
        return store
    return LocalArtifactStore(settings.storage_root)
