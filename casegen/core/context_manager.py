"""
Hierarchical Context Manager for CaseGen

A case-scoped, typed key/value facade over the Artifact Store. Phases save their
outputs under slash-delimited semantic paths (plan/core, expand/suspects/S001,
design/documents/police_report, visual-registry) and later phases reload only
the slice they need as a snapshot.

Key concepts:
- Paths are stored at <case_id>/context/<path>.json in the context container
- A leading '@' ("resolve and inline") or '/' and a trailing '/' are ignored
- Writes are durable when save() returns; nothing survives in memory across
  phases unless the optional read cache is enabled
- Wildcard paths ('*') expand to every stored path matching the pattern
- The manager never interprets path semantics; phases own the convention
"""

import copy
import fnmatch
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .errors import ArtifactNotFoundError, MissingContextError, PhaseValidationError
from ..services.artifact_store import ArtifactStore

logger = logging.getLogger("casegen")

T = TypeVar("T", bound=BaseModel)

CONTEXT_SEGMENT = "context"
JSON_SUFFIX = ".json"


@dataclass
class ContextSnapshot:
    """A requested subset of a case's context, deserialized."""
    case_id: str
    items: Dict[str, Any] = field(default_factory=dict)
    requested_paths: List[str] = field(default_factory=list)
    loaded_paths: List[str] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)
    total_size_bytes: int = 0
    build_duration_ms: float = 0.0

    @property
    def estimated_tokens(self) -> int:
        return self.total_size_bytes // 4

    def get(self, path: str, default: Any = None) -> Any:
        return self.items.get(normalize_path(path), default)

    def to_prompt_json(self) -> str:
        """Serialize the snapshot items for inclusion in a prompt."""
        return json.dumps(self.items, ensure_ascii=False, indent=2)


def normalize_path(path: str) -> str:
    """Strip the inline marker, leading slash and trailing slash."""
    if path is None:
        raise ValueError("Context path must not be None")
    normalized = path.strip()
    if normalized.startswith("@"):
        normalized = normalized[1:]
    normalized = normalized.strip("/")
    if not normalized:
        raise ValueError(f"Empty context path: {path!r}")
    return normalized


def _serialize(value: Any) -> Tuple[Any, bytes]:
    """Return (json-compatible value, utf-8 bytes) for any savable value."""
    if isinstance(value, BaseModel):
        data = value.model_dump(mode="json", by_alias=True)
    elif isinstance(value, str):
        try:
            data = json.loads(value)
        except json.JSONDecodeError:
            data = value
    else:
        data = value
    raw = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
    return data, raw


class ContextManager:
    """Case-scoped hierarchical artifact namespace."""

    def __init__(
        self,
        store: ArtifactStore,
        container: str = "context",
        cache_ttl_seconds: int = 0,
    ):
        """
        Initialize the context manager.

        Args:
            store: Artifact store that holds the context container
            container: Container name for context artifacts
            cache_ttl_seconds: In-process read cache TTL (0 disables caching)
        """
        self.store = store
        self.container = container
        self.cache_ttl_seconds = cache_ttl_seconds
        # case_id -> path -> (value, expires_at)
        self._cache: Dict[str, Dict[str, Tuple[Any, float]]] = {}

    # ========================================================================
    # Path helpers
    # ========================================================================

    def storage_path(self, case_id: str, path: str) -> str:
        return f"{case_id}/{CONTEXT_SEGMENT}/{normalize_path(path)}{JSON_SUFFIX}"

    def _case_prefix(self, case_id: str) -> str:
        return f"{case_id}/{CONTEXT_SEGMENT}/"

    def _relative(self, case_id: str, storage_path: str) -> Optional[str]:
        prefix = self._case_prefix(case_id)
        if not storage_path.startswith(prefix) or not storage_path.endswith(JSON_SUFFIX):
            return None
        return storage_path[len(prefix):-len(JSON_SUFFIX)]

    # ========================================================================
    # Cache
    # ========================================================================

    def _cache_get(self, case_id: str, path: str) -> Tuple[bool, Any]:
        if self.cache_ttl_seconds <= 0:
            return False, None
        entry = self._cache.get(case_id, {}).get(path)
        if entry is None:
            return False, None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            self._cache[case_id].pop(path, None)
            return False, None
        return True, copy.deepcopy(value)

    def _cache_put(self, case_id: str, path: str, value: Any) -> None:
        if self.cache_ttl_seconds <= 0:
            return
        self._cache.setdefault(case_id, {})[path] = (
            copy.deepcopy(value),
            time.monotonic() + self.cache_ttl_seconds,
        )

    def clear_cache(self, case_id: Optional[str] = None) -> None:
        """Drop cached reads for one case, or for every case."""
        if case_id is None:
            self._cache.clear()
        else:
            self._cache.pop(case_id, None)

    # ========================================================================
    # Core operations
    # ========================================================================

    async def save(self, case_id: str, path: str, value: Any) -> str:
        """
        Persist a value under a case-scoped semantic path.

        Args:
            case_id: Case identifier
            path: Semantic path (e.g. "plan/core")
            value: JSON string, plain string, dict/list, or pydantic model

        Returns:
            Storage locator of the written artifact
        """
        if not case_id:
            raise ValueError("case_id is required")
        if value is None:
            raise ValueError(f"Refusing to save None at '{path}'")
        normalized = normalize_path(path)
        data, raw = _serialize(value)
        locator = await self.store.save(
            self.container, self.storage_path(case_id, normalized), raw, "application/json"
        )
        self._cache_put(case_id, normalized, data)
        logger.info(f"[context.save] Saved {normalized} for case {case_id} ({len(raw)} bytes)")
        return locator

    async def load(
        self,
        case_id: str,
        path: str,
        model: Optional[Type[T]] = None,
    ) -> Union[T, Any, None]:
        """Load a value (validated into model when given); None if missing."""
        normalized = normalize_path(path)
        hit, data = self._cache_get(case_id, normalized)
        if not hit:
            try:
                raw = await self.store.get(self.container, self.storage_path(case_id, normalized))
            except ArtifactNotFoundError:
                logger.debug(f"[context.load] Context not found: {normalized} (case {case_id})")
                return None
            data = json.loads(raw.decode("utf-8"))
            self._cache_put(case_id, normalized, data)
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise PhaseValidationError(
                [f"{normalized}: {err['loc']} {err['msg']}" for err in e.errors()],
                case_id=case_id,
            ) from e

    async def require(
        self,
        case_id: str,
        path: str,
        model: Optional[Type[T]] = None,
        phase: Optional[str] = None,
    ) -> Union[T, Any]:
        """Like load(), but a missing path is a hard failure."""
        value = await self.load(case_id, path, model)
        if value is None:
            logger.error(f"[context.require] Missing required context {normalize_path(path)} for case {case_id}")
            raise MissingContextError(normalize_path(path), case_id=case_id, phase=phase)
        return value

    async def exists(self, case_id: str, path: str) -> bool:
        normalized = normalize_path(path)
        hit, _ = self._cache_get(case_id, normalized)
        if hit:
            return True
        return await self.store.exists(self.container, self.storage_path(case_id, normalized))

    async def list_paths(self, case_id: str, prefix: str = "") -> List[str]:
        """Every stored semantic path for the case under prefix."""
        storage_prefix = self._case_prefix(case_id)
        if prefix:
            storage_prefix += normalize_path(prefix)
        paths = []
        for stored in await self.store.list(self.container, storage_prefix):
            relative = self._relative(case_id, stored)
            if relative is not None:
                paths.append(relative)
        return sorted(paths)

    async def _expand(self, case_id: str, pattern: str) -> List[str]:
        normalized = normalize_path(pattern)
        if "*" not in normalized and "?" not in normalized:
            return [normalized]
        literal_prefix = normalized.split("*", 1)[0].split("?", 1)[0]
        directory = literal_prefix.rsplit("/", 1)[0] if "/" in literal_prefix else ""
        candidates = await self.list_paths(case_id, directory) if directory else await self.list_paths(case_id)
        return [p for p in candidates if fnmatch.fnmatchcase(p, normalized)]

    async def query(self, case_id: str, pattern: str) -> Dict[str, Any]:
        """Load every stored path matching a glob pattern."""
        results: Dict[str, Any] = {}
        for path in await self._expand(case_id, pattern):
            value = await self.load(case_id, path)
            if value is not None:
                results[path] = value
        logger.info(f"[context.query] Query returned {len(results)} results for pattern {pattern} (case {case_id})")
        return results

    async def build_snapshot(
        self,
        case_id: str,
        paths: List[str],
        phase: Optional[str] = None,
        strict: bool = True,
    ) -> ContextSnapshot:
        """
        Assemble the requested context slice for a phase.

        Args:
            case_id: Case identifier
            paths: Semantic paths; '@' prefixes are accepted, '*' expands
            phase: Phase name used in error messages
            strict: Raise on the first missing path instead of recording it

        Returns:
            ContextSnapshot with items keyed by normalized path
        """
        started = time.monotonic()
        snapshot = ContextSnapshot(case_id=case_id, requested_paths=list(paths))

        for requested in paths:
            normalized = normalize_path(requested)
            expanded = await self._expand(case_id, normalized)
            if not expanded and ("*" in normalized or "?" in normalized):
                logger.debug(f"[build_snapshot] Pattern {normalized} matched nothing (case {case_id})")
                continue
            for path in expanded:
                value = await self.load(case_id, path)
                if value is None:
                    if strict:
                        logger.error(f"[build_snapshot] Missing {path} for case {case_id} (phase {phase})")
                        raise MissingContextError(path, case_id=case_id, phase=phase)
                    snapshot.failed_paths.append(path)
                    logger.warning(f"[build_snapshot] Context not found for path {path} (case {case_id})")
                    continue
                snapshot.items[path] = value
                snapshot.loaded_paths.append(path)
                snapshot.total_size_bytes += len(json.dumps(value, ensure_ascii=False).encode("utf-8"))

        snapshot.build_duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"[build_snapshot] Built snapshot for case {case_id}: {len(snapshot.loaded_paths)} items, "
            f"{snapshot.total_size_bytes} bytes, ~{snapshot.estimated_tokens} tokens"
        )
        return snapshot

    async def delete(self, case_id: str, pattern: str) -> int:
        """Delete one path or every path matching a glob; returns the count."""
        deleted = 0
        for path in await self._expand(case_id, pattern):
            if await self.store.delete(self.container, self.storage_path(case_id, path)):
                deleted += 1
            self._cache.get(case_id, {}).pop(path, None)
        logger.info(f"[context.delete] Deleted {deleted} context items matching {pattern} for case {case_id}")
        return deleted

    async def get_metadata(self, case_id: str) -> Dict[str, Any]:
        """Item count, total size and item count per top-level segment."""
        paths = await self.list_paths(case_id)
        items_by_type: Dict[str, int] = {}
        total_size = 0
        for path in paths:
            segment = path.split("/", 1)[0]
            items_by_type[segment] = items_by_type.get(segment, 0) + 1
            raw = await self.store.get(self.container, self.storage_path(case_id, path))
            total_size += len(raw)
        return {
            "caseId": case_id,
            "itemCount": len(paths),
            "totalSizeBytes": total_size,
            "itemsByType": items_by_type,
            "paths": paths,
        }
