"""
Defensive JSON helpers for generator output.

Generators return JSON wrapped in prose, fenced in markdown, truncated, or with
schema drift (a list where a string belongs). These helpers recover what they
can and log what they cannot.
"""

import json
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger("casegen")


def safe_join(items: List[Any], separator: str = ", ") -> str:
    """Safely join a list of items, converting dicts to strings if needed."""
    if not items:
        return ""
    result = []
    for item in items:
        if isinstance(item, dict):
            if "name" in item:
                result.append(str(item["name"]))
            elif "title" in item:
                result.append(str(item["title"]))
            else:
                result.append(json.dumps(item, ensure_ascii=False))
        elif isinstance(item, str):
            result.append(item)
        elif item is None:
            continue
        else:
            result.append(str(item))
    return separator.join(result)


def coerce_str(value: Any) -> str:
    """Coerce a drifting field into a string (lists become comma-joined)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return safe_join(value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def normalize_dict(value: Any, fallback_key: str = "description") -> Dict[str, Any]:
    """
    Normalize a value to a dict, handling cases where the generator returns a string instead of dict.

    Args:
        value: The value to normalize (could be dict, str, or None)
        fallback_key: Key to use when wrapping a string value into a dict

    Returns:
        A dict (possibly empty if value was None/invalid)
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        if value.strip().startswith("{"):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                pass
        logger.warning(f"[normalize_dict] Expected dict but got string (len={len(value)}), wrapping with key '{fallback_key}'")
        return {fallback_key: value}
    logger.warning(f"[normalize_dict] Expected dict but got {type(value).__name__}, returning empty dict")
    return {}


def _balanced_slice(text: str, open_char: str, close_char: str) -> Optional[str]:
    start = text.find(open_char)
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_json(text: Optional[str]) -> Optional[Any]:
    """Extract JSON from a generator response with robust parsing."""
    if not text or not text.strip():
        logger.warning("[extract_json] Empty text provided")
        return None

    preview = text[:300] + "..." if len(text) > 300 else text
    logger.debug(f"[extract_json] Attempting to parse text (len={len(text)}): {preview}")

    # Method 1: direct parse
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"[extract_json] Direct parse failed: {e}")

    # Method 2: markdown code block
    for pattern in ("```json", "```JSON", "```"):
        if pattern in text:
            try:
                parts = text.split(pattern)
                if len(parts) >= 2:
                    json_str = parts[1].split("```")[0].strip()
                    return json.loads(json_str)
            except (IndexError, json.JSONDecodeError) as e:
                logger.debug(f"[extract_json] Code block extraction failed for '{pattern}': {e}")

    # Method 3: raw_decode from the first { or [
    for start_char in ("{", "["):
        start_idx = text.find(start_char)
        if start_idx >= 0:
            try:
                result, _ = json.JSONDecoder().raw_decode(text[start_idx:])
                return result
            except json.JSONDecodeError as e:
                logger.debug(f"[extract_json] raw_decode failed for '{start_char}': {e}")

    # Method 4: balanced braces
    candidate = _balanced_slice(text, "{", "}")
    if candidate:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug(f"[extract_json] Balanced brace extraction failed: {e}")

    # Method 5: truncated object missing its opening brace ("key": ...)
    stripped = text.strip()
    if stripped.startswith('"') and '":' in stripped[:50]:
        wrapped = "{" + stripped
        if wrapped.count("{") > wrapped.count("}"):
            wrapped = wrapped + "}"
        try:
            return json.loads(wrapped)
        except json.JSONDecodeError as e:
            logger.debug(f"[extract_json] Truncated JSON recovery failed: {e}")

    # Method 6: bare array
    if stripped.startswith("["):
        candidate = _balanced_slice(stripped, "[", "]")
        if candidate:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError as e:
                logger.debug(f"[extract_json] Array extraction failed: {e}")

    logger.warning(f"[extract_json] All extraction methods failed for text (len={len(text)})")
    return None


def is_valid_json(text: Optional[str]) -> bool:
    """True when text parses as a JSON document."""
    if text is None:
        return False
    try:
        json.loads(text)
        return True
    except (TypeError, ValueError):
        return False


def canonical_json(value: Any) -> str:
    """Stable serialization used for hashing and ordering."""
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def json_size_bytes(value: Any) -> int:
    """UTF-8 byte size of the compact serialization of value."""
    return len(json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))
