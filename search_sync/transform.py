"""
Record transformer: relational rows → flat index documents.

Rows arrive from the store with nested sub-collections still attached
(per-timeframe metric rows, tag association rows, a nested user record).
Each ``transform_*`` function folds one entity type's row into a flat
document; ``transform()`` runs it and checks the result against the
entity type's declared schema. Nothing here does I/O.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

ALL_TIME = "AllTime"

# (document field, metric column)
ARTICLE_METRICS = (
    ("commentCount", "comment_count"),
    ("favoriteCount", "favorite_count"),
    ("viewCount", "view_count"),
    ("likeCount", "like_count"),
    ("dislikeCount", "dislike_count"),
    ("heartCount", "heart_count"),
    ("laughCount", "laugh_count"),
    ("cryCount", "cry_count"),
    ("hideCount", "hide_count"),
)

IMAGE_METRICS = (
    ("commentCount", "comment_count"),
    ("likeCount", "like_count"),
    ("heartCount", "heart_count"),
    ("laughCount", "laugh_count"),
    ("cryCount", "cry_count"),
)

IMAGE_REACTIONS = ("likeCount", "heartCount", "laughCount", "cryCount")

MODEL_METRICS = (
    ("downloadCount", "download_count"),
    ("favoriteCount", "favorite_count"),
    ("commentCount", "comment_count"),
    ("ratingCount", "rating_count"),
    ("rating", "rating"),
)

FLOAT_METRICS = {"rating"}


# ── Helpers ─────────────────────────────────────────────────

def _safe(val) -> Optional[str]:
    """Convert to string, keeping None."""
    if val is None:
        return None
    return str(val)


def _epoch(val) -> Optional[int]:
    """datetime / date / ISO string → integer epoch seconds."""
    if val is None:
        return None
    if isinstance(val, str):
        val = datetime.fromisoformat(val.replace("Z", "+00:00"))
    if isinstance(val, datetime):
        if val.tzinfo is None:
            val = val.replace(tzinfo=timezone.utc)
        return int(val.timestamp())
    if isinstance(val, date):
        return int(datetime(val.year, val.month, val.day, tzinfo=timezone.utc).timestamp())
    raise TypeError(f"not a timestamp: {val!r}")


def all_time_metrics(rows: Optional[Sequence[Dict[str, Any]]],
                     columns: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """
    Collapse per-timeframe metric rows to the AllTime row.

    Missing row (or missing column) yields zeros so every document
    carries the full metrics block.
    """
    row = {}
    for candidate in rows or ():
        if candidate and candidate.get("timeframe", ALL_TIME) == ALL_TIME:
            row = candidate
            break

    metrics = {}
    for field, column in columns:
        value = row.get(column)
        if field in FLOAT_METRICS:
            metrics[f"metrics.{field}"] = float(value) if value is not None else 0.0
        else:
            metrics[f"metrics.{field}"] = int(value) if value is not None else 0
    return metrics


def tag_names(rows: Optional[Sequence[Dict[str, Any]]]) -> List[str]:
    """Association rows → display names, de-duplicated, order kept."""
    names = []
    seen = set()
    for row in rows or ():
        # rows come either flat ({"name": ..}) or through the join ({"tag": {"name": ..}})
        name = row.get("name") if "name" in row else (row.get("tag") or {}).get("name")
        if name and name not in seen:
            seen.add(name)
            names.append(name)
    return names


def user_fields(user: Optional[Dict[str, Any]], user_id=None) -> Dict[str, Any]:
    user = user or {}
    return {
        "user.id": user.get("id", user_id),
        "user.username": _safe(user.get("username")),
        "user.image": _safe(user.get("image")),
    }


# ── Per-entity transformers ─────────────────────────────────

def transform_article(r: Dict[str, Any]) -> Dict[str, Any]:
    doc = {
        "id": r["id"],
        "title": _safe(r.get("title")) or "",
        "content": _safe(r.get("content")) or "",
        "cover": _safe(r.get("cover")),
        "nsfw": bool(r.get("nsfw")),
        "publishedAt": _epoch(r.get("published_at")),
        "createdAt": _epoch(r.get("created_at")),
    }
    doc.update(user_fields(r.get("user"), r.get("user_id")))
    doc["tags"] = tag_names(r.get("tags"))
    doc.update(all_time_metrics(r.get("metrics"), ARTICLE_METRICS))
    return doc


def transform_image(r: Dict[str, Any]) -> Dict[str, Any]:
    meta = r.get("meta") or {}
    doc = {
        "id": r["id"],
        "name": _safe(r.get("name")),
        "url": _safe(r.get("url")) or "",
        "hash": _safe(r.get("hash")),
        "width": r.get("width"),
        "height": r.get("height"),
        "nsfw": _safe(r.get("nsfw")) or "None",
        "postId": r.get("post_id"),
        "prompt": _safe(meta.get("prompt")) if isinstance(meta, dict) else None,
        "createdAt": _epoch(r.get("created_at")),
    }
    doc.update(user_fields(r.get("user"), r.get("user_id")))
    doc["tags"] = tag_names(r.get("tags"))
    metrics = all_time_metrics(r.get("metrics"), IMAGE_METRICS)
    metrics["metrics.reactionCount"] = sum(metrics[f"metrics.{k}"] for k in IMAGE_REACTIONS)
    doc.update(metrics)
    return doc


def transform_model(r: Dict[str, Any]) -> Dict[str, Any]:
    version = r.get("version") or {}
    doc = {
        "id": r["id"],
        "name": _safe(r.get("name")) or "",
        "type": _safe(r.get("type")) or "",
        "checkpointType": _safe(r.get("checkpoint_type")),
        "nsfw": bool(r.get("nsfw")),
        "createdAt": _epoch(r.get("created_at")),
        "lastVersionAt": _epoch(r.get("last_version_at")),
        "version.id": version.get("id"),
        "version.name": _safe(version.get("name")),
        "version.baseModel": _safe(version.get("base_model")),
    }
    doc.update(user_fields(r.get("user"), r.get("user_id")))
    doc["tags"] = tag_names(r.get("tags"))
    doc.update(all_time_metrics(r.get("metrics"), MODEL_METRICS))
    return doc


def transform(entity_type, row: Dict[str, Any]) -> Dict[str, Any]:
    """Transform one row for ``entity_type`` and validate the result."""
    return entity_type.schema.validate(entity_type.to_document(row))


def transform_many(entity_type, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [transform(entity_type, row) for row in rows]
