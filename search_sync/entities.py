"""
Entity types kept in sync with the search index.

Each entry bundles what the engine needs for one index: the SELECT that
returns rows with their nested sub-collections, the baseline inclusion
predicate, the row → document transformer, the declared document schema
and the index attribute settings.

Select SQL conventions:
  - the entity table is aliased ``t``
  - nested collections come back as JSON (decoded by psycopg2)
  - no WHERE / ORDER BY / LIMIT; the reader appends those
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict

from search_sync import config
from search_sync.schema import DocumentSchema, FieldSpec, IndexSettings
from search_sync.transform import transform_article, transform_image, transform_model


@dataclass(frozen=True)
class EntityType:
    name: str                    # logical index id, also the queue/ledger `type`
    select_sql: str
    inclusion_sql: str           # always AND-ed, never relaxed
    to_document: Callable[[Dict[str, Any]], Dict[str, Any]]
    schema: DocumentSchema
    settings: IndexSettings
    primary_key: str = "id"
    created_column: str = "t.created_at"
    updated_column: str = "t.updated_at"

    @property
    def shadow_name(self) -> str:
        return f"{self.name}{config.SHADOW_SUFFIX}"


_USER_SQL = """
    (SELECT json_build_object('id', u.id, 'username', u.username, 'image', u.image)
       FROM users u WHERE u.id = t.user_id) AS "user"
"""

_USER_FIELDS = (
    FieldSpec("user.id", "int"),
    FieldSpec("user.username", "str", nullable=True),
    FieldSpec("user.image", "str", nullable=True),
)


# ── Articles ────────────────────────────────────────────────

ARTICLES = EntityType(
    name="articles",
    select_sql=f"""
        SELECT t.id, t.title, t.content, t.cover, t.nsfw, t.user_id,
               t.published_at, t.created_at, t.updated_at,
               {_USER_SQL},
               (SELECT COALESCE(json_agg(json_build_object('id', tg.id, 'name', tg.name)
                                         ORDER BY tg.name), '[]'::json)
                  FROM tags_on_articles ta JOIN tags tg ON tg.id = ta.tag_id
                 WHERE ta.article_id = t.id) AS tags,
               (SELECT COALESCE(json_agg(m), '[]'::json)
                  FROM article_metrics m
                 WHERE m.article_id = t.id AND m.timeframe = 'AllTime') AS metrics
        FROM articles t
    """,
    inclusion_sql="t.published_at IS NOT NULL AND t.tos_violation = FALSE",
    to_document=transform_article,
    schema=DocumentSchema(fields=(
        FieldSpec("id", "int"),
        FieldSpec("title", "str"),
        FieldSpec("content", "str"),
        FieldSpec("cover", "str", nullable=True),
        FieldSpec("nsfw", "bool"),
        FieldSpec("publishedAt", "timestamp", nullable=True),
        FieldSpec("createdAt", "timestamp"),
        *_USER_FIELDS,
        FieldSpec("tags", "str[]"),
        FieldSpec("metrics.commentCount", "int"),
        FieldSpec("metrics.favoriteCount", "int"),
        FieldSpec("metrics.viewCount", "int"),
        FieldSpec("metrics.likeCount", "int"),
        FieldSpec("metrics.dislikeCount", "int"),
        FieldSpec("metrics.heartCount", "int"),
        FieldSpec("metrics.laughCount", "int"),
        FieldSpec("metrics.cryCount", "int"),
        FieldSpec("metrics.hideCount", "int"),
    )),
    settings=IndexSettings(
        searchable=["title", "content", "tags", "user.username"],
        sortable=["createdAt", "metrics.commentCount", "metrics.favoriteCount", "metrics.viewCount"],
        filterable=["tags"],
    ),
)


# ── Images ──────────────────────────────────────────────────

IMAGES = EntityType(
    name="images",
    select_sql=f"""
        SELECT t.id, t.name, t.url, t.hash, t.width, t.height, t.nsfw,
               t.post_id, t.meta, t.user_id, t.created_at, t.updated_at,
               {_USER_SQL},
               (SELECT COALESCE(json_agg(json_build_object('id', tg.id, 'name', tg.name)
                                         ORDER BY tg.name), '[]'::json)
                  FROM tags_on_images ti JOIN tags tg ON tg.id = ti.tag_id
                 WHERE ti.image_id = t.id AND ti.disabled = FALSE) AS tags,
               (SELECT COALESCE(json_agg(m), '[]'::json)
                  FROM image_metrics m
                 WHERE m.image_id = t.id AND m.timeframe = 'AllTime') AS metrics
        FROM images t
        JOIN posts p ON p.id = t.post_id
    """,
    inclusion_sql=(
        "p.published_at IS NOT NULL AND t.tos_violation = FALSE "
        "AND t.needs_review IS NULL"
    ),
    to_document=transform_image,
    schema=DocumentSchema(fields=(
        FieldSpec("id", "int"),
        FieldSpec("name", "str", nullable=True),
        FieldSpec("url", "str"),
        FieldSpec("hash", "str", nullable=True),
        FieldSpec("width", "int", nullable=True),
        FieldSpec("height", "int", nullable=True),
        FieldSpec("nsfw", "str"),
        FieldSpec("postId", "int", nullable=True),
        FieldSpec("prompt", "str", nullable=True),
        FieldSpec("createdAt", "timestamp"),
        *_USER_FIELDS,
        FieldSpec("tags", "str[]"),
        FieldSpec("metrics.commentCount", "int"),
        FieldSpec("metrics.likeCount", "int"),
        FieldSpec("metrics.heartCount", "int"),
        FieldSpec("metrics.laughCount", "int"),
        FieldSpec("metrics.cryCount", "int"),
        FieldSpec("metrics.reactionCount", "int"),
    )),
    settings=IndexSettings(
        searchable=["prompt", "tags", "user.username"],
        sortable=["createdAt", "metrics.reactionCount", "metrics.commentCount"],
        filterable=["tags", "user.username", "nsfw"],
    ),
)


# ── Models ──────────────────────────────────────────────────

MODELS = EntityType(
    name="models",
    select_sql=f"""
        SELECT t.id, t.name, t.type, t.checkpoint_type, t.nsfw, t.user_id,
               t.created_at, t.updated_at, t.last_version_at,
               {_USER_SQL},
               (SELECT json_build_object('id', mv.id, 'name', mv.name, 'base_model', mv.base_model)
                  FROM model_versions mv
                 WHERE mv.model_id = t.id AND mv.status = 'Published'
                 ORDER BY mv.index ASC, mv.id DESC
                 LIMIT 1) AS version,
               (SELECT COALESCE(json_agg(json_build_object('id', tg.id, 'name', tg.name)
                                         ORDER BY tg.name), '[]'::json)
                  FROM tags_on_models tm JOIN tags tg ON tg.id = tm.tag_id
                 WHERE tm.model_id = t.id) AS tags,
               (SELECT COALESCE(json_agg(m), '[]'::json)
                  FROM model_metrics m
                 WHERE m.model_id = t.id AND m.timeframe = 'AllTime') AS metrics
        FROM models t
    """,
    inclusion_sql=(
        "t.status = 'Published' AND t.tos_violation = FALSE "
        "AND t.deleted_at IS NULL"
    ),
    to_document=transform_model,
    schema=DocumentSchema(fields=(
        FieldSpec("id", "int"),
        FieldSpec("name", "str"),
        FieldSpec("type", "str"),
        FieldSpec("checkpointType", "str", nullable=True),
        FieldSpec("nsfw", "bool"),
        FieldSpec("createdAt", "timestamp"),
        FieldSpec("lastVersionAt", "timestamp", nullable=True),
        FieldSpec("version.id", "int", nullable=True),
        FieldSpec("version.name", "str", nullable=True),
        FieldSpec("version.baseModel", "str", nullable=True),
        *_USER_FIELDS,
        FieldSpec("tags", "str[]"),
        FieldSpec("metrics.downloadCount", "int"),
        FieldSpec("metrics.favoriteCount", "int"),
        FieldSpec("metrics.commentCount", "int"),
        FieldSpec("metrics.ratingCount", "int"),
        FieldSpec("metrics.rating", "float"),
    )),
    settings=IndexSettings(
        searchable=["name", "tags", "user.username"],
        sortable=[
            "createdAt",
            "metrics.downloadCount",
            "metrics.favoriteCount",
            "metrics.commentCount",
            "metrics.rating",
        ],
        filterable=["type", "checkpointType", "version.baseModel", "tags", "nsfw"],
    ),
)


ENTITY_TYPES: Dict[str, EntityType] = {
    e.name: e for e in (ARTICLES, IMAGES, MODELS)
}


def get_entity_type(name: str) -> EntityType:
    try:
        return ENTITY_TYPES[name]
    except KeyError:
        raise ValueError(
            f"Unknown entity type {name!r} (known: {', '.join(sorted(ENTITY_TYPES))})"
        ) from None
