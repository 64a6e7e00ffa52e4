"""PostgreSQL implementation of :class:`ProjectStore`.

Queries run on a psycopg connection pool inside a worker thread. Change
events are emitted for this process's own writes only; another process
writing to the same project is not observed (single-writer deployment).
"""

from __future__ import annotations

import json
from typing import Any, Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from photobook_schemas import (
    BuildLogEntry,
    ChangeKind,
    Illustration,
    Page,
    Photo,
    Project,
    ProjectStatus,
    StoreTable,
)

from .errors import PageNotFoundError, ProjectNotFoundError
from .store import ProjectStore

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id UUID PRIMARY KEY,
    title TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'upload',
    created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW(),
    updated_at TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS project_photos (
    id UUID PRIMARY KEY,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    storage_path TEXT NOT NULL,
    sort_order INTEGER NOT NULL,
    caption TEXT,
    is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_project_photos_project
    ON project_photos(project_id, sort_order);

CREATE TABLE IF NOT EXISTS project_pages (
    id UUID PRIMARY KEY,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    page_number INTEGER NOT NULL,
    page_type TEXT NOT NULL,
    text_content TEXT NOT NULL DEFAULT '',
    illustration_prompt TEXT,
    scene_description TEXT,
    is_approved BOOLEAN NOT NULL DEFAULT FALSE,
    UNIQUE (project_id, page_number)
);

CREATE TABLE IF NOT EXISTS project_illustrations (
    id UUID PRIMARY KEY,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    page_id UUID NOT NULL REFERENCES project_pages(id) ON DELETE CASCADE,
    storage_path TEXT NOT NULL,
    generation_prompt TEXT,
    is_selected BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_project_illustrations_selected
    ON project_illustrations(page_id) WHERE is_selected;

CREATE TABLE IF NOT EXISTS build_log (
    id UUID PRIMARY KEY,
    project_id UUID NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    phase TEXT NOT NULL,
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    technical_message TEXT,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMP WITHOUT TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_build_log_project
    ON build_log(project_id, created_at);
"""

_PAGE_COLUMNS = (
    "id, project_id, page_number, page_type, text_content, illustration_prompt, "
    "scene_description, is_approved"
)
_ILLUSTRATION_COLUMNS = "id, project_id, page_id, storage_path, generation_prompt, is_selected, created_at"


class PostgresProjectStore(ProjectStore):
    def __init__(self, pool: ConnectionPool) -> None:
        super().__init__()
        self._pool = pool

    @classmethod
    def from_url(cls, database_url: str, *, max_size: int = 10) -> "PostgresProjectStore":
        # psycopg connection URLs do not use SQLAlchemy's driver suffix.
        conninfo = database_url.replace("+psycopg", "")
        return cls(ConnectionPool(conninfo, min_size=1, max_size=max_size, open=True))

    # helpers

    def _fetch_all(self, query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            return list(cur.fetchall())

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> Optional[dict[str, Any]]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def _execute(self, query: str, params: tuple[Any, ...]) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(query, params)
            conn.commit()

    def _initialise_schema(self) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
            conn.commit()

    async def initialise(self) -> None:
        await run_in_threadpool(self._initialise_schema)

    # projects

    async def create_project(self, project: Project) -> Project:
        await run_in_threadpool(
            self._execute,
            "INSERT INTO projects (id, title, status, created_at, updated_at) VALUES (%s, %s, %s, %s, %s)",
            (project.id, project.title, project.status.value, project.created_at, project.updated_at),
        )
        self._emit(StoreTable.PROJECTS, ChangeKind.INSERT, project.id, project.id)
        return project

    async def get_project(self, project_id: UUID) -> Project | None:
        row = await run_in_threadpool(
            self._fetch_one,
            "SELECT id, title, status, created_at, updated_at FROM projects WHERE id = %s",
            (project_id,),
        )
        return Project.model_validate(row) if row else None

    async def _set_project_status(self, project_id: UUID, status: ProjectStatus) -> Project:
        row = await run_in_threadpool(
            self._update_returning,
            "UPDATE projects SET status = %s, updated_at = NOW() WHERE id = %s "
            "RETURNING id, title, status, created_at, updated_at",
            (status.value, project_id),
        )
        if row is None:
            raise ProjectNotFoundError(project_id)
        self._emit(StoreTable.PROJECTS, ChangeKind.UPDATE, project_id, project_id)
        return Project.model_validate(row)

    def _update_returning(self, query: str, params: tuple[Any, ...]) -> Optional[dict[str, Any]]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            row = cur.fetchone()
            conn.commit()
            return row

    # photos

    async def next_sort_order(self, project_id: UUID) -> int:
        row = await run_in_threadpool(
            self._fetch_one,
            "SELECT COALESCE(MAX(sort_order) + 1, 0) AS next_order FROM project_photos WHERE project_id = %s",
            (project_id,),
        )
        return int(row["next_order"]) if row else 0

    async def insert_photo(self, photo: Photo) -> Photo:
        await run_in_threadpool(
            self._execute,
            """
            INSERT INTO project_photos (id, project_id, storage_path, sort_order, caption, is_favorite, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                photo.id,
                photo.project_id,
                photo.storage_path,
                photo.sort_order,
                photo.caption,
                photo.is_favorite,
                photo.created_at,
            ),
        )
        self._emit(StoreTable.PHOTOS, ChangeKind.INSERT, photo.project_id, photo.id)
        return photo

    async def list_photos(self, project_id: UUID) -> list[Photo]:
        rows = await run_in_threadpool(
            self._fetch_all,
            """
            SELECT id, project_id, storage_path, sort_order, caption, is_favorite, created_at
            FROM project_photos WHERE project_id = %s ORDER BY sort_order, created_at
            """,
            (project_id,),
        )
        return [Photo.model_validate(row) for row in rows]

    async def update_photo_caption(self, photo_id: UUID, caption: str) -> None:
        row = await run_in_threadpool(
            self._update_returning,
            "UPDATE project_photos SET caption = %s WHERE id = %s RETURNING project_id",
            (caption, photo_id),
        )
        if row is not None:
            self._emit(StoreTable.PHOTOS, ChangeKind.UPDATE, row["project_id"], photo_id)

    # pages

    async def list_pages(self, project_id: UUID) -> list[Page]:
        rows = await run_in_threadpool(
            self._fetch_all,
            f"SELECT {_PAGE_COLUMNS} FROM project_pages WHERE project_id = %s ORDER BY page_number",
            (project_id,),
        )
        return [Page.model_validate(row) for row in rows]

    async def get_page(self, page_id: UUID) -> Page | None:
        row = await run_in_threadpool(
            self._fetch_one,
            f"SELECT {_PAGE_COLUMNS} FROM project_pages WHERE id = %s",
            (page_id,),
        )
        return Page.model_validate(row) if row else None

    def _replace_pages(self, project_id: UUID, pages: list[Page]) -> None:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM project_illustrations WHERE project_id = %s", (project_id,))
            cur.execute("DELETE FROM project_pages WHERE project_id = %s", (project_id,))
            for page in pages:
                cur.execute(
                    f"INSERT INTO project_pages ({_PAGE_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        page.id,
                        project_id,
                        page.page_number,
                        page.page_type.value,
                        page.text_content,
                        page.illustration_prompt,
                        page.scene_description,
                        page.is_approved,
                    ),
                )
            conn.commit()

    async def replace_pages(self, project_id: UUID, pages: list[Page]) -> list[Page]:
        await run_in_threadpool(self._replace_pages, project_id, pages)
        self._emit(StoreTable.PAGES, ChangeKind.DELETE, project_id)
        for page in pages:
            self._emit(StoreTable.PAGES, ChangeKind.INSERT, project_id, page.id)
        return await self.list_pages(project_id)

    # illustrations

    async def list_illustrations(self, project_id: UUID, page_id: UUID | None = None) -> list[Illustration]:
        if page_id is None:
            query = (
                f"SELECT {_ILLUSTRATION_COLUMNS} FROM project_illustrations "
                "WHERE project_id = %s ORDER BY created_at"
            )
            params: tuple[Any, ...] = (project_id,)
        else:
            query = (
                f"SELECT {_ILLUSTRATION_COLUMNS} FROM project_illustrations "
                "WHERE project_id = %s AND page_id = %s ORDER BY created_at"
            )
            params = (project_id, page_id)
        rows = await run_in_threadpool(self._fetch_all, query, params)
        return [Illustration.model_validate(row) for row in rows]

    def _add_illustration(self, illustration: Illustration, replace_selection: bool) -> Optional[dict[str, Any]]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            # lock the page row so concurrent inserts for one page apply the rule in turn
            cur.execute("SELECT id FROM project_pages WHERE id = %s FOR UPDATE", (illustration.page_id,))
            if cur.fetchone() is None:
                conn.rollback()
                return None
            if replace_selection:
                cur.execute(
                    "UPDATE project_illustrations SET is_selected = FALSE WHERE page_id = %s AND is_selected",
                    (illustration.page_id,),
                )
                selected = True
            else:
                cur.execute(
                    "SELECT 1 FROM project_illustrations WHERE page_id = %s AND is_selected LIMIT 1",
                    (illustration.page_id,),
                )
                selected = cur.fetchone() is None
            cur.execute(
                f"""
                INSERT INTO project_illustrations ({_ILLUSTRATION_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_ILLUSTRATION_COLUMNS}
                """,
                (
                    illustration.id,
                    illustration.project_id,
                    illustration.page_id,
                    illustration.storage_path,
                    illustration.generation_prompt,
                    selected,
                    illustration.created_at,
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return row

    async def add_illustration(self, illustration: Illustration, *, replace_selection: bool) -> Illustration:
        row = await run_in_threadpool(self._add_illustration, illustration, replace_selection)
        if row is None:
            raise PageNotFoundError(illustration.page_id)
        stored = Illustration.model_validate(row)
        self._emit(StoreTable.ILLUSTRATIONS, ChangeKind.INSERT, stored.project_id, stored.id)
        return stored

    def _select_illustration(self, page_id: UUID, illustration_id: UUID) -> Optional[dict[str, Any]]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT id FROM project_illustrations WHERE id = %s AND page_id = %s",
                (illustration_id, page_id),
            )
            if cur.fetchone() is None:
                conn.rollback()
                return None
            cur.execute(
                "UPDATE project_illustrations SET is_selected = FALSE WHERE page_id = %s AND is_selected",
                (page_id,),
            )
            cur.execute(
                f"UPDATE project_illustrations SET is_selected = TRUE WHERE id = %s RETURNING {_ILLUSTRATION_COLUMNS}",
                (illustration_id,),
            )
            row = cur.fetchone()
            conn.commit()
            return row

    async def select_illustration(self, page_id: UUID, illustration_id: UUID) -> Illustration:
        row = await run_in_threadpool(self._select_illustration, page_id, illustration_id)
        if row is None:
            raise PageNotFoundError(page_id)
        stored = Illustration.model_validate(row)
        self._emit(StoreTable.ILLUSTRATIONS, ChangeKind.UPDATE, stored.project_id, stored.id)
        return stored

    # build log

    async def append_build_log(self, entry: BuildLogEntry) -> BuildLogEntry:
        await run_in_threadpool(
            self._execute,
            """
            INSERT INTO build_log (id, project_id, phase, level, message, technical_message, metadata, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s)
            """,
            (
                entry.id,
                entry.project_id,
                entry.phase,
                entry.level.value,
                entry.message,
                entry.technical_message,
                json.dumps(entry.metadata, default=str),
                entry.created_at,
            ),
        )
        self._emit(StoreTable.BUILD_LOG, ChangeKind.INSERT, entry.project_id, entry.id)
        return entry

    async def list_build_log(self, project_id: UUID, limit: int = 200) -> list[BuildLogEntry]:
        rows = await run_in_threadpool(
            self._fetch_all,
            """
            SELECT id, project_id, phase, level, message, technical_message, metadata, created_at
            FROM (
                SELECT * FROM build_log WHERE project_id = %s ORDER BY created_at DESC LIMIT %s
            ) recent
            ORDER BY created_at
            """,
            (project_id, limit),
        )
        return [BuildLogEntry.model_validate(row) for row in rows]

    async def aclose(self) -> None:
        await run_in_threadpool(self._pool.close)
