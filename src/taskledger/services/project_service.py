"""Project persistence."""

import logging
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from taskledger.domain.models import CreateProjectInput, Project
from taskledger.services.row_mapping import row_to_project, utc_now

if TYPE_CHECKING:
    from taskledger.infrastructure.database import Database

logger = logging.getLogger(__name__)


class ProjectService:
    """Service for the projects tasks are grouped under."""

    def __init__(self, db: "Database") -> None:
        """Initialize project service.

        Args:
            db: Database instance for storage operations
        """
        self.db = db

    async def create(self, project_input: CreateProjectInput) -> Project:
        project_id = uuid4()

        async with self.db._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO projects (id, name, path, description, display_order, color, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(project_id),
                    project_input.name,
                    project_input.path,
                    project_input.description,
                    project_input.display_order,
                    project_input.color,
                    utc_now().isoformat(),
                ),
            )

        logger.info(f"Created project {project_id} ({project_input.name})")
        project = await self.find_by_id(project_id)
        assert project is not None
        return project

    async def find_by_id(self, project_id: UUID) -> Project | None:
        async with self.db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM projects WHERE id = ?", (str(project_id),))
            row = await cursor.fetchone()
            return row_to_project(row) if row else None

    async def find_all(self) -> list[Project]:
        async with self.db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM projects ORDER BY display_order ASC, name ASC")
            return [row_to_project(row) for row in await cursor.fetchall()]

    async def delete(self, project_id: UUID) -> bool:
        """Delete a project. Its tasks are kept and detached from it.

        Returns:
            True if the project existed
        """
        async with self.db._transaction() as conn:
            await conn.execute(
                "UPDATE tasks SET project_id = NULL WHERE project_id = ?", (str(project_id),)
            )
            cursor = await conn.execute("DELETE FROM projects WHERE id = ?", (str(project_id),))
            return cursor.rowcount > 0
