"""
Project Repository.

Projects, profiles and project membership.  Membership and profiles are
maintained in Supabase by the administration tools, so recipient lookups
go Supabase-first with the local mirror as fallback.
"""

from __future__ import annotations

from typing import Optional

from estimaflow.database import DatabaseManager
from estimaflow.logger import StructuredLogger
from estimaflow.models.enums import AppRole
from estimaflow.models.estimation import Project, RoleActivation
from estimaflow.models.user import Profile
from estimaflow.repositories.base_repository import BaseRepository


class ProjectRepository(BaseRepository):
    """Data access layer for projects and their members."""

    TABLE = "projects"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_by_id(self, project_id: str) -> Optional[Project]:
        """Fetch a project from the local store, or ``None``."""
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (project_id,)
        ).fetchone()
        return self._parse_project(dict(row)) if row else None

    def create(self, project: Project) -> Project:
        """Insert a project with its default role activation."""
        payload = {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "is_resident_active": int(project.default_activation.resident_active),
            "is_superintendent_active": int(project.default_activation.superintendent_active),
            "is_leader_active": int(project.default_activation.leader_active),
        }
        with self._db.batch_write():
            self.sqlite.execute(
                f"""
                INSERT INTO {self.TABLE}
                    (id, name, description, is_resident_active,
                     is_superintendent_active, is_leader_active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                tuple(payload.values()),
            )
            self._queue_pending_sync("insert", project.id, payload)
            self._commit()
        self._logger.info("Project %s (%s) created", project.id, project.name)
        return project

    # ------------------------------------------------------------------
    # Profiles & membership
    # ------------------------------------------------------------------

    def upsert_profile(self, profile: Profile) -> None:
        """Mirror a profile into the local store."""
        with self._db.write_lock:
            self.sqlite.execute(
                """
                INSERT INTO profiles (id, email, full_name) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email = excluded.email,
                                              full_name = excluded.full_name
                """,
                (profile.id, profile.email.strip().lower(), profile.full_name),
            )
            self._commit()

    def add_member(self, project_id: str, user_id: str, role: AppRole) -> None:
        """Grant *user_id* the *role* on a project (idempotent)."""
        with self._db.write_lock:
            self.sqlite.execute(
                """
                INSERT OR IGNORE INTO project_members (project_id, user_id, role)
                VALUES (?, ?, ?)
                """,
                (project_id, user_id, str(role)),
            )
            self._commit()

    def get_member_emails(self, project_id: str, role: AppRole) -> list[str]:
        """Email addresses of every member holding *role* on a project."""

        def _supabase() -> Optional[list[str]]:
            response = (
                self.supabase.table("project_members")
                .select("profiles(email)")
                .eq("project_id", project_id)
                .eq("role", str(role))
                .execute()
            )
            emails = [
                item["profiles"]["email"]
                for item in (response.data or [])
                if item.get("profiles") and item["profiles"].get("email")
            ]
            return emails or None

        def _sqlite() -> Optional[list[str]]:
            rows = self.sqlite.execute(
                """
                SELECT DISTINCT p.email
                FROM project_members m
                JOIN profiles p ON p.id = m.user_id
                WHERE m.project_id = ? AND m.role = ?
                ORDER BY p.email
                """,
                (project_id, str(role)),
            ).fetchall()
            return [row["email"] for row in rows] or None

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=list,
            operation_name=f"get_member_emails ({role})",
        )

    def get_email(self, user_id: str) -> Optional[str]:
        """Email address of a single profile, or ``None``."""

        def _supabase() -> Optional[str]:
            response = (
                self.supabase.table("profiles")
                .select("email")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
            return response.data.get("email") if response and response.data else None

        def _sqlite() -> Optional[str]:
            row = self.sqlite.execute(
                "SELECT email FROM profiles WHERE id = ?", (user_id,)
            ).fetchone()
            return row["email"] if row else None

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=lambda: None,
            operation_name="get_email (profiles)",
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse_project(self, row: dict[str, object]) -> Project:
        return Project(
            id=str(row["id"]),
            name=str(row["name"]),
            description=row.get("description"),
            default_activation=RoleActivation(
                resident_active=bool(row["is_resident_active"]),
                superintendent_active=bool(row["is_superintendent_active"]),
                leader_active=bool(row["is_leader_active"]),
            ),
            created_at=self._parse_datetime(row.get("created_at")),
        )
