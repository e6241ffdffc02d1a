import sqlite3
from typing import Any

from text_humanizer import db
from text_humanizer.db import PersistError
from text_humanizer.schemas import Project


class ProjectRepository:
    """Thin record-store binding for saved projects. No business rules here."""

    def list(self, user_id: str) -> list[Project]:
        try:
            rows = db.list_projects(user_id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        return [Project(**r) for r in rows]

    def get(self, project_id: str) -> Project | None:
        try:
            row = db.get_project(project_id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        return Project(**row) if row else None

    def create(self, user_id: str, title: str, content: str) -> Project:
        try:
            row = db.create_project(user_id, title, content)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        return Project(**row)

    def update(self, project_id: str, fields: dict[str, Any]) -> None:
        try:
            updated = db.update_project(project_id, fields)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
        if fields and not updated:
            raise PersistError(f"project_not_found: {project_id}")

    def delete(self, project_id: str) -> None:
        try:
            db.delete_project(project_id)
        except sqlite3.Error as exc:
            raise PersistError(str(exc)) from exc
