"""Project service for loading and saving prompt sources."""

import json
import logging
from pathlib import Path

from filelock import FileLock
from pydantic import ValidationError

from workspace import Project


logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    """Project does not exist."""
    pass


class ProjectService:
    """Service for project files stored as JSON, one file per project."""

    def __init__(self, projects_dir: Path):
        """Initialize the service.

        Args:
            projects_dir: Path to projects/ directory
        """
        self.projects_dir = projects_dir

    def _project_file(self, project_id: int) -> Path:
        return self.projects_dir / f"{project_id}.json"

    def get_project(self, project_id: int) -> Project:
        """Load a project.

        Args:
            project_id: The project ID

        Returns:
            The project

        Raises:
            ProjectNotFoundError: If no file exists or it cannot be parsed
        """
        project_file = self._project_file(project_id)
        if not project_file.exists():
            raise ProjectNotFoundError(f"Project not found: {project_id}")

        try:
            return Project.model_validate_json(project_file.read_text())
        except ValidationError as e:
            logger.error(f"Invalid project file {project_file}: {e}")
            raise ProjectNotFoundError(f"Project {project_id} is unreadable") from e

    def list_projects(self) -> list[Project]:
        """Load every readable project, ordered by id."""
        if not self.projects_dir.exists():
            return []

        projects = []
        for project_file in self.projects_dir.glob("*.json"):
            try:
                projects.append(Project.model_validate_json(project_file.read_text()))
            except (ValidationError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping invalid project file {project_file.name}: {e}")
        return sorted(projects, key=lambda p: p.id)

    def save_project(self, project: Project) -> Project:
        """Write a project file, replacing any previous version."""
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        project_file = self._project_file(project.id)
        lock_path = project_file.with_suffix(".lock")

        with FileLock(lock_path, timeout=10):
            tmp_path = project_file.with_suffix(".tmp")
            tmp_path.write_text(project.model_dump_json(indent=2))
            tmp_path.replace(project_file)

        logger.info(f"Saved project {project.id} ({project.name})")
        return project
