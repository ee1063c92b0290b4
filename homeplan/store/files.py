"""
JSON file store.

Layout under the state directory:
  projects/<project_id>/project.json         project + property, task order
  projects/<project_id>/tasks/<task_id>.json one file per task

Each file is validated before writing and replaced atomically (temp file +
os.replace), so a reader never sees a half-written record.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from homeplan.lib.models import Project, Task
from homeplan.lib.validate import ValidationError, validate, validate_before_write
from homeplan.store.base import NotFoundError, Store, StoreError

logger = logging.getLogger(__name__)

PROJECT_FILENAME = "project.json"


def _write_json_atomic(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise StoreError(f"Failed to write {path}: {e}") from e


def _read_json(path: Path, schema_name: str) -> dict:
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise StoreError(f"Failed to read {path}: {e}") from e
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise StoreError(f"Invalid record in {path}: {e}") from e
    return data


def _check(data: dict, schema_name: str, path: Path) -> None:
    try:
        validate_before_write(data, schema_name, path)
    except ValidationError as e:
        raise StoreError(str(e)) from e


class FileStore(Store):
    """Stores projects and tasks as JSON files."""

    def __init__(self, state_dir: Path):
        self.root = Path(state_dir) / "projects"

    def _project_dir(self, project_id: str) -> Path:
        return self.root / project_id

    def _task_path(self, project_id: str, task_id: str) -> Path:
        return self._project_dir(project_id) / "tasks" / f"{task_id}.json"

    def _require_project(self, project_id: str) -> Path:
        path = self._project_dir(project_id) / PROJECT_FILENAME
        if not path.exists():
            raise NotFoundError("project", project_id)
        return path

    def load_project(self, project_id: str) -> Project:
        data = _read_json(self._require_project(project_id), "project")
        tasks = []
        for task_id in data.get("taskIds", []):
            path = self._task_path(project_id, task_id)
            if not path.exists():
                logger.warning(f"[STORE] {project_id}: task file missing for {task_id}, skipped")
                continue
            tasks.append(Task.from_dict(_read_json(path, "task")))
        data["tasks"] = [t.to_dict() for t in tasks]
        return Project.from_dict(data)

    def save_project(self, project: Project) -> None:
        project_data = project.to_dict(include_tasks=False)
        project_data["taskIds"] = [t.id for t in project.tasks]
        path = self._project_dir(project.id) / PROJECT_FILENAME
        _check(project_data, "project", path)
        _write_json_atomic(path, project_data)
        logger.debug(f"[STORE] Saved project {project.id}")

    def load_task(self, project_id: str, task_id: str) -> Task:
        self._require_project(project_id)
        path = self._task_path(project_id, task_id)
        if not path.exists():
            raise NotFoundError("task", f"{project_id}/{task_id}")
        return Task.from_dict(_read_json(path, "task"))

    def save_task(self, project_id: str, task: Task) -> None:
        project_path = self._require_project(project_id)
        path = self._task_path(project_id, task.id)
        record = task.to_dict()
        _check(record, "task", path)
        _write_json_atomic(path, record)

        # New task: append it to the project's task order
        project_data = _read_json(project_path, "project")
        task_ids = project_data.setdefault("taskIds", [])
        if task.id not in task_ids:
            task_ids.append(task.id)
            _write_json_atomic(project_path, project_data)
        logger.debug(f"[STORE] Saved task {project_id}/{task.id}")

    def delete_task(self, project_id: str, task_id: str) -> None:
        project_path = self._require_project(project_id)
        path = self._task_path(project_id, task_id)
        if not path.exists():
            raise NotFoundError("task", f"{project_id}/{task_id}")

        project_data = _read_json(project_path, "project")
        project_data["taskIds"] = [t for t in project_data.get("taskIds", []) if t != task_id]
        _write_json_atomic(project_path, project_data)
        path.unlink()
        logger.info(f"[STORE] Deleted task {project_id}/{task_id}")

    def list_projects(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if (p / PROJECT_FILENAME).exists())
