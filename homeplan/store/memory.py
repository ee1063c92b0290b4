"""In-process store. Records are kept as serialized dicts so callers never share objects with it."""

from homeplan.lib.models import Project, Task
from homeplan.store.base import NotFoundError, Store


class MemoryStore(Store):

    def __init__(self):
        self._projects: dict[str, dict] = {}
        self._tasks: dict[str, dict[str, dict]] = {}

    def _require_project(self, project_id: str) -> dict:
        if project_id not in self._projects:
            raise NotFoundError("project", project_id)
        return self._projects[project_id]

    def load_project(self, project_id: str) -> Project:
        data = dict(self._require_project(project_id))
        stored = self._tasks[project_id]
        data["tasks"] = [stored[t] for t in data["taskIds"] if t in stored]
        return Project.from_dict(data)

    def save_project(self, project: Project) -> None:
        data = project.to_dict(include_tasks=False)
        data["taskIds"] = [t.id for t in project.tasks]
        self._projects[project.id] = data
        self._tasks.setdefault(project.id, {})

    def load_task(self, project_id: str, task_id: str) -> Task:
        self._require_project(project_id)
        record = self._tasks[project_id].get(task_id)
        if record is None:
            raise NotFoundError("task", f"{project_id}/{task_id}")
        return Task.from_dict(record)

    def save_task(self, project_id: str, task: Task) -> None:
        project = self._require_project(project_id)
        self._tasks[project_id][task.id] = task.to_dict()
        if task.id not in project["taskIds"]:
            project["taskIds"].append(task.id)

    def delete_task(self, project_id: str, task_id: str) -> None:
        project = self._require_project(project_id)
        if self._tasks[project_id].pop(task_id, None) is None:
            raise NotFoundError("task", f"{project_id}/{task_id}")
        project["taskIds"].remove(task_id)

    def list_projects(self) -> list[str]:
        return sorted(self._projects)
