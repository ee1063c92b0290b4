"""
Persistence interface.

The engine only sees this interface. Every call is all-or-nothing: a
failed save leaves the previously stored record in place.
"""

from abc import ABC, abstractmethod

from homeplan.lib.models import Project, Task


class StoreError(Exception):
    """Persistence failed (unreadable, invalid or unwritable record)."""
    pass


class NotFoundError(StoreError):
    """The requested project or task does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class Store(ABC):

    @abstractmethod
    def load_project(self, project_id: str) -> Project:
        """Load a project with all of its tasks."""

    @abstractmethod
    def save_project(self, project: Project) -> None:
        """Save the project record: property, rooms, project chat and task order.

        Task contents are saved separately with save_task().
        """

    @abstractmethod
    def load_task(self, project_id: str, task_id: str) -> Task:
        ...

    @abstractmethod
    def save_task(self, project_id: str, task: Task) -> None:
        """Save one task of an existing project, appending it to the task order if new."""

    @abstractmethod
    def delete_task(self, project_id: str, task_id: str) -> None:
        ...

    @abstractmethod
    def list_projects(self) -> list[str]:
        """Return stored project ids."""

    def project_exists(self, project_id: str) -> bool:
        return project_id in self.list_projects()
