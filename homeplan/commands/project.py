"""
homeplan init-project / rooms / summary / vision
"""

from homeplan.agents.dispatch import CancelToken
from homeplan.workflow.engine import PlanningEngine


def cmd_init_project(args, engine: PlanningEngine, token: CancelToken) -> int:
    project = engine.create_project(args.name, user_id=args.user, rooms=args.room)
    print(f"Created project {project.id}: {project.property.name}")
    if project.property.rooms:
        print(f"Rooms: {', '.join(r.name for r in project.property.rooms)}")
    return 0


def cmd_rooms_add(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    room = engine.add_room(project_id, args.name, photos=args.photo, cancel=token)
    photos = f" ({len(room.photos)} photos)" if room.photos else ""
    print(f"Added room {room.name}{photos}")
    return 0


def cmd_summary(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    summary = engine.summarize_project(project_id, cancel=token)
    if summary is None:
        print("Cancelled.")
        return 0
    print(summary)
    return 0


def cmd_vision(args, engine: PlanningEngine, project_id: str, token: CancelToken) -> int:
    statement = engine.refresh_vision_statement(project_id, cancel=token)
    if statement is None:
        print("No vision statement yet. Talk about your plans in the project chat first.")
        return 0
    print(f"Vision: {statement}")
    return 0
