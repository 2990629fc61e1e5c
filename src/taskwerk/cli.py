from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger

from .config import get_logging_config, load_config
from .constants import CONFIG_FILE, STATE_DIR_NAME
from .io_utils import _atomic_write_yaml
from .logging_utils import configure_logging
from .render import format_dependency_tree, format_task_table
from .session import SessionFile
from .task_engine.engine import TaskEngine
from .task_engine.hierarchy import ChildPolicy
from .task_engine.model import TaskPriority, TaskStatus

_DEFAULT_CONFIG: dict[str, Any] = {
    "lifecycle": {"cascade": False},
    "delete": {"child_policy": None},
    "store": {"id_prefix": "TASK"},
    "logging": {"level": "INFO", "file": None},
}


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(args: argparse.Namespace) -> TaskEngine:
    return TaskEngine.for_project(_resolve_project_dir(args.project_dir))


def _session_file(args: argparse.Namespace) -> SessionFile:
    return SessionFile(_resolve_project_dir(args.project_dir) / STATE_DIR_NAME)


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')


def _cascade_flag(args: argparse.Namespace) -> Optional[bool]:
    return getattr(args, 'cascade', None)


def _init(args: argparse.Namespace) -> int:
    state_dir = _resolve_project_dir(args.project_dir) / STATE_DIR_NAME
    config_path = state_dir / CONFIG_FILE
    created = not config_path.exists()
    if created:
        _atomic_write_yaml(config_path, _DEFAULT_CONFIG)
    _emit({'state_dir': str(state_dir), 'config_created': created})
    return 0


def _task_add(args: argparse.Namespace) -> int:
    task = _engine(args).create_task(
        args.name,
        description=args.description or '',
        priority=args.priority,
        parent_id=args.parent,
        assignee=args.assignee,
    )
    _emit({'task': task.to_dict()})
    return 0


def _task_list(args: argparse.Namespace) -> int:
    tasks = _engine(args).list_tasks(
        status=args.status,
        priority=args.priority,
        assignee=args.assignee,
        parent_id=args.parent,
        search=args.search,
    )
    if args.table:
        sys.stdout.write(format_task_table(tasks))
        return 0
    _emit({'tasks': [t.to_dict() for t in tasks], 'total': len(tasks)})
    return 0


def _task_show(args: argparse.Namespace) -> int:
    engine = _engine(args)
    task = engine.get_task(args.task_id)
    if task is None:
        sys.stderr.write(f"Task not found: {args.task_id}\n")
        return 1
    _emit({
        'task': task.to_dict(),
        'state': engine.get_task_state(task.id),
        'dependencies': engine.get_dependencies(task.id),
        'dependency_state': engine.get_dependency_status(task.id).value,
        'children': [c.id for c in engine.get_children(task.id)],
    })
    return 0


def _task_update(args: argparse.Namespace) -> int:
    changes = {
        key: value
        for key, value in (
            ('name', args.name),
            ('description', args.description),
            ('priority', args.priority),
            ('assignee', args.assignee),
        )
        if value is not None
    }
    task = _engine(args).update_task(args.task_id, changes)
    _emit({'task': task.to_dict()})
    return 0


def _task_transition(args: argparse.Namespace) -> int:
    result = _engine(args).transition(
        args.task_id,
        args.status,
        reason=getattr(args, 'reason', None),
        cascade=_cascade_flag(args),
    )
    _emit(result.to_dict())
    return 0


def _make_fixed_transition(status: TaskStatus):
    def _handler(args: argparse.Namespace) -> int:
        args.status = status
        return _task_transition(args)
    return _handler


def _session_transition(method: str):
    def _handler(args: argparse.Namespace) -> int:
        engine = _engine(args)
        session_file = _session_file(args)
        result, session = getattr(engine, method)(args.task_id, session_file.load())
        session_file.save(session)
        _emit({**result.to_dict(), 'session': session.to_dict()})
        return 0
    return _handler


def _session_show(args: argparse.Namespace) -> int:
    _emit({'session': _session_file(args).load().to_dict()})
    return 0


def _depend_add(args: argparse.Namespace) -> int:
    added = _engine(args).add_dependency(args.task_id, args.depends_on)
    _emit({'task_id': args.task_id, 'depends_on': args.depends_on, 'added': added})
    return 0


def _depend_remove(args: argparse.Namespace) -> int:
    removed = _engine(args).remove_dependency(args.task_id, args.depends_on)
    _emit({'task_id': args.task_id, 'depends_on': args.depends_on, 'removed': removed})
    return 0


def _depend_show(args: argparse.Namespace) -> int:
    engine = _engine(args)
    data = engine.get_dependencies(args.task_id)
    data['state'] = engine.get_dependency_status(args.task_id).value
    _emit(data)
    return 0


def _tree(args: argparse.Namespace) -> int:
    root = _engine(args).get_dependency_tree(args.task_id)
    if args.json:
        _emit({'tree': root.to_dict()})
        return 0
    sys.stdout.write(format_dependency_tree(root))
    return 0


def _ready(args: argparse.Namespace) -> int:
    tasks = _engine(args).get_ready_tasks()
    _emit({'tasks': [t.to_dict() for t in tasks], 'total': len(tasks)})
    return 0


def _history(args: argparse.Namespace) -> int:
    entries = _engine(args).get_history(args.task_id)
    _emit({'task_id': args.task_id, 'history': [h.to_dict() for h in entries]})
    return 0


def _parent(args: argparse.Namespace) -> int:
    task = _engine(args).set_parent(args.task_id, args.parent_id)
    _emit({'task': task.to_dict()})
    return 0


def _delete(args: argparse.Namespace) -> int:
    removed = _engine(args).delete_task(args.task_id, force=args.force, child_policy=args.child_policy)
    _emit({'removed': removed})
    return 0


def _validate(args: argparse.Namespace) -> int:
    try:
        if args.file == '-':
            raw = yaml.safe_load(sys.stdin.read())
        else:
            raw = yaml.safe_load(Path(args.file).read_text(encoding='utf-8'))
    except OSError as exc:
        sys.stderr.write(f"Cannot read {args.file}: {exc}\n")
        return 1
    except yaml.YAMLError as exc:
        sys.stderr.write(f"Invalid YAML in {args.file}: {exc}\n")
        return 1
    changes = raw.get('changes') if isinstance(raw, dict) else raw
    if not isinstance(changes, list):
        sys.stderr.write("Expected a list of changes (or a mapping with a 'changes' list)\n")
        return 1
    report = _engine(args).validate_bulk_transitions(changes)
    _emit(report)
    return 0 if report['valid'] else 1


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskwerk[server]'\n")
        return 1

    from .server import create_app

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def _add_cascade_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--cascade', dest='cascade', action='store_true', default=None, help='Apply the transition to child tasks')
    group.add_argument('--no-cascade', dest='cascade', action='store_false', help='Only change this task')
    parser.set_defaults(cascade=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Taskwerk task lifecycle CLI')
    parser.add_argument('--project-dir', default=None, help='Target project directory (default: current working directory)')
    parser.add_argument('--log-level', default=None, help='Override the configured log level')
    subparsers = parser.add_subparsers(dest='command', required=True)

    init = subparsers.add_parser('init', help='Create the .taskwerk directory and default config')
    init.set_defaults(func=_init)

    add = subparsers.add_parser('add', help='Create a task')
    add.add_argument('name')
    add.add_argument('--description', default='')
    add.add_argument('--priority', default='medium', choices=[p.value for p in TaskPriority])
    add.add_argument('--parent', default=None)
    add.add_argument('--assignee', default=None)
    add.set_defaults(func=_task_add)

    lst = subparsers.add_parser('list', help='List tasks')
    lst.add_argument('--status', default=None, choices=[s.value for s in TaskStatus])
    lst.add_argument('--priority', default=None, choices=[p.value for p in TaskPriority])
    lst.add_argument('--assignee', default=None)
    lst.add_argument('--parent', default=None)
    lst.add_argument('--search', default=None)
    lst.add_argument('--table', action='store_true', help='Print a table instead of JSON')
    lst.set_defaults(func=_task_list)

    show = subparsers.add_parser('show', help='Show a task with its state and dependencies')
    show.add_argument('task_id')
    show.set_defaults(func=_task_show)

    update = subparsers.add_parser('update', help='Edit task fields')
    update.add_argument('task_id')
    update.add_argument('--name', default=None)
    update.add_argument('--description', default=None)
    update.add_argument('--priority', default=None, choices=[p.value for p in TaskPriority])
    update.add_argument('--assignee', default=None)
    update.set_defaults(func=_task_update)

    status = subparsers.add_parser('status', help='Move a task to a new status')
    status.add_argument('task_id')
    status.add_argument('status')
    status.add_argument('--reason', default=None)
    _add_cascade_flags(status)
    status.set_defaults(func=_task_transition)

    for name, method, help_text in (
        ('start', 'start_task', 'Start working on a task'),
        ('pause', 'pause_task', 'Pause the task being worked on'),
        ('done', 'complete_task', 'Complete a task'),
    ):
        cmd = subparsers.add_parser(name, help=help_text)
        cmd.add_argument('task_id')
        cmd.set_defaults(func=_session_transition(method))

    block = subparsers.add_parser('block', help='Block a task')
    block.add_argument('task_id')
    block.add_argument('--reason', default=None)
    _add_cascade_flags(block)
    block.set_defaults(func=_make_fixed_transition(TaskStatus.BLOCKED))

    archive = subparsers.add_parser('archive', help='Archive a completed task')
    archive.add_argument('task_id')
    _add_cascade_flags(archive)
    archive.set_defaults(func=_make_fixed_transition(TaskStatus.ARCHIVED))

    session = subparsers.add_parser('session', help='Show the current work session')
    session.set_defaults(func=_session_show)

    depend = subparsers.add_parser('depend', help='Manage task dependencies')
    depend_sub = depend.add_subparsers(dest='depend_cmd', required=True)
    dadd = depend_sub.add_parser('add', help='Make a task depend on another')
    dadd.add_argument('task_id')
    dadd.add_argument('depends_on')
    dadd.set_defaults(func=_depend_add)
    dremove = depend_sub.add_parser('remove', help='Remove a dependency')
    dremove.add_argument('task_id')
    dremove.add_argument('depends_on')
    dremove.set_defaults(func=_depend_remove)
    dshow = depend_sub.add_parser('show', help='Show dependencies and dependents')
    dshow.add_argument('task_id')
    dshow.set_defaults(func=_depend_show)

    tree = subparsers.add_parser('tree', help='Show the dependency tree of a task')
    tree.add_argument('task_id')
    tree.add_argument('--json', action='store_true')
    tree.set_defaults(func=_tree)

    ready = subparsers.add_parser('ready', help='List tasks ready to start')
    ready.set_defaults(func=_ready)

    history = subparsers.add_parser('history', help='Show the change history of a task')
    history.add_argument('task_id')
    history.set_defaults(func=_history)

    parent = subparsers.add_parser('parent', help='Set or clear the parent of a task')
    parent.add_argument('task_id')
    parent.add_argument('parent_id', nargs='?', default=None)
    parent.set_defaults(func=_parent)

    delete = subparsers.add_parser('delete', help='Delete a task')
    delete.add_argument('task_id')
    delete.add_argument('--force', action='store_true')
    delete.add_argument('--child-policy', default=None, choices=[p.value for p in ChildPolicy])
    delete.set_defaults(func=_delete)

    validate = subparsers.add_parser('validate', help='Dry-run a batch of status changes')
    validate.add_argument('file', help="YAML/JSON file with the changes, or '-' for stdin")
    validate.set_defaults(func=_validate)

    server = subparsers.add_parser('server', help='Start the HTTP API server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    config, err = load_config(_resolve_project_dir(args.project_dir))
    settings = get_logging_config(config)
    log_file = Path(settings['file']) if settings['file'] else None
    if log_file is not None and not log_file.is_absolute():
        log_file = _resolve_project_dir(args.project_dir) / log_file
    configure_logging(args.log_level or settings['level'], log_file)
    if err:
        logger.warning("Ignoring unreadable config: {}", err)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    _configure_logging(args)
    try:
        return int(handler(args) or 0)
    except ValueError as exc:
        sys.stderr.write(str(exc) + '\n')
        return 1
