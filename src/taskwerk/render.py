"""Plain-text renderings of tasks and dependency trees for the CLI."""

from __future__ import annotations

import io

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .task_engine.model import DependencyNode, Task

_STATUS_STYLE = {
    "todo": "white",
    "active": "cyan",
    "paused": "yellow",
    "blocked": "red",
    "completed": "green",
    "archived": "dim",
    "missing": "bold red",
}


def _node_label(node: DependencyNode) -> str:
    data = node.task_data()
    status = data["status"]
    style = _STATUS_STYLE.get(status, "white")
    title = data.get("name") or data.get("description") or ""
    return f"[{style}]{data['id']}[/{style}] {escape(title)} [dim]({status})[/dim]"


def format_dependency_tree(root: DependencyNode) -> str:
    """Render a dependency tree, one task per line, dependencies indented below."""
    tree = Tree(_node_label(root))
    stack: list[tuple[DependencyNode, Tree]] = [(root, tree)]
    while stack:
        node, branch = stack.pop()
        for dep in node.dependencies:
            stack.append((dep, branch.add(_node_label(dep))))

    console = Console(file=io.StringIO(), width=100, color_system=None)
    console.print(tree)
    return console.file.getvalue()


def format_task_table(tasks: list[Task]) -> str:
    console = Console(file=io.StringIO(), width=120, color_system=None)
    table = Table(box=None)
    table.add_column("ID", style="bold")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Parent")
    table.add_column("Depends on")
    table.add_column("Name")
    for t in tasks:
        style = _STATUS_STYLE.get(t.status.value, "white")
        table.add_row(
            t.id,
            f"[{style}]{t.status.value}[/{style}]",
            t.priority.value,
            t.parent_id or "",
            ", ".join(t.dependencies),
            escape(t.name),
        )
    console.print(table)
    return console.file.getvalue()
