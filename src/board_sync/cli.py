from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .backend.file_repo import FileBoardRepository
from .backend.http import HttpTaskBackend
from .backend.interfaces import TaskBackend
from .backend.local import LocalBackend
from .board.errors import BoardSyncError
from .board.model import Column, Role, SortBy, TaskFilters, Team, User
from .board.session import BoardSession
from .config import BoardSyncConfig, load_config
from .logging_utils import configure_logging, pretty, summarize_move_event, summarize_sync_state
from .server.api import create_app


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _config(args: argparse.Namespace) -> BoardSyncConfig:
    config, err = load_config(_resolve_project_dir(args.project_dir))
    if err:
        sys.stderr.write(f"Ignoring invalid config: {err}\n")
    return config


def _backend(args: argparse.Namespace, config: BoardSyncConfig) -> TaskBackend:
    if args.local:
        repo = FileBoardRepository(config.data_path(_resolve_project_dir(args.project_dir)))
        return LocalBackend(repo)
    return HttpTaskBackend(args.url or config.backend_url, timeout=config.backend_timeout_seconds)


def _user(args: argparse.Namespace) -> User:
    allowed = frozenset(s.strip() for s in (args.allowed or "").split(",") if s.strip())
    return User(
        id=args.as_user,
        role=Role(args.role),
        team=Team(args.user_team or args.team),
        allowed_statuses=allowed,
    )


def _session(args: argparse.Namespace, config: BoardSyncConfig, backend: TaskBackend, **filters) -> BoardSession:
    return BoardSession.from_config(
        backend,
        _user(args),
        config,
        filters=TaskFilters(team=Team(args.team), **filters),
    )


def _columns_table(columns: list[Column], title: str) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Column", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Tasks")
    for column in columns:
        tasks = ", ".join(f"{t.title} [dim]({t.id})[/dim]" for t in column.tasks)
        table.add_row(column.id, column.name, str(column.count), tasks)
    return table


async def _run_with_backend(args: argparse.Namespace, coro_factory) -> int:
    config = _config(args)
    backend = _backend(args, config)
    try:
        return await coro_factory(config, backend)
    except BoardSyncError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1
    finally:
        await backend.aclose()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _server(args: argparse.Namespace) -> int:
    import uvicorn

    project_dir = _resolve_project_dir(args.project_dir)
    config = _config(args)
    app = create_app(project_dir=project_dir, data_dir=config.data_path(project_dir))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def _statuses(args: argparse.Namespace) -> int:
    async def run(config: BoardSyncConfig, backend: TaskBackend) -> int:
        defs = await backend.fetch_status_definitions(Team(args.team))
        sys.stdout.write(pretty({"team": args.team, "statuses": [d.to_dict() for d in defs]}) + "\n")
        return 0

    return asyncio.run(_run_with_backend(args, run))


def _board(args: argparse.Namespace) -> int:
    async def run(config: BoardSyncConfig, backend: TaskBackend) -> int:
        session = _session(
            args,
            config,
            backend,
            search_query=args.search,
            sort_by=SortBy(args.sort_by),
            user_id=args.as_user if args.mine else None,
        )
        try:
            await session.load()
            Console().print(_columns_table(session.columns(), f"{args.team} board"))
        finally:
            await session.close()
        return 0

    return asyncio.run(_run_with_backend(args, run))


def _move(args: argparse.Namespace) -> int:
    async def run(config: BoardSyncConfig, backend: TaskBackend) -> int:
        session = _session(args, config, backend)
        try:
            await session.load()
            result = await session.request_move(args.task_id, args.column_id)
        finally:
            await session.close()
        payload = {
            "outcome": result.outcome.value,
            "task_id": result.task_id,
            "column_id": result.column_id,
            "previous_status": result.previous_status,
            "new_status": result.new_status,
        }
        if result.message:
            payload["message"] = result.message
        sys.stdout.write(pretty(payload) + "\n")
        return 0 if result.ok else 1

    return asyncio.run(_run_with_backend(args, run))


def _create(args: argparse.Namespace) -> int:
    async def run(config: BoardSyncConfig, backend: TaskBackend) -> int:
        session = _session(args, config, backend)
        try:
            await session.load()
            task = await session.create_task(
                args.title,
                args.status,
                description=args.description,
                priority=args.priority,
                assignee_id=args.assignee,
                due_date=args.due_date,
            )
        finally:
            await session.close()
        sys.stdout.write(pretty({"task": task.to_dict()}) + "\n")
        return 0

    return asyncio.run(_run_with_backend(args, run))


def _delete(args: argparse.Namespace) -> int:
    async def run(config: BoardSyncConfig, backend: TaskBackend) -> int:
        session = _session(args, config, backend)
        try:
            await session.load()
            task = await session.delete_task(args.task_id)
        finally:
            await session.close()
        sys.stdout.write(pretty({"deleted": task.id}) + "\n")
        return 0

    return asyncio.run(_run_with_backend(args, run))


def _watch(args: argparse.Namespace) -> int:
    console = Console()

    async def run(config: BoardSyncConfig, backend: TaskBackend) -> int:
        session = _session(args, config, backend)
        session.subscribe_columns(lambda columns: console.print(_columns_table(columns, f"{args.team} board")))
        session.events.subscribe(lambda event: console.print(summarize_move_event(event)))
        session.poller.on_sync_failure(
            lambda count, error: console.print(f"[red]Sync failing ({count} in a row): {error}[/red]")
        )
        async with session:
            try:
                if args.duration:
                    await asyncio.sleep(args.duration)
                else:
                    await asyncio.Event().wait()
            finally:
                console.print(summarize_sync_state(session.poller))
        return 0

    try:
        return asyncio.run(_run_with_backend(args, run))
    except KeyboardInterrupt:
        return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_backend_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--local", action="store_true", help="Use the project's task files directly instead of HTTP")
    parser.add_argument("--url", default=None, help="Board service URL (default: backend.url from config)")


def _add_user_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--as-user", default="cli", help="User id acting on the board")
    parser.add_argument(
        "--role",
        default=Role.EMPLOYEE.value,
        choices=[r.value for r in Role],
        help="Role of the acting user; only admin bypasses --allowed",
    )
    parser.add_argument("--user-team", default=None, choices=[t.value for t in Team], help="Defaults to --team")
    parser.add_argument("--allowed", default="", help="Comma-separated status codes a non-admin may act on")


def _add_team_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--team", default=Team.CREATIVE.value, choices=[t.value for t in Team])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Board Sync: multi-user task board engine")
    parser.add_argument("--project-dir", default=None, help="Project directory (default: current working directory)")
    parser.add_argument("--log-level", default=None, help="Override log_level from config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    server = subparsers.add_parser("server", help="Serve the board HTTP API")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", default=8000, type=int)
    server.set_defaults(func=_server)

    statuses = subparsers.add_parser("statuses", help="Print a team's status vocabulary")
    _add_team_arg(statuses)
    _add_backend_args(statuses)
    statuses.set_defaults(func=_statuses)

    board = subparsers.add_parser("board", help="Fetch once and print the board")
    _add_team_arg(board)
    _add_backend_args(board)
    _add_user_args(board)
    board.add_argument("--search", default=None)
    board.add_argument("--sort-by", default=SortBy.NONE.value, choices=[s.value for s in SortBy])
    board.add_argument("--mine", action="store_true", help="Only tasks assigned to --as-user")
    board.set_defaults(func=_board)

    move = subparsers.add_parser("move", help="Move a task into a column")
    move.add_argument("task_id")
    move.add_argument("column_id", help="Destination column, e.g. creative_scripting")
    _add_team_arg(move)
    _add_backend_args(move)
    _add_user_args(move)
    move.set_defaults(func=_move)

    create = subparsers.add_parser("create", help="Create a task")
    create.add_argument("title")
    create.add_argument("--status", default="not_started")
    create.add_argument("--description", default="")
    create.add_argument("--priority", default="medium", choices=["low", "medium", "high"])
    create.add_argument("--assignee", default=None)
    create.add_argument("--due-date", default=None)
    _add_team_arg(create)
    _add_backend_args(create)
    _add_user_args(create)
    create.set_defaults(func=_create)

    delete = subparsers.add_parser("delete", help="Delete a task")
    delete.add_argument("task_id")
    _add_team_arg(delete)
    _add_backend_args(delete)
    _add_user_args(delete)
    delete.set_defaults(func=_delete)

    watch = subparsers.add_parser("watch", help="Poll and re-render the board on change")
    _add_team_arg(watch)
    _add_backend_args(watch)
    _add_user_args(watch)
    watch.add_argument("--duration", default=None, type=float, help="Stop after this many seconds")
    watch.set_defaults(func=_watch)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    configure_logging(args.log_level or _config(args).log_level)
    return int(handler(args) or 0)


if __name__ == "__main__":
    raise SystemExit(main())
