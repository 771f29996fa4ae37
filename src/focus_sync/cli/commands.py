# src/focus_sync/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..core.identity import Identity
from ..core.state import AppState
from ..tasks.repository import OperationResult, Outcome
from ..tasks.task_models import MUTABLE_FIELDS, Task

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /list, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def format_task(index: int, task: Task) -> str:
    mark = "x" if task.completed else " "
    extra = []
    if task.priority:
        extra.append(f"priority={task.priority}")
    if task.pomodoro_count:
        extra.append(f"pomodoros={task.pomodoro_count}")
    if task.due_date is not None:
        extra.append(f"due={_fmt_ts(task.due_date)}")
    if task.parent_id:
        extra.append(f"parent={task.parent_id[:8]}")
    suffix = f" ({', '.join(extra)})" if extra else ""
    return f"{index:>3}. [{mark}] {task.title} id={task.id[:8]}{suffix}"


async def _resolve(state: AppState, token: str) -> Task | None:
    """Accept a 1-based index into the current list or an id prefix."""
    tasks = await state.repository.list_tasks()
    if token.isdigit():
        idx = int(token) - 1
        return tasks[idx] if 0 <= idx < len(tasks) else None
    matches = [t for t in tasks if t.id.startswith(token)]
    return matches[0] if len(matches) == 1 else None


def _reply(result: OperationResult, done: str) -> str:
    if result.ok:
        return done
    if result.outcome is Outcome.CONFLICT:
        return f"Conflict: {result.message}"
    return f"Error: {result.message}"


def _parse_assignments(args: list[str]) -> dict[str, object]:
    """field=value pairs; values stay strings except a few obvious types."""
    out: dict[str, object] = {}
    for arg in args:
        key, sep, raw = arg.partition("=")
        if not sep or not key:
            raise ValueError(f"expected field=value, got {arg!r}")
        value: object = raw
        if key == "completed":
            value = raw.lower() in ("1", "true", "yes", "on")
        elif key in ("pomodoro_count", "position", "estimated_duration"):
            value = int(raw)
        elif key == "tags":
            value = [t for t in raw.split(",") if t]
        elif raw == "":
            value = None
        out[key] = value
    return out


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str]) -> str:
    ident = state.identity.current()
    who = ident.user_id if ident else "signed out (local store)"
    remote = getattr(state.settings, "rest_url", None) or "in-memory"
    tasks = await state.repository.list_tasks()
    done = sum(1 for t in tasks if t.completed)
    focus = await state.repository.get_active_task()
    return (
        "Status:\n"
        f"  User: {who}\n"
        f"  Remote: {state.remote_kind} ({remote})\n"
        f"  Tasks: {len(tasks)} ({done} completed)\n"
        f"  Focus: {focus.title if focus else '-'}"
    )


async def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list        -> all tasks
    /list active -> not completed
    /list done   -> completed
    /list overdue | today | high | medium | low | #tag -> open tasks only
    """
    sub = args[0].lower() if args else "all"
    repo = state.repository
    if sub == "active":
        tasks = await repo.active_tasks()
    elif sub == "done":
        tasks = await repo.completed_tasks()
    elif sub == "overdue":
        tasks = await repo.overdue_tasks()
    elif sub == "today":
        tasks = await repo.tasks_due_today()
    elif sub in ("high", "medium", "low"):
        tasks = await repo.tasks_by_priority(sub)
    elif sub.startswith("#") and len(sub) > 1:
        tasks = await repo.tasks_by_tag(args[0][1:])
    else:
        tasks = await repo.list_tasks()

    if not tasks:
        return "No tasks."
    # Indices always refer to the full list so /done 3 stays unambiguous.
    everything = await state.repository.list_tasks()
    index = {t.id: i for i, t in enumerate(everything, start=1)}
    return "\n".join(format_task(index.get(t.id, 0), t) for t in tasks)


async def cmd_add(state: AppState, args: list[str]) -> str:
    title = " ".join(args).strip()
    if not title:
        return "Usage: /add <title>"
    result = await state.repository.create(title)
    return _reply(result, f"Added: {result.task.title}" if result.task else "Added.")


async def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n|id>"
    task = await _resolve(state, args[0])
    if task is None:
        return f"No such task: {args[0]}"
    result = await state.repository.toggle_completion(task.id)
    state_word = "completed" if result.task and result.task.completed else "reopened"
    return _reply(result, f"Task {state_word}: {task.title}")


async def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return f"Usage: /edit <n|id> field=value ... (fields: {', '.join(sorted(MUTABLE_FIELDS))})"
    task = await _resolve(state, args[0])
    if task is None:
        return f"No such task: {args[0]}"
    try:
        fields = _parse_assignments(args[1:])
    except ValueError as e:
        return f"Error: {e}"
    result = await state.repository.update(task.id, fields)
    return _reply(result, f"Updated: {result.task.title if result.task else task.title}")


async def cmd_pomo(state: AppState, args: list[str]) -> str:
    if args:
        task = await _resolve(state, args[0])
        if task is None:
            return f"No such task: {args[0]}"
    else:
        task = await state.repository.get_active_task()
        if task is None:
            return "Usage: /pomo <n|id> (or pick a task with /focus first)"
    result = await state.repository.increment_counter(task.id)
    count = result.task.pomodoro_count if result.task else task.pomodoro_count
    return _reply(result, f"Pomodoro logged for {task.title} (total {count}).")


async def cmd_del(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /del <n|id>"
    task = await _resolve(state, args[0])
    if task is None:
        return f"No such task: {args[0]}"
    result = await state.repository.delete(task.id)
    return _reply(result, f"Deleted: {task.title}")


async def cmd_move(state: AppState, args: list[str]) -> str:
    """
    /move <from> <to> -> move a task within the list (1-based indices)
    """
    if len(args) != 2 or not all(a.isdigit() for a in args):
        return "Usage: /move <from> <to>"
    tasks = await state.repository.list_tasks()
    src, dst = int(args[0]) - 1, int(args[1]) - 1
    if not (0 <= src < len(tasks) and 0 <= dst < len(tasks)):
        return "Index out of range."
    ids = [t.id for t in tasks]
    ids.insert(dst, ids.pop(src))
    result = await state.repository.reorder(ids)
    if result.complete:
        return "Order saved."
    return f"Order partially saved: {len(result.failed)} task(s) could not be moved."


async def cmd_focus(state: AppState, args: list[str]) -> str:
    """
    /focus          -> show the task the pomodoro timer works on
    /focus <n|id>   -> select it
    /focus off      -> clear the selection
    """
    repo = state.repository
    if not args:
        task = await repo.get_active_task()
        return f"Focused on: {task.title}" if task else "No task in focus."
    if args[0].lower() == "off":
        await repo.set_active_task(None)
        return "Focus cleared."
    task = await _resolve(state, args[0])
    if task is None:
        return f"No such task: {args[0]}"
    if not await repo.set_active_task(task.id):
        return f"Cannot focus on a completed task: {task.title}"
    return f"Focused on: {task.title}"


async def cmd_sub(state: AppState, args: list[str]) -> str:
    """
    /sub <n|id>               -> list checklist items
    /sub <n|id> add <title>   -> add one
    /sub <n|id> done <k>      -> toggle item k (1-based)
    /sub <n|id> del <k>       -> delete item k
    """
    if not args:
        return "Usage: /sub <n|id> [add <title> | done <k> | del <k>]"
    task = await _resolve(state, args[0])
    if task is None:
        return f"No such task: {args[0]}"
    repo = state.repository

    if len(args) == 1:
        subtasks = await repo.subtasks_of(task.id)
        if not subtasks:
            return f"No subtasks for {task.title}."
        return "\n".join(
            f"{i:>3}. [{'x' if s.completed else ' '}] {s.title}" for i, s in enumerate(subtasks, start=1)
        )

    action, rest = args[1].lower(), args[2:]
    if action == "add":
        result = await repo.add_subtask(task.id, " ".join(rest))
        return _reply(result, f"Subtask added: {result.subtask.title}" if result.subtask else "Subtask added.")

    if action not in ("done", "del") or len(rest) != 1 or not rest[0].isdigit():
        return "Usage: /sub <n|id> [add <title> | done <k> | del <k>]"
    subtasks = await repo.subtasks_of(task.id)
    idx = int(rest[0]) - 1
    if not 0 <= idx < len(subtasks):
        return "Index out of range."
    item = subtasks[idx]
    if action == "done":
        result = await repo.toggle_subtask(task.id, item.id)
        word = "completed" if result.subtask and result.subtask.completed else "reopened"
        return _reply(result, f"Subtask {word}: {item.title}")
    result = await repo.delete_subtask(task.id, item.id)
    return _reply(result, f"Subtask deleted: {item.title}")


async def cmd_refresh(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("Reloading tasks...")
    result = await state.repository.refresh()
    return _reply(result, "Tasks reloaded.")


async def cmd_login(state: AppState, args: list[str]) -> str:
    """
    /login <user_id> [access_token]
    """
    if not args:
        return "Usage: /login <user_id> [access_token]"
    token = args[1] if len(args) > 1 else None
    try:
        state.identity.sign_in(Identity(user_id=args[0], access_token=token))
    except ValueError as e:
        return f"Error: {e}"
    result = await state.repository.refresh()
    return _reply(result, f"Signed in as {args[0]}.")


async def cmd_logout(state: AppState, args: list[str]) -> str:
    state.identity.sign_out()
    await state.repository.reload()
    return "Signed out. Tasks are now stored locally."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show user, remote and task counts.")
registry.register(
    "list",
    cmd_list,
    help_text="List tasks: /list [all|active|done|overdue|today|high|medium|low|#tag].",
    aliases=["ls"],
)
registry.register("add", cmd_add, help_text="Add a task: /add <title>.")
registry.register("done", cmd_done, help_text="Toggle completion: /done <n|id>.")
registry.register("edit", cmd_edit, help_text="Edit fields: /edit <n|id> field=value ...")
registry.register("pomo", cmd_pomo, help_text="Log a finished pomodoro: /pomo [n|id] (default: focused task).")
registry.register("del", cmd_del, help_text="Delete a task and its subtasks: /del <n|id>.", aliases=["rm"])
registry.register("move", cmd_move, help_text="Reorder: /move <from> <to>.")
registry.register("focus", cmd_focus, help_text="Pick the pomodoro task: /focus [n|id|off].")
registry.register("sub", cmd_sub, help_text="Subtasks: /sub <n|id> [add <title> | done <k> | del <k>].")
registry.register("refresh", cmd_refresh, help_text="Reload tasks from the remote store.")
registry.register("login", cmd_login, help_text="Sign in: /login <user_id> [access_token].")
registry.register("logout", cmd_logout, help_text="Sign out and use the local store.")
