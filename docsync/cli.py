"""Command-line front door for docsync.

Parses CLI options, resolves the configured project, and dispatches each
command onto one reconciliation, translation, or git operation.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from . import config as app_config
from .errors import ConfigError, DocSyncError
from .file_tree import count_statuses
from .git_backend import GitRepository
from .highlight import DEFAULT_STYLE, render_document
from .models import UPSTREAM_REMOTE, FILE_STATES, FileTreeNode
from .orchestrator import BatchResult, TranslationOrchestrator
from .reconcile import ReconciliationService
from .status_cache import status_file_path
from .translate import LLMTranslator

STATUS_MARKERS = {"translated": "+", "outdated": "~", "untranslated": "-"}


@dataclass
class CommandContext:
    config: app_config.AppConfig
    config_path: Path | None
    project_arg: str | None
    service: ReconciliationService

    def save_config(self) -> None:
        app_config.save_app_config(self.config, self.config_path)

    def project_config(self) -> app_config.ProjectConfig:
        """Explicit ``--project``, else the active project, else the CWD if configured."""
        if self.project_arg is not None:
            found = self.config.find_project(self.project_arg)
            if found is None:
                raise ConfigError(f"unknown project: {self.project_arg}")
            return found
        active = app_config.get_active_project(self.config)
        if active is not None:
            return active
        found = self.config.find_project(Path.cwd())
        if found is None:
            raise ConfigError("no project selected; run `docsync project add PATH` first")
        return found

    def repo(self) -> GitRepository:
        return self.service.repo_for(Path(self.project_config().path))


Handler = Callable[[CommandContext, argparse.Namespace], Awaitable[None]]


def _positive_int(value: str) -> int:
    """argparse type for positive integer values."""
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("value must be >= 1")
    return parsed


def format_tree(nodes: list[FileTreeNode], depth: int = 0) -> list[str]:
    """Indented tree rows; files show a status marker and ``M`` when modified."""
    lines: list[str] = []
    indent = "  " * depth
    for node in nodes:
        if node.is_dir:
            lines.append(f"{indent}{node.name}/")
            lines.extend(format_tree(node.children or [], depth + 1))
            continue
        marker = STATUS_MARKERS.get(node.status, "?")
        suffix = " M" if node.modified else ""
        lines.append(f"{indent}{marker} {node.name}{suffix}")
    return lines


def format_counts(nodes: list[FileTreeNode]) -> str:
    counts = count_statuses(nodes)
    return ", ".join(f"{counts[state]} {state}" for state in FILE_STATES)


def _print_lines(lines: list[str]) -> None:
    for line in lines:
        sys.stdout.write(line + "\n")


# project


async def _project_add(ctx: CommandContext, args: argparse.Namespace) -> None:
    added = await app_config.add_project(ctx.config, args.path, name=args.name)
    ctx.save_config()
    _print_lines(
        [
            f"added {added.name} ({added.path})",
            f"  upstream: {UPSTREAM_REMOTE}/{added.upstream_branch} {added.upstream_url or '(no upstream remote)'}",
            f"  working:  {added.working_branch}",
        ]
    )


async def _project_list(ctx: CommandContext, args: argparse.Namespace) -> None:
    if not ctx.config.projects:
        _print_lines(["no projects configured"])
        return
    rows = []
    for project in ctx.config.projects:
        active = "*" if project.path == ctx.config.active_project else " "
        rows.append(
            f"{active} {project.name}  {project.path}  "
            f"({UPSTREAM_REMOTE}/{project.upstream_branch} -> {project.working_branch})"
        )
    _print_lines(rows)


async def _project_remove(ctx: CommandContext, args: argparse.Namespace) -> None:
    app_config.remove_project(ctx.config, args.path)
    ctx.save_config()


async def _project_use(ctx: CommandContext, args: argparse.Namespace) -> None:
    chosen = app_config.set_active_project(ctx.config, args.path)
    ctx.save_config()
    _print_lines([f"active project: {chosen.name}"])


# reconciliation


async def _tree(ctx: CommandContext, args: argparse.Namespace) -> None:
    project = ctx.project_config().to_project()
    if args.sync:
        nodes = await ctx.service.sync_file_statuses(project)
    else:
        nodes = await ctx.service.get_file_tree(project)
    _print_lines(format_tree(nodes))
    _print_lines([format_counts(nodes)])


async def _status(ctx: CommandContext, args: argparse.Namespace) -> None:
    project = ctx.project_config().to_project()
    status = await ctx.service.get_status(project, args.path)
    parts = [f"{status.path}: {status.status}"]
    if status.last_hash:
        parts.append(f"translated against {status.last_hash[:12]}")
    if status.modified:
        parts.append("modified")
    commit = await ctx.service.upstream.last_commit(project, status.path, project.upstream_ref)
    if commit:
        parts.append(f"upstream commit {commit[:12]}")
    _print_lines([", ".join(parts)])


async def _sync(ctx: CommandContext, args: argparse.Namespace) -> None:
    project = ctx.project_config().to_project()
    nodes = await ctx.service.sync_file_statuses(project)
    _print_lines([format_counts(nodes)])


async def _show(ctx: CommandContext, args: argparse.Namespace) -> None:
    project = ctx.project_config().to_project()
    content = await ctx.service.get_file_content(project, args.path)
    color = not args.no_color and sys.stdout.isatty()
    sections = []
    if args.side in ("original", "both"):
        sections.append((f"== original ({project.upstream_ref}) ==", content.original))
    if args.side in ("translated", "both"):
        label = f"== translation ({content.status}{', modified' if content.has_changes else ''}) =="
        sections.append((label, content.translated))
    for header, text in sections:
        sys.stdout.write(header + "\n")
        sys.stdout.write(render_document(text, args.path, color=color, style=args.style))
        if not text.endswith("\n"):
            sys.stdout.write("\n")


async def _translate(ctx: CommandContext, args: argparse.Namespace) -> None:
    project_cfg = ctx.project_config()
    project = project_cfg.to_project()
    translator = LLMTranslator(ctx.config.llm, app_config.resolve_prompt(ctx.config, None))
    orchestrator = TranslationOrchestrator(
        ctx.service,
        translator,
        allow_fallback=not args.no_fallback,
        concurrency=ctx.config.llm.concurrency,
    )

    def report(path: str, result: BatchResult) -> None:
        if result.ok and result.outcome is not None:
            note = " (fallback text, review before committing)" if result.outcome.fallback else ""
            for cell_error in result.outcome.cell_errors:
                note += f"\n    cell {cell_error.cell_index}: {cell_error.error}"
            sys.stdout.write(f"ok    {path}{note}\n")
        else:
            sys.stdout.write(f"FAIL  {path}: {result.error}\n")

    results = await orchestrator.translate_batch(project, args.paths, args.concurrency, on_progress=report)
    failed = [path for path, result in results.items() if not result.ok]
    if failed:
        raise DocSyncError(f"{len(failed)} of {len(results)} files failed to translate")


async def _check(ctx: CommandContext, args: argparse.Namespace) -> None:
    llm = ctx.config.llm
    translator = LLMTranslator(llm)
    if not await translator.validate():
        raise DocSyncError(f"translate backend rejected the configuration: {llm.base_url} ({llm.model})")
    _print_lines([f"translate backend ok: {llm.base_url} ({llm.model})"])


async def _clear_cache(ctx: CommandContext, args: argparse.Namespace) -> None:
    project = ctx.project_config().to_project()
    if args.branch:
        ctx.service.clear_branch_cache(project)
    else:
        ctx.service.clear_project_cache(project)
    if args.purge:
        target = status_file_path(project.root, project.working_branch)
        target.unlink(missing_ok=True)
        _print_lines([f"removed {target}"])


# branches


async def _branches(ctx: CommandContext, args: argparse.Namespace) -> None:
    project_cfg = ctx.project_config()
    repo = ctx.service.repo_for(Path(project_cfg.path))
    local = await repo.list_local_branches()
    upstream = await repo.list_remote_branches(UPSTREAM_REMOTE) if await repo.has_remote(UPSTREAM_REMOTE) else []
    lines = ["working:"]
    lines.extend(f"  {'*' if name == project_cfg.working_branch else ' '} {name}" for name in local)
    lines.append("upstream:")
    lines.extend(f"  {'*' if name == project_cfg.upstream_branch else ' '} {name}" for name in upstream)
    _print_lines(lines)


async def _fetch(ctx: CommandContext, args: argparse.Namespace) -> None:
    project = ctx.project_config().to_project()
    await ctx.service.fetch_upstream(project)
    _print_lines([f"fetched {UPSTREAM_REMOTE}"])


async def _switch_upstream(ctx: CommandContext, args: argparse.Namespace) -> None:
    project_cfg = ctx.project_config()
    switched = ctx.service.switch_upstream_branch(project_cfg.to_project(), args.branch)
    app_config.update_project(ctx.config, project_cfg.path, upstream_branch=switched.upstream_branch)
    ctx.save_config()
    _print_lines([f"upstream branch: {switched.upstream_ref}"])


async def _switch_working(ctx: CommandContext, args: argparse.Namespace) -> None:
    project_cfg = ctx.project_config()
    switched = await ctx.service.switch_working_branch(project_cfg.to_project(), args.branch, force=args.force)
    app_config.update_project(ctx.config, project_cfg.path, working_branch=switched.working_branch)
    ctx.save_config()
    _print_lines([f"working branch: {switched.working_branch}"])


# git


async def _git_status(ctx: CommandContext, args: argparse.Namespace) -> None:
    repo = ctx.repo()
    rows = await repo.working_tree_status()
    if not rows:
        _print_lines(["working tree clean"])
        return
    _print_lines([f"{'S' if row.staged else ' '} {row.status:<9} {row.path}" for row in rows])


async def _git_stage(ctx: CommandContext, args: argparse.Namespace) -> None:
    repo = ctx.repo()
    if args.all:
        await repo.stage_all()
        return
    if not args.paths:
        raise DocSyncError("nothing to stage; pass paths or --all")
    for path in args.paths:
        await repo.stage(path)


async def _git_unstage(ctx: CommandContext, args: argparse.Namespace) -> None:
    repo = ctx.repo()
    for path in args.paths:
        await repo.unstage(path)


async def _git_commit(ctx: CommandContext, args: argparse.Namespace) -> None:
    repo = ctx.repo()
    if args.push:
        await repo.commit_and_push(args.message, args.remote)
    else:
        await repo.commit(args.message)


async def _git_push(ctx: CommandContext, args: argparse.Namespace) -> None:
    repo = ctx.repo()
    await repo.push(args.remote, args.branch)


REMOTE_URL_FIELDS = {"origin": "origin_url", UPSTREAM_REMOTE: "upstream_url"}


def _remember_remote_url(ctx: CommandContext, name: str, url: str) -> None:
    field_name = REMOTE_URL_FIELDS.get(name)
    if field_name is None:
        return
    project_cfg = ctx.project_config()
    app_config.update_project(ctx.config, project_cfg.path, **{field_name: url})
    ctx.save_config()
    if name == UPSTREAM_REMOTE:
        ctx.service.upstream.invalidate_project(Path(project_cfg.path))


async def _git_remote_list(ctx: CommandContext, args: argparse.Namespace) -> None:
    remotes = await ctx.repo().list_remotes()
    if not remotes:
        _print_lines(["no remotes configured"])
        return
    _print_lines([f"{remote.name}  {remote.url}" for remote in remotes])


async def _git_remote_add(ctx: CommandContext, args: argparse.Namespace) -> None:
    await ctx.repo().add_remote(args.name, args.url)
    _remember_remote_url(ctx, args.name, args.url.strip())
    _print_lines([f"added remote {args.name}"])


async def _git_remote_set_url(ctx: CommandContext, args: argparse.Namespace) -> None:
    await ctx.repo().set_remote_url(args.name, args.url)
    _remember_remote_url(ctx, args.name, args.url.strip())
    _print_lines([f"remote {args.name} now points at {args.url.strip()}"])


async def _git_remote_remove(ctx: CommandContext, args: argparse.Namespace) -> None:
    await ctx.repo().remove_remote(args.name)
    _remember_remote_url(ctx, args.name, "")
    _print_lines([f"removed remote {args.name}"])


async def _git_log(ctx: CommandContext, args: argparse.Namespace) -> None:
    repo = ctx.repo()
    commits = await repo.commit_history(args.limit)
    _print_lines([f"{commit.short_hash} {commit.date} {commit.author}: {commit.message}" for commit in commits])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsync",
        description="Keep translated documentation in sync with an upstream repository.",
    )
    parser.add_argument("--config", default=None, help="Path to the config file (default: user config dir).")
    parser.add_argument("--project", default=None, help="Project path (default: the active project).")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Log more (-v info, -vv debug).")
    commands = parser.add_subparsers(dest="command", required=True)

    project = commands.add_parser("project", help="Manage configured projects.")
    project_commands = project.add_subparsers(dest="project_command", required=True)
    add = project_commands.add_parser("add", help="Register a git repository.")
    add.add_argument("path")
    add.add_argument("--name", default=None)
    add.set_defaults(handler=_project_add)
    project_commands.add_parser("list", help="List projects.").set_defaults(handler=_project_list)
    remove = project_commands.add_parser("remove", help="Forget a project.")
    remove.add_argument("path")
    remove.set_defaults(handler=_project_remove)
    use = project_commands.add_parser("use", help="Select the active project.")
    use.add_argument("path")
    use.set_defaults(handler=_project_use)

    tree = commands.add_parser("tree", help="Show the status tree of watched files.")
    tree.add_argument("--sync", action="store_true", help="Recompute statuses before printing.")
    tree.set_defaults(handler=_tree)

    status = commands.add_parser("status", help="Show the status of one file.")
    status.add_argument("path")
    status.set_defaults(handler=_status)

    commands.add_parser("sync", help="Recompute all statuses.").set_defaults(handler=_sync)

    show = commands.add_parser("show", help="Print the upstream original and the translation.")
    show.add_argument("path")
    show.add_argument("--side", choices=("original", "translated", "both"), default="both")
    show.add_argument("--style", default=DEFAULT_STYLE, help="Pygments style name.")
    show.add_argument("--no-color", action="store_true", help="Disable color output even on TTY.")
    show.set_defaults(handler=_show)

    translate = commands.add_parser("translate", help="Translate files from upstream.")
    translate.add_argument("paths", nargs="+")
    translate.add_argument("--concurrency", type=_positive_int, default=None)
    translate.add_argument("--no-fallback", action="store_true", help="Fail instead of writing fallback text.")
    translate.set_defaults(handler=_translate)

    commands.add_parser("check", help="Verify the translate backend settings.").set_defaults(handler=_check)

    clear = commands.add_parser("clear-cache", help="Drop cached statuses and upstream hashes.")
    clear.add_argument("--branch", action="store_true", help="Only the current working branch.")
    clear.add_argument("--purge", action="store_true", help="Also delete the branch's status file.")
    clear.set_defaults(handler=_clear_cache)

    commands.add_parser("branches", help="List working and upstream branches.").set_defaults(handler=_branches)
    commands.add_parser("fetch", help="Fetch the upstream remote.").set_defaults(handler=_fetch)

    switch_upstream = commands.add_parser("switch-upstream", help="Compare against another upstream branch.")
    switch_upstream.add_argument("branch")
    switch_upstream.set_defaults(handler=_switch_upstream)

    switch_working = commands.add_parser("switch-working", help="Check out another working branch.")
    switch_working.add_argument("branch")
    switch_working.add_argument("--force", action="store_true", help="Switch even with uncommitted changes.")
    switch_working.set_defaults(handler=_switch_working)

    git = commands.add_parser("git", help="Git workflow helpers.")
    git_commands = git.add_subparsers(dest="git_command", required=True)
    git_commands.add_parser("status").set_defaults(handler=_git_status)
    stage = git_commands.add_parser("stage")
    stage.add_argument("paths", nargs="*")
    stage.add_argument("--all", action="store_true")
    stage.set_defaults(handler=_git_stage)
    unstage = git_commands.add_parser("unstage")
    unstage.add_argument("paths", nargs="+")
    unstage.set_defaults(handler=_git_unstage)
    commit = git_commands.add_parser("commit")
    commit.add_argument("-m", "--message", required=True)
    commit.add_argument("--push", action="store_true")
    commit.add_argument("--remote", default="origin")
    commit.set_defaults(handler=_git_commit)
    push = git_commands.add_parser("push")
    push.add_argument("--remote", default="origin")
    push.add_argument("--branch", default=None)
    push.set_defaults(handler=_git_push)
    log = git_commands.add_parser("log")
    log.add_argument("-n", "--limit", type=_positive_int, default=20)
    log.set_defaults(handler=_git_log)
    remote = git_commands.add_parser("remote", help="Manage git remotes.")
    remote_commands = remote.add_subparsers(dest="remote_command", required=True)
    remote_commands.add_parser("list").set_defaults(handler=_git_remote_list)
    remote_add = remote_commands.add_parser("add")
    remote_add.add_argument("name")
    remote_add.add_argument("url")
    remote_add.set_defaults(handler=_git_remote_add)
    remote_set_url = remote_commands.add_parser("set-url")
    remote_set_url.add_argument("name")
    remote_set_url.add_argument("url")
    remote_set_url.set_defaults(handler=_git_remote_set_url)
    remote_remove = remote_commands.add_parser("remove")
    remote_remove.add_argument("name")
    remote_remove.set_defaults(handler=_git_remote_remove)

    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and run one command.

    ``DocSyncError`` failures exit with their message instead of a traceback.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    config_path = Path(args.config) if args.config else None
    ctx = CommandContext(
        config=app_config.load_app_config(config_path),
        config_path=config_path,
        project_arg=args.project,
        service=ReconciliationService(),
    )
    handler: Handler = args.handler
    try:
        asyncio.run(handler(ctx, args))
    except DocSyncError as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
