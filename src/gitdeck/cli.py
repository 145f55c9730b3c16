import argparse
import logging
import sys
import time
from dataclasses import fields
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import Config
from .constants import APP_NAME, CONFIG_FILE, LOCAL_CONFIG_NAME
from .errors import GitDeckError, PatchApplyError
from .logs import setup_logging
from .models import ChangeSignal, DiffHunk, LineKind
from .orchestrator import RepositoryOrchestrator
from .watcher import RepositoryWatcher

logger = logging.getLogger(APP_NAME)
console = Console()

_PAST = {"stage": "Staged", "unstage": "Unstaged", "discard": "Discarded"}

_LINE_STYLES = {
    LineKind.ADDITION: "green",
    LineKind.DELETION: "red",
    LineKind.CONTEXT: "dim",
}


def _open(repo_path: Path, watch: bool = False) -> RepositoryOrchestrator:
    orchestrator = RepositoryOrchestrator(watch=watch)
    orchestrator.open(repo_path)
    return orchestrator


def _pick_hunk(
    orchestrator: RepositoryOrchestrator, file: str, number: int, staged: bool
) -> DiffHunk:
    """Looks up hunk `number` (1-based) of `file`, freshly read from git."""
    hunks = orchestrator.get_hunks(file, staged=staged)
    if not hunks:
        where = "staged" if staged else "unstaged"
        raise GitDeckError(f"No {where} changes in {file}")
    if number < 1 or number > len(hunks):
        raise GitDeckError(f"Hunk {number} out of range (1-{len(hunks)})")
    return hunks[number - 1]


def show_status(orchestrator: RepositoryOrchestrator) -> None:
    """Prints HEAD and the staged, unstaged and untracked files."""
    head = orchestrator.get_head()
    status = orchestrator.get_status()

    if head is None:
        head_line = "[yellow]No commits yet[/yellow]"
    elif head.detached:
        head_line = f"[yellow]Detached at {head.name}[/yellow]"
    else:
        head_line = f"On branch [cyan]{head.name}[/cyan]"

    if status.is_clean:
        console.print(
            Panel(f"{head_line}\n[green]Working tree clean.[/green]", expand=False)
        )
        return

    table = Table(
        show_header=True,
        header_style="bold magenta",
        title=Text.from_markup(head_line),
    )
    table.add_column("Area")
    table.add_column("State", justify="center")
    table.add_column("Path", style="cyan")
    for entry in status.staged:
        table.add_row("[green]staged[/green]", entry.state.value, entry.path)
    for entry in status.unstaged:
        table.add_row("[yellow]unstaged[/yellow]", entry.state.value, entry.path)
    for path in status.untracked:
        table.add_row("[dim]untracked[/dim]", "?", path)
    for entry in status.conflicted:
        table.add_row("[bold red]conflict[/bold red]", entry.state.value, entry.path)
    console.print(table)


def list_branches(orchestrator: RepositoryOrchestrator) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("", width=1)
    table.add_column("Branch", style="cyan")
    table.add_column("Upstream", style="dim")
    table.add_column("Ahead/Behind", justify="right")
    table.add_column("Commit", style="dim")

    for branch in orchestrator.get_branches():
        track = f"+{branch.ahead}/-{branch.behind}" if branch.upstream else "-"
        table.add_row(
            "*" if branch.is_head else "",
            branch.name,
            branch.upstream or "-",
            track,
            branch.sha[:7],
        )
    for branch in orchestrator.get_remote_branches():
        table.add_row("", f"[dim]{branch.name}[/dim]", "-", "-", branch.sha[:7])
    console.print(table)


def list_tags(orchestrator: RepositoryOrchestrator) -> None:
    tags = orchestrator.get_tags()
    if not tags:
        console.print("[yellow]No tags.[/yellow]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Tag", style="cyan")
    table.add_column("Type")
    table.add_column("Commit", style="dim")
    table.add_column("Date", justify="right", style="dim")
    for tag in tags:
        table.add_row(
            tag.name,
            "annotated" if tag.is_annotated else "lightweight",
            tag.sha[:7],
            tag.date.strftime("%Y-%m-%d %H:%M") if tag.date else "-",
        )
    console.print(table)


def list_remotes(orchestrator: RepositoryOrchestrator) -> None:
    remotes = orchestrator.get_remotes()
    if not remotes:
        console.print("[yellow]No remotes configured.[/yellow]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Remote", style="cyan")
    table.add_column("Fetch URL")
    table.add_column("Push URL", style="dim")
    for remote in remotes:
        table.add_row(
            remote.name, remote.fetch_url, remote.push_url or remote.fetch_url
        )
    console.print(table)


def list_stashes(orchestrator: RepositoryOrchestrator) -> None:
    stashes = orchestrator.get_stashes()
    if not stashes:
        console.print("[yellow]Stash list is empty.[/yellow]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Ref", style="cyan")
    table.add_column("Message")
    table.add_column("Date", justify="right", style="dim")
    for stash in stashes:
        table.add_row(
            stash.ref,
            stash.message,
            stash.date.strftime("%Y-%m-%d %H:%M") if stash.date else "-",
        )
    console.print(table)


def show_hunks(orchestrator: RepositoryOrchestrator, file: str, staged: bool) -> None:
    """Prints every hunk of `file` with the numbers the line commands expect."""
    hunks = orchestrator.get_hunks(file, staged=staged)
    if not hunks:
        where = "staged" if staged else "unstaged"
        console.print(f"[yellow]No {where} changes in {file}.[/yellow]")
        return
    for number, hunk in enumerate(hunks, start=1):
        console.print(f"[bold]Hunk {number}[/bold] [dim]{hunk.header}[/dim]")
        for index, line in enumerate(hunk.lines, start=1):
            text = Text(f"{index:>4} ", style="dim")
            text.append(line.kind.value + line.content, style=_LINE_STYLES[line.kind])
            console.print(text)
        console.print()


def apply_hunk(
    orchestrator: RepositoryOrchestrator, action: str, file: str, number: int
) -> None:
    staged = action == "unstage"
    hunk = _pick_hunk(orchestrator, file, number, staged)
    if action == "stage":
        orchestrator.stage_hunk(file, hunk)
    elif action == "unstage":
        orchestrator.unstage_hunk(file, hunk)
    else:
        orchestrator.discard_hunk(file, hunk)
    console.print(
        f"[bold green]✔ {_PAST[action]} hunk {number} of {file}.[/bold green]"
    )


def apply_line(
    orchestrator: RepositoryOrchestrator, action: str, file: str, number: int, line: int
) -> None:
    staged = action == "unstage"
    hunk = _pick_hunk(orchestrator, file, number, staged)
    index = line - 1
    if action == "stage":
        orchestrator.stage_line(file, hunk, index)
    elif action == "unstage":
        orchestrator.unstage_line(file, hunk, index)
    else:
        orchestrator.discard_line(file, hunk, index)
    console.print(
        f"[bold green]✔ {_PAST[action]} line {line} of hunk {number} "
        f"in {file}.[/bold green]"
    )


def pull(orchestrator: RepositoryOrchestrator, rebase: bool) -> None:
    with console.status("Pulling...", spinner="dots"):
        result = orchestrator.pull_with_auto_stash(rebase=rebase)
    style = "bold green" if result.is_fully_successful else "bold yellow"
    console.print(f"[{style}]{result.message}[/{style}]")


def watch(orchestrator: RepositoryOrchestrator) -> None:
    """Prints every delivered change signal until interrupted."""
    path = orchestrator.path
    settings = orchestrator.config.watcher

    def on_signal(signal: ChangeSignal) -> None:
        stamp = time.strftime("%H:%M:%S")
        console.print(f"[dim]{stamp}[/dim] [cyan]{signal.value}[/cyan]")
        orchestrator.handle_change_signal(signal)

    watcher = RepositoryWatcher(
        path,
        on_signal,
        git_dir=orchestrator.repo.git_dir if orchestrator.repo else None,
        debounce=settings.debounce,
        poll_interval=settings.poll_interval,
        watch_worktree=settings.watch_worktree,
        excludes=settings.exclude,
    )
    console.print(f"Watching [cyan]{path}[/cyan] (Ctrl-C to stop)...")
    watcher.start_all()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
    finally:
        watcher.stop_all()


def show_config(repo_path: Path) -> None:
    """Displays the effective configuration for a repository."""
    config = Config.load(repo_path)
    table = Table(title="Effective Configuration", show_lines=False)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Value", style="yellow")

    for section_name in ("cache", "watcher", "history", "limits"):
        section = getattr(config, section_name)
        first = True
        for f in fields(section):
            value = getattr(section, f.name)
            if isinstance(value, list):
                value = ", ".join(value)
            table.add_row(section_name if first else "", f.name, str(value))
            first = False
    console.print(table)
    console.print(
        f"[dim]Global: {CONFIG_FILE}  Local: {repo_path / LOCAL_CONFIG_NAME} "
        f"or \\[tool.{APP_NAME}] in pyproject.toml[/dim]"
    )


def main() -> None:
    """Main entry point for the gitdeck CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME, description="Inspect and stage a git repository."
    )
    parser.add_argument(
        "--repo",
        "-C",
        type=Path,
        default=Path.cwd(),
        help="Repository path (default: current directory)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log every git call"
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show HEAD and working tree status")
    subparsers.add_parser("branches", help="List local and remote branches")
    subparsers.add_parser("tags", help="List tags")
    subparsers.add_parser("remotes", help="List remotes")
    subparsers.add_parser("stashes", help="List stashes")

    hunks_parser = subparsers.add_parser("hunks", help="Show numbered hunks of a file")
    hunks_parser.add_argument("file", help="Repository-relative file path")
    hunks_parser.add_argument("--staged", action="store_true", help="Show staged hunks")

    for action in ("stage", "unstage", "discard"):
        hunk_parser = subparsers.add_parser(
            f"{action}-hunk", help=f"{action.capitalize()} a whole hunk"
        )
        hunk_parser.add_argument("file", help="Repository-relative file path")
        hunk_parser.add_argument("hunk", type=int, help="Hunk number (see 'hunks')")

        line_parser = subparsers.add_parser(
            f"{action}-line", help=f"{action.capitalize()} a single line"
        )
        line_parser.add_argument("file", help="Repository-relative file path")
        line_parser.add_argument("hunk", type=int, help="Hunk number (see 'hunks')")
        line_parser.add_argument("line", type=int, help="Line number within the hunk")

    pull_parser = subparsers.add_parser(
        "pull", help="Pull, stashing local changes around it"
    )
    pull_parser.add_argument(
        "--rebase", action="store_true", help="Rebase instead of merge"
    )

    subparsers.add_parser("watch", help="Print change signals as they are detected")
    subparsers.add_parser("config", help="Show the effective configuration")

    args = parser.parse_args()
    setup_logging(interactive=True, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        return

    try:
        if args.command == "config":
            show_config(args.repo)
            return

        orchestrator = _open(args.repo)
        try:
            if args.command == "status":
                show_status(orchestrator)
            elif args.command == "branches":
                list_branches(orchestrator)
            elif args.command == "tags":
                list_tags(orchestrator)
            elif args.command == "remotes":
                list_remotes(orchestrator)
            elif args.command == "stashes":
                list_stashes(orchestrator)
            elif args.command == "hunks":
                show_hunks(orchestrator, args.file, args.staged)
            elif args.command.endswith("-hunk"):
                action = args.command.split("-")[0]
                apply_hunk(orchestrator, action, args.file, args.hunk)
            elif args.command.endswith("-line"):
                action = args.command.split("-")[0]
                apply_line(orchestrator, action, args.file, args.hunk, args.line)
            elif args.command == "pull":
                pull(orchestrator, args.rebase)
            elif args.command == "watch":
                watch(orchestrator)
        finally:
            orchestrator.close()
    except PatchApplyError as e:
        console.print(f"[bold red]Patch rejected:[/bold red] {e.stderr.strip()}")
        console.print(f"[yellow]{e.hint}[/yellow]")
        sys.exit(1)
    except GitDeckError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
