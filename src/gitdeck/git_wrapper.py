import datetime
import logging
import re
from pathlib import Path

from .constants import APP_NAME, GIT_APPLY_ARGS
from .diff import parse_diff
from .errors import CommandError, NotARepositoryError, PatchApplyError
from .models import (
    Branch,
    FileDiff,
    FileState,
    FileStatus,
    Reference,
    Remote,
    RepositoryStatus,
    ResetMode,
    Stash,
    Tag,
)
from .runner import CommandRunner

logger = logging.getLogger(APP_NAME)

FIELD_SEP = "\x00"
RECORD_SEP = "\x1e"

# Pinned so user diff settings (noprefix, mnemonicPrefix, quotePath) cannot change
# the paths the parser and `git apply` see.
DIFF_ARGS = [
    "-c",
    "core.quotePath=off",
    "diff",
    "--no-color",
    "--no-ext-diff",
    "--src-prefix=a/",
    "--dst-prefix=b/",
]


def _parse_date(value: str) -> datetime.datetime | None:
    """Parses git's `iso` / `iso-strict` date formats."""
    value = value.strip()
    if not value:
        return None
    for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return datetime.datetime.strptime(value, fmt)
        except ValueError:
            continue
    logger.debug(f"Unparseable git date: {value!r}")
    return None


def _parse_track(info: str) -> tuple[int, int]:
    """Parses `%(upstream:track)` output such as '[ahead 2, behind 1]'."""
    ahead = re.search(r"ahead (\d+)", info)
    behind = re.search(r"behind (\d+)", info)
    return (
        int(ahead.group(1)) if ahead else 0,
        int(behind.group(1)) if behind else 0,
    )


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every method shells out through a `CommandRunner` and parses the result into the
    immutable snapshot types of `gitdeck.models`. Nothing is cached here; caching
    is the orchestrator's concern. Instances hold no state beyond their path, so
    they are safe to use from a background thread.

    Attributes:
        path (Path): The file system path to the repository root.
        runner (CommandRunner): The process boundary used for every git call.
    """

    def __init__(self, path: Path, runner: CommandRunner | None = None):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            runner (CommandRunner | None): Process runner. Defaults to plain `git`.

        Raises:
            NotARepositoryError: If the specified path does not contain a .git entry.
        """
        self.path = Path(path)
        self.runner = runner or CommandRunner()
        if not (self.path / ".git").exists():
            raise NotARepositoryError(self.path)

    # --- Construction ---

    @classmethod
    def open(cls, path: Path, runner: CommandRunner | None = None) -> "GitRepo":
        """Opens an existing repository, resolving `path` to its top level.

        Raises:
            NotARepositoryError: If `path` is not inside a work tree.
        """
        runner = runner or CommandRunner()
        res = runner.run(["rev-parse", "--show-toplevel"], cwd=Path(path))
        if not res.ok:
            raise NotARepositoryError(path)
        return cls(Path(res.stdout.strip()), runner)

    @classmethod
    def clone(
        cls, url: str, path: Path, runner: CommandRunner | None = None
    ) -> "GitRepo":
        """Clones `url` into `path`, creating parent directories as needed.

        Args:
            url (str): Any URL or path `git clone` accepts.
            path (Path): Destination directory; must not exist or be empty.
            runner (CommandRunner | None): Process runner for the new repository.

        Returns:
            GitRepo: The cloned repository.
        """
        runner = runner or CommandRunner()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        runner.run(["clone", url, str(path)], cwd=path.parent).check()
        return cls(path, runner)

    @classmethod
    def init(cls, path: Path, runner: CommandRunner | None = None) -> "GitRepo":
        """Creates an empty repository at `path`.

        Returns:
            GitRepo: The new repository.
        """
        runner = runner or CommandRunner()
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        runner.run(["init"], cwd=path).check()
        return cls(path, runner)

    # --- Plumbing ---

    def _run(
        self, args: list[str], input: str | None = None, strip: bool = True
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            input (str | None): Text written to the command's stdin.
            strip (bool): Whether to strip surrounding whitespace from stdout.

        Returns:
            str: The command's stdout.

        Raises:
            CommandError: If the git command returns a non-zero exit code.
        """
        res = self.runner.run(args, cwd=self.path, input=input).check()
        return res.stdout.strip() if strip else res.stdout

    def run_raw(self, args: list[str]) -> str:
        """Runs an arbitrary git argv (without the leading 'git')."""
        return self._run(args)

    @property
    def git_dir(self) -> Path:
        """The control directory (resolves `.git` files used by worktrees)."""
        dot_git = self.path / ".git"
        if dot_git.is_file():
            text = dot_git.read_text().strip()
            if text.startswith("gitdir:"):
                target = Path(text[len("gitdir:") :].strip())
                if target.is_absolute():
                    return target
                return (self.path / target).resolve()
        return dot_git

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash, or None if it does not exist."""
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except CommandError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    # --- Read operations ---

    def head(self) -> Reference | None:
        """Returns what HEAD points at, or None in a repository without commits."""
        sha = self.rev_parse("HEAD") or ""
        res = self.runner.run(["symbolic-ref", "--short", "-q", "HEAD"], cwd=self.path)
        if res.ok and res.stdout.strip():
            return Reference(name=res.stdout.strip(), sha=sha)
        if not sha:
            return None
        return Reference(name=sha[:7], sha=sha, detached=True)

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The branch name, or '' when HEAD is detached.
        """
        return self._run(["branch", "--show-current"])

    def status(self) -> RepositoryStatus:
        """Parses `git status --porcelain=v1 -z` into staged/unstaged/untracked."""
        output = self._run(["status", "--porcelain=v1", "-z", "-uall"], strip=False)
        staged: list[FileStatus] = []
        unstaged: list[FileStatus] = []
        untracked: list[str] = []
        conflicted: list[FileStatus] = []

        entries = output.split("\x00")
        i = 0
        while i < len(entries):
            entry = entries[i]
            i += 1
            if len(entry) < 4:
                continue
            x, y, path = entry[0], entry[1], entry[3:]
            orig_path = None
            if x in "RC":
                # Renames carry the source path as the next NUL-separated field.
                orig_path = entries[i] if i < len(entries) else None
                i += 1

            if x == "?" and y == "?":
                untracked.append(path)
                continue
            if x == "!":
                continue
            if "U" in (x, y) or (x, y) in (("A", "A"), ("D", "D")):
                conflicted.append(FileStatus(path, FileState.UNMERGED))
                continue
            if x not in " ?":
                staged.append(FileStatus(path, FileState(x), orig_path))
            if y not in " ?":
                unstaged.append(FileStatus(path, FileState(y)))

        return RepositoryStatus(
            staged=tuple(staged),
            unstaged=tuple(unstaged),
            untracked=tuple(untracked),
            conflicted=tuple(conflicted),
        )

    def _for_each_ref(
        self, fields: list[str], *patterns: str, sort: str | None = None
    ) -> list[list[str]]:
        fmt = "%00".join(fields) + "%1e"
        cmd = ["for-each-ref", f"--format={fmt}"]
        if sort:
            cmd.append(f"--sort={sort}")
        output = self._run([*cmd, *patterns], strip=False)
        records = []
        for record in output.split(RECORD_SEP):
            record = record.strip("\n")
            if record:
                records.append(record.split(FIELD_SEP))
        return records

    def branches(self) -> list[Branch]:
        """Lists local branches with their upstream and ahead/behind counts.

        Returns:
            list[Branch]: Local branches in refname order.
        """
        records = self._for_each_ref(
            [
                "%(refname:short)",
                "%(objectname)",
                "%(HEAD)",
                "%(upstream:short)",
                "%(upstream:track)",
            ],
            "refs/heads",
        )
        branches = []
        for name, sha, head, upstream, track in records:
            ahead, behind = _parse_track(track)
            branches.append(
                Branch(
                    name=name,
                    sha=sha,
                    is_head=head == "*",
                    upstream=upstream or None,
                    ahead=ahead,
                    behind=behind,
                )
            )
        return branches

    def remote_branches(self) -> list[Branch]:
        """Lists remote-tracking branches, without symbolic `<remote>/HEAD` refs."""
        records = self._for_each_ref(
            ["%(refname:short)", "%(objectname)"], "refs/remotes"
        )
        branches = []
        for name, sha in records:
            # Skip symbolic 'origin/HEAD' and bare 'origin' entries.
            if "/" not in name or name.endswith("/HEAD"):
                continue
            remote_name = name.split("/", 1)[0]
            branches.append(
                Branch(name=name, sha=sha, is_remote=True, remote_name=remote_name)
            )
        return branches

    def tags(self) -> list[Tag]:
        """Lists tags, newest first.

        Returns:
            list[Tag]: Tags whose `sha` is always the tagged commit, peeled through
                annotated tag objects.
        """
        records = self._for_each_ref(
            [
                "%(refname:short)",
                "%(objectname)",
                "%(objecttype)",
                "%(*objectname)",
                "%(taggername)",
                "%(taggerdate:iso)",
            ],
            "refs/tags",
            sort="-creatordate",
        )
        tags = []
        for name, sha, objtype, peeled, tagger, date in records:
            annotated = objtype == "tag"
            tags.append(
                Tag(
                    name=name,
                    sha=peeled if annotated and peeled else sha,
                    is_annotated=annotated,
                    tagger=tagger or None,
                    date=_parse_date(date),
                )
            )
        return tags

    def remotes(self) -> list[Remote]:
        """Lists configured remotes with their fetch and push URLs, by name."""
        output = self._run(["remote", "-v"])
        urls: dict[str, dict[str, str]] = {}
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) < 2:
                continue
            name = parts[0]
            url_part = parts[1].split(" ")
            kind = url_part[1] if len(url_part) > 1 else "(fetch)"
            entry = urls.setdefault(name, {})
            entry["push" if "push" in kind else "fetch"] = url_part[0]
        return [
            Remote(
                name=name,
                fetch_url=entry.get("fetch") or entry.get("push", ""),
                push_url=entry.get("push"),
            )
            for name, entry in sorted(urls.items())
        ]

    def stashes(self) -> list[Stash]:
        """Lists stash entries, most recent (`stash@{0}`) first."""
        output = self._run(
            ["stash", "list", "--format=%gd%x00%H%x00%gs%x00%ai%x1e"], strip=False
        )
        stashes = []
        for record in output.split(RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            parts = record.split(FIELD_SEP)
            if len(parts) < 3:
                continue
            match = re.search(r"\{(\d+)\}", parts[0])
            index = int(match.group(1)) if match else len(stashes)
            date = _parse_date(parts[3]) if len(parts) > 3 else None
            stashes.append(
                Stash(index=index, message=parts[2], sha=parts[1], date=date)
            )
        return stashes

    def diff(self, file: str | None = None, staged: bool = False) -> str:
        """Returns raw unified diff text for the working tree or the index.

        Args:
            file (str | None): Limit the diff to one repository-relative path.
            staged (bool): Diff the index against HEAD instead of the working
                tree against the index.

        Returns:
            str: The diff, with `a/`/`b/` prefixes and unquoted non-ASCII paths.
        """
        cmd = list(DIFF_ARGS)
        if staged:
            cmd.append("--cached")
        if file:
            cmd.extend(["--", file])
        return self._run(cmd, strip=False)

    def diff_hunks(
        self, file: str | None = None, staged: bool = False
    ) -> list[FileDiff]:
        """Returns `diff(file, staged)` parsed into per-file hunks."""
        return parse_diff(self.diff(file, staged))

    # --- Index / working tree ---

    def stage(self, files: list[str]) -> None:
        """Adds the current content of `files` to the index.

        Args:
            files (list[str]): Repository-relative paths.
        """
        self._run(["add", "--", *files])

    def stage_all(self) -> None:
        """Stages every change, including deletions and untracked files."""
        self._run(["add", "-A"])

    def unstage(self, files: list[str]) -> None:
        """Resets the index entries of `files` to HEAD, keeping the working tree.

        In a repository without commits the entries are removed from the index.

        Args:
            files (list[str]): Repository-relative paths.
        """
        if self.rev_parse("HEAD") is None:
            self._run(["rm", "--cached", "-q", "--", *files])
            return
        self._run(["reset", "-q", "HEAD", "--", *files])

    def discard_changes(self, files: list[str]) -> None:
        """Overwrites `files` in the working tree with their index content.

        Args:
            files (list[str]): Repository-relative paths.
        """
        self._run(["checkout", "--", *files])

    def apply_patch(
        self,
        patch: str,
        cached: bool = False,
        reverse: bool = False,
        unidiff_zero: bool = False,
    ) -> None:
        """Applies a patch read from stdin.

        Args:
            patch (str): Unified diff text.
            cached (bool): Apply to the index instead of the working tree.
            reverse (bool): Apply the patch in reverse (`-R`).
            unidiff_zero (bool): Accept hunks without context lines.

        Raises:
            PatchApplyError: If git rejects the patch (typically a stale hunk).
        """
        cmd = list(GIT_APPLY_ARGS)
        if cached:
            cmd.append("--cached")
        if reverse:
            cmd.append("--reverse")
        if unidiff_zero:
            cmd.append("--unidiff-zero")
        cmd.append("-")
        res = self.runner.run(cmd, cwd=self.path, input=patch)
        if not res.ok:
            raise PatchApplyError(res.args, res.stderr or res.stdout, res.returncode)

    # --- Commits / refs ---

    def commit(self, message: str, amend: bool = False) -> str:
        """Creates a commit from the index.

        Args:
            message (str): The commit message.
            amend (bool): Replace the HEAD commit instead of adding one.

        Returns:
            str: The SHA of the new commit.
        """
        cmd = ["commit", "-m", message]
        if amend:
            cmd.append("--amend")
        self._run(cmd)
        return self._run(["rev-parse", "HEAD"])

    def checkout(self, ref: str, force: bool = False) -> None:
        """Checks out a branch, tag or commit.

        Args:
            ref (str): The target branch name or commit hash.
            force (bool): Discard local changes that would block the checkout.
        """
        cmd = ["checkout"]
        if force:
            cmd.append("-f")
        cmd.append(ref)
        self._run(cmd)

    def create_branch(
        self, name: str, start_point: str = "HEAD", checkout: bool = False
    ) -> Branch:
        """Creates a branch at `start_point`.

        Args:
            name (str): The new branch name.
            start_point (str): Commit the branch points at.
            checkout (bool): Switch to the branch after creating it.

        Returns:
            Branch: The created branch.
        """
        if checkout:
            cmd = ["checkout", "-b", name, start_point]
        else:
            cmd = ["branch", name, start_point]
        self._run(cmd)
        sha = self._run(["rev-parse", f"refs/heads/{name}"])
        return Branch(name=name, sha=sha, is_head=checkout)

    def delete_branch(self, name: str, force: bool = False) -> None:
        """Deletes a local branch.

        Args:
            name (str): The branch to delete.
            force (bool): Delete even if the branch is not fully merged (`-D`).
        """
        self._run(["branch", "-D" if force else "-d", name])

    def merge(
        self,
        branch: str,
        no_ff: bool = False,
        squash: bool = False,
        message: str | None = None,
    ) -> None:
        """Merges `branch` into the current HEAD.

        Args:
            branch (str): The branch or commit to merge.
            no_ff (bool): Always create a merge commit.
            squash (bool): Stage the combined changes without committing.
            message (str | None): Message for the merge commit.
        """
        cmd = ["merge"]
        if no_ff:
            cmd.append("--no-ff")
        if squash:
            cmd.append("--squash")
        if message:
            cmd.extend(["-m", message])
        cmd.append(branch)
        self._run(cmd)

    def merge_abort(self) -> None:
        """Abandons an in-progress merge and restores the pre-merge state."""
        self._run(["merge", "--abort"])

    def reset(self, target: str, mode: ResetMode = ResetMode.MIXED) -> None:
        """Moves HEAD to `target`.

        Args:
            target (str): The commit to reset to.
            mode (ResetMode): How much of the index and working tree to reset.
        """
        self._run(["reset", f"--{ResetMode(mode).value}", target])

    def revert(self, shas: list[str], no_commit: bool = False) -> None:
        """Creates commits that undo `shas`.

        Args:
            shas (list[str]): Commits to revert, applied in order.
            no_commit (bool): Leave the reverted changes staged instead.
        """
        cmd = ["revert", "--no-edit"]
        if no_commit:
            cmd.append("--no-commit")
        self._run([*cmd, *shas])

    def cherry_pick(self, sha: str) -> None:
        """Applies the change introduced by `sha` as a new commit on HEAD."""
        self._run(["cherry-pick", sha])

    def rebase(self, onto: str) -> None:
        """Rebases the current branch onto `onto`."""
        self._run(["rebase", onto])

    def rebase_continue(self) -> None:
        """Continues a stopped rebase, keeping each commit's message unedited."""
        self._run(["-c", "core.editor=true", "rebase", "--continue"])

    def rebase_abort(self) -> None:
        """Abandons a stopped rebase and returns to the original branch."""
        self._run(["rebase", "--abort"])

    def create_tag(
        self, name: str, message: str | None = None, ref: str = "HEAD"
    ) -> Tag:
        """Creates a tag at `ref`.

        Args:
            name (str): The tag name.
            message (str | None): If given, an annotated tag with this message is
                created. Otherwise the tag is lightweight.
            ref (str): The commit to tag.

        Returns:
            Tag: The created tag, with the SHA of the tagged commit.
        """
        cmd = ["tag"]
        if message:
            cmd.extend(["-a", name, "-m", message])
        else:
            cmd.append(name)
        cmd.append(ref)
        self._run(cmd)
        sha = self._run(["rev-parse", f"{name}^{{commit}}"])
        return Tag(name=name, sha=sha, is_annotated=bool(message))

    def delete_tag(self, name: str) -> None:
        """Deletes the local tag `name`."""
        self._run(["tag", "-d", name])

    # --- Remotes ---

    def fetch(self, remote: str | None = None, prune: bool = True) -> None:
        """Fetches from one remote, or from all of them.

        Args:
            remote (str | None): The remote name. Defaults to every remote.
            prune (bool): Delete remote-tracking refs that no longer exist.
        """
        cmd = ["fetch"]
        if prune:
            cmd.append("--prune")
        cmd.append(remote if remote else "--all")
        self._run(cmd)

    def pull(
        self,
        remote: str | None = None,
        branch: str | None = None,
        rebase: bool = False,
    ) -> None:
        """Fetches and integrates the upstream of the current branch.

        Args:
            remote (str | None): The remote to pull from. Defaults to the upstream.
            branch (str | None): The remote branch. Only used with `remote`.
            rebase (bool): Rebase local commits instead of merging.
        """
        cmd = ["pull", "--rebase" if rebase else "--no-rebase"]
        if remote:
            cmd.append(remote)
            if branch:
                cmd.append(branch)
        self._run(cmd)

    def push(
        self,
        remote: str = "origin",
        branch: str | None = None,
        force: bool = False,
        set_upstream: bool = False,
    ) -> None:
        """Pushes to `remote`.

        Args:
            remote (str): The remote name.
            branch (str | None): The branch to push. Defaults to git's push rules.
            force (bool): Overwrite the remote branch if it has not moved
                (`--force-with-lease`).
            set_upstream (bool): Record `remote/branch` as the upstream.
        """
        cmd = ["push"]
        if force:
            cmd.append("--force-with-lease")
        if set_upstream:
            cmd.append("--set-upstream")
        cmd.append(remote)
        if branch:
            cmd.append(branch)
        self._run(cmd)

    # --- Stash ---

    def stash(
        self, message: str | None = None, include_untracked: bool = True
    ) -> Stash | None:
        """Shelves local changes.

        Args:
            message (str | None): Message for the stash entry.
            include_untracked (bool): Also stash untracked files.

        Returns:
            Stash | None: The new top stash entry, or None if there was nothing to
                save.
        """
        before = self.rev_parse("refs/stash")
        cmd = ["stash", "push"]
        if include_untracked:
            cmd.append("--include-untracked")
        if message:
            cmd.extend(["-m", message])
        self._run(cmd)
        if self.rev_parse("refs/stash") == before:
            return None
        stashes = self.stashes()
        return stashes[0] if stashes else None

    def stash_pop(self, ref: str = "stash@{0}") -> None:
        """Applies a stash entry and drops it.

        Args:
            ref (str): The entry to pop.

        Raises:
            CommandError: If the entry conflicts with local changes. The entry is
                then kept in the stash list.
        """
        self._run(["stash", "pop", ref])

    def stash_apply(self, ref: str = "stash@{0}") -> None:
        """Applies a stash entry and keeps it in the list."""
        self._run(["stash", "apply", ref])

    def stash_drop(self, ref: str = "stash@{0}") -> None:
        """Removes a stash entry without applying it."""
        self._run(["stash", "drop", ref])
