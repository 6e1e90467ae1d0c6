"""Main CLI interface for mgit."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import click
import git as gitpython
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from mgit import __version__
from mgit.core.clone import clone_repository, default_destination
from mgit.core.commit import OverlayCommitter
from mgit.core.config import MGitConfig, load_config, save_config
from mgit.core.errors import MGitError
from mgit.core.hashing import HashScheme
from mgit.core.history import walk
from mgit.core.log import setup_logging
from mgit.core.mappings import MappingStore
from mgit.core.reconstruct import ReconstructionEngine
from mgit.core.remote import fetch_and_store
from mgit.core.source import SourceRepository
from mgit.core.storage import MGIT_DIR_NAME, ObjectStore
from mgit.core.verify import Verifier, failed_hashes
from mgit.models.commit import CommitRecord, Signature

console = Console()
err_console = Console(stderr=True)


class Context:
    """Lazily opened repository handles shared by all commands."""

    def __init__(self, project_path: Optional[str]):
        self._project_path = project_path
        self._root: Optional[Path] = None
        self._config: Optional[MGitConfig] = None

    @property
    def project_root(self) -> Path:
        if self._root is None:
            if self._project_path:
                self._root = Path(self._project_path).resolve()
            else:
                root = _find_project_root()
                if root is None:
                    raise click.Abort()
                self._root = root
        return self._root

    @property
    def base_dir(self) -> Path:
        """Directory given with -C, or the current directory."""
        return Path(self._project_path or ".").resolve()

    @property
    def store(self) -> ObjectStore:
        return ObjectStore.for_worktree(
            self.project_root, default_branch=self.config.default_branch
        )

    @property
    def overlay_dir(self) -> Path:
        return self.project_root / MGIT_DIR_NAME

    @property
    def config(self) -> MGitConfig:
        if self._config is None:
            self._config = load_config(self.overlay_dir)
        return self._config

    @property
    def mappings(self) -> MappingStore:
        return MappingStore(self.overlay_dir)

    def source(self) -> SourceRepository:
        return SourceRepository.open(self.project_root)

    def initialized_store(self) -> ObjectStore:
        store = self.store
        if not store.exists():
            err_console.print("[red]mgit not initialized. Run 'mgit init' first.[/red]")
            raise click.Abort()
        return store


pass_context = click.make_pass_decorator(Context)


def _fail(error: Exception) -> None:
    err_console.print(f"[red]Error: {error}[/red]")
    raise click.Abort() from error


@click.group()
@click.version_option(__version__)
@click.option(
    "-C",
    "--project-path",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Path to the git working tree (default: search upwards from cwd)",
)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity")
@click.option("--log-json", is_flag=True, help="Write log events to stderr as JSON lines")
@click.pass_context
def main(ctx: click.Context, project_path: Optional[str], verbose: int, log_json: bool):
    """mgit - identity-bound overlay history for git repositories."""
    level = {0: None, 1: "INFO"}.get(verbose, "DEBUG")
    setup_logging(level, json_output=log_json)
    ctx.obj = Context(project_path)


@main.command()
@click.option("--default-branch", default=None, help="Branch HEAD points to initially")
@click.option(
    "--hash-scheme",
    type=click.Choice([s.value for s in HashScheme]),
    default=None,
    help="Overlay hash layout for new commits",
)
@pass_context
def init(ctx: Context, default_branch: Optional[str], hash_scheme: Optional[str]):
    """Initialize the overlay in a git repository."""
    project_root = ctx.project_root
    if not (project_root / ".git").exists():
        _fail(ValueError(f"Not a git repository: {project_root}"))

    try:
        config = ctx.config
        if default_branch:
            config.default_branch = default_branch
        elif not ctx.store.exists():
            # Follow the branch git is on so overlay HEAD tracks the same ref
            git_head = ctx.source().head_reference()
            if git_head.is_symbolic and git_head.branch_name:
                config.default_branch = git_head.branch_name
        if hash_scheme:
            config.hash_scheme = HashScheme(hash_scheme)

        store = ObjectStore.for_worktree(project_root, default_branch=config.default_branch)
        already = store.exists()
        store.initialize()
        save_config(store.root, config)
        _add_to_git_exclude(project_root)
    except MGitError as e:
        _fail(e)

    if already:
        console.print(f"[yellow]mgit already initialized in {project_root}[/yellow]")
    else:
        console.print(f"[green]✅ Initialized mgit in {store.root}[/green]")


@main.command("config")
@click.argument("key")
@click.argument("value", required=False)
@pass_context
def config_cmd(ctx: Context, key: str, value: Optional[str]):
    """Get or set a configuration value (e.g. user.pubkey)."""
    config = ctx.config
    try:
        if value is None:
            current = config.get_value(key)
            if current is not None:
                click.echo(current.value if isinstance(current, HashScheme) else current)
            return
        config.set_value(key, value)
        save_config(ctx.overlay_dir, config)
    except KeyError:
        _fail(KeyError(f"unknown config key: {key}"))
    except MGitError as e:
        _fail(e)


@main.command()
@click.option("-m", "--message", required=True, help="Commit message")
@click.option("-a", "--all", "stage_all", is_flag=True, help="Stage modified tracked files")
@click.option("--pubkey", default=None, help="Identity key (default: user.pubkey)")
@pass_context
def commit(ctx: Context, message: str, stage_all: bool, pubkey: Optional[str]):
    """Create a git commit and its overlay commit."""
    config = ctx.config
    if not config.user.name or not config.user.email:
        err_console.print("[red]Please set your user name and email first:[/red]")
        err_console.print('  mgit config user.name "Your Name"')
        err_console.print('  mgit config user.email "your.email@example.com"')
        raise click.Abort()

    identity_key = pubkey if pubkey is not None else (config.user.pubkey or "")
    try:
        source = ctx.source()
        if stage_all:
            source.repo.git.add(update=True)

        now = datetime.now(timezone.utc).astimezone()
        author = Signature(name=config.user.name, email=config.user.email, when=now)
        committer = OverlayCommitter(source, ctx.store, ctx.mappings, config.hash_scheme)
        result = committer.create_commit(message, author, identity_key)
    except MGitError as e:
        _fail(e)

    if not identity_key:
        console.print(
            "[yellow]No identity key configured; created a plain git commit.[/yellow]"
        )
    console.print(f"Committed changes [{result[:7]}]: {message}")


@main.command()
@click.argument("revision", default="HEAD")
@click.option("--pubkey", default=None, help="Identity key (default: user.pubkey)")
@pass_context
def record(ctx: Context, revision: str, pubkey: Optional[str]):
    """Create the overlay commit for an existing git commit."""
    config = ctx.config
    identity_key = pubkey if pubkey is not None else config.user.pubkey
    if not identity_key:
        _fail(ValueError("no identity key; pass --pubkey or set user.pubkey"))

    try:
        source = ctx.source()
        git_hash = source.repo.commit(revision).hexsha
        committer = OverlayCommitter(source, ctx.store, ctx.mappings, config.hash_scheme)
        overlay = committer.record_commit(git_hash, identity_key)
    except MGitError as e:
        _fail(e)
    except (gitpython.exc.BadName, ValueError) as e:
        _fail(ValueError(f"unknown git revision {revision}: {e}"))

    console.print(f"Recorded overlay commit {overlay.overlay_hash} for git {git_hash[:7]}")


@main.command()
@click.option("-n", "--limit", default=10, help="Number of commits to show")
@click.option("--oneline", is_flag=True, help="Show compact one-line format")
@click.option("--all", "all_refs", is_flag=True, help="Include every overlay branch")
@pass_context
def log(ctx: Context, limit: int, oneline: bool, all_refs: bool):
    """Show overlay commit history from HEAD."""
    store = ctx.initialized_store()
    try:
        starts = [store.head_hash()]
        if all_refs:
            starts.extend(h for h in store.list_refs("refs/heads/").values() if h not in starts)
        records = list(walk(store, starts, limit=limit))
    except MGitError as e:
        _fail(e)

    branch = store.current_branch()
    for i, commit_record in enumerate(records):
        decoration = f" (HEAD -> {branch})" if i == 0 and branch else ""
        if oneline:
            console.print(
                f"[yellow]{commit_record.short_hash}[/yellow]{decoration} {commit_record.summary}",
                highlight=False,
            )
        else:
            _print_record(commit_record, decoration)


@main.command()
@click.argument("revision", default="HEAD")
@click.option("--no-patch", is_flag=True, help="Do not show the git diff")
@pass_context
def show(ctx: Context, revision: str, no_patch: bool):
    """Show an overlay commit and the git changes it records."""
    store = ctx.initialized_store()
    try:
        overlay_hash = store.resolve_revision(revision, ctx.mappings.load())
        commit_record = store.get(overlay_hash)
    except MGitError as e:
        _fail(e)

    _print_record(commit_record)
    if commit_record.parent_hashes:
        console.print("Parents:")
        for parent in commit_record.parent_hashes:
            console.print(f"  {parent}", highlight=False)
        console.print()

    if no_patch:
        return

    try:
        diff_text = ctx.source().repo.git.show(
            "--no-color", "--patch", "--format=", commit_record.source_hash
        )
    except (gitpython.exc.GitCommandError, MGitError) as e:
        err_console.print(f"[yellow]Could not show git diff: {e}[/yellow]")
        return

    if diff_text.strip():
        syntax = Syntax(diff_text, "diff", theme="monokai", word_wrap=True)
        console.print(Panel(syntax, border_style="blue", padding=(0, 1)))


@main.command("rev-parse")
@click.argument("revision")
@pass_context
def rev_parse(ctx: Context, revision: str):
    """Print the full overlay hash for a revision."""
    store = ctx.initialized_store()
    try:
        click.echo(store.resolve_revision(revision, ctx.mappings.load()))
    except MGitError as e:
        _fail(e)


@main.command()
@click.argument("revision", default="HEAD")
@pass_context
def verify(ctx: Context, revision: str):
    """Verify the overlay hash chain reachable from a revision."""
    store = ctx.initialized_store()
    try:
        start = store.resolve_revision(revision, ctx.mappings.load())
        verifier = Verifier(store, ctx.source(), ctx.config.hash_scheme)
        report = verifier.verify(start)
    except MGitError as e:
        _fail(e)

    console.print(f"Verified {report.checked} overlay commits from {start[:7]}")
    if report.valid:
        console.print("[green]Overlay commit chain verification successful![/green]")
        return

    table = Table(title="Verification failures")
    table.add_column("Commit", style="cyan", no_wrap=True)
    table.add_column("Kind", style="red")
    table.add_column("Detail")
    table.add_column("Expected", style="magenta")
    for failure in report.failures:
        table.add_row(
            failure.overlay_hash[:12], failure.kind.value, failure.detail, failure.expected or ""
        )
    console.print(table)
    console.print(
        f"[red]Overlay commit chain verification failed for "
        f"{len(failed_hashes(report))} commit(s)![/red]"
    )
    sys.exit(1)


@main.command()
@pass_context
def reconstruct(ctx: Context):
    """Rebuild overlay commits, branches and HEAD from git and the mapping table."""
    try:
        source = ctx.source()
        store = ctx.store
        table = ctx.mappings.load(required=True)
        report = ReconstructionEngine(store, ctx.config.hash_scheme).reconstruct(source, table)
    except MGitError as e:
        _fail(e)

    _print_reconstruction(report)


@main.command("fetch-mappings")
@click.argument("url", required=False)
@click.option("--token", default=None, help="Bearer token (default: remote.token)")
@click.option("--reconstruct/--no-reconstruct", "run_reconstruct", default=True)
@pass_context
def fetch_mappings_cmd(
    ctx: Context, url: Optional[str], token: Optional[str], run_reconstruct: bool
):
    """Fetch a peer's mapping table and rebuild the overlay from it."""
    config = ctx.config
    url = url or config.remote.url
    token = token or config.remote.token
    if not url or not token:
        _fail(ValueError("a repository URL and token are required (see remote.url, remote.token)"))

    try:
        store = ctx.store
        store.initialize()
        table = fetch_and_store(url, token, ctx.mappings, timeout=config.http_timeout)
        console.print(f"Fetched {len(table)} mappings from {url}")
        if run_reconstruct:
            report = ReconstructionEngine(store, config.hash_scheme).reconstruct(
                ctx.source(), table
            )
            _print_reconstruction(report)
    except MGitError as e:
        _fail(e)


@main.command()
@click.argument("url")
@click.argument("destination", required=False)
@click.option("--token", required=True, help="Bearer token for the peer")
@click.option("--git-url", default=None, help="Fetch git objects from here instead of URL")
@click.option(
    "--hash-scheme",
    type=click.Choice([s.value for s in HashScheme]),
    default=None,
    help="Overlay hash layout for new commits",
)
@pass_context
def clone(
    ctx: Context,
    url: str,
    destination: Optional[str],
    token: str,
    git_url: Optional[str],
    hash_scheme: Optional[str],
):
    """Clone a repository and rebuild its overlay from the peer's mappings."""
    target = ctx.base_dir / (destination or default_destination(url))
    console.print(f"Cloning {url} into {target}...")
    try:
        report = clone_repository(
            url,
            target,
            token,
            git_url=git_url,
            scheme=HashScheme(hash_scheme) if hash_scheme else None,
        )
    except MGitError as e:
        _fail(e)

    _add_to_git_exclude(target)
    _print_reconstruction(report)
    console.print(f"[green]✅ Cloned {url}[/green]")


def _print_record(commit_record: CommitRecord, decoration: str = "") -> None:
    author = commit_record.author
    pubkey_info = f" <{author.pubkey}>" if author.pubkey else ""
    console.print(f"[yellow]commit {commit_record.overlay_hash}[/yellow]{decoration}", highlight=False)
    console.print(f"git-commit {commit_record.source_hash}", highlight=False)
    console.print(f"Author: {author.name} <{author.email}>{pubkey_info}", highlight=False)
    console.print(f"Date:   {author.when.strftime('%a %b %d %H:%M:%S %Y %z')}\n")
    for line in commit_record.message.rstrip("\n").split("\n"):
        console.print(f"    {line}", highlight=False, markup=False)
    console.print()


def _print_reconstruction(report) -> None:
    for warning in report.warnings:
        err_console.print(f"[yellow]Warning: {warning}[/yellow]")

    console.print(
        f"Reconstructed {len(report.created)} overlay commits "
        f"({len(report.skipped)} already present)"
    )
    if report.refs:
        table = Table(title="Overlay branches")
        table.add_column("Ref", style="green")
        table.add_column("Overlay hash", style="cyan", no_wrap=True)
        for ref_name, overlay_hash in report.refs.items():
            table.add_row(ref_name, overlay_hash)
        console.print(table)
    if report.head:
        console.print(f"HEAD: {report.head}", highlight=False)


def _add_to_git_exclude(project_root: Path) -> None:
    """Keep the overlay directory out of git status via .git/info/exclude."""
    exclude_file = project_root / ".git" / "info" / "exclude"
    entry = f"{MGIT_DIR_NAME}/"
    lines: List[str] = []
    if exclude_file.exists():
        lines = exclude_file.read_text().splitlines()
        if entry in lines:
            return
    exclude_file.parent.mkdir(parents=True, exist_ok=True)
    lines.append(entry)
    exclude_file.write_text("\n".join(lines) + "\n")


def _find_project_root() -> Optional[Path]:
    """Find the project root directory."""
    current_dir = Path.cwd()

    for parent in [current_dir] + list(current_dir.parents):
        if (parent / ".git").exists():
            return parent

    err_console.print("[red]Error: Not in a git repository[/red]")
    return None


if __name__ == "__main__":
    main()
