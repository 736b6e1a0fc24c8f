"""Main CLI entry point for labctl."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from lab_manager import __version__
from lab_manager.exceptions import LabError
from lab_manager.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="labctl",
    help="Local Kubernetes homelab clusters on k3d with Cilium and Argo CD",
    add_completion=False,
)
cluster_app = typer.Typer(help="Create, delete, start and stop clusters")
argocd_app = typer.Typer(help="Argo CD operations")
catalog_app = typer.Typer(help="Enable and disable catalog applications")
app.add_typer(cluster_app, name="cluster")
app.add_typer(argocd_app, name="argocd")
app.add_typer(catalog_app, name="catalog")

console = Console()
logger = get_logger(__name__)

state = {"cluster": "default"}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
    cluster: str = typer.Option("default", "--cluster", "-c", help="Cluster name"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    state["cluster"] = cluster
    logger.debug("Logging initialized")


def _fail(e: LabError) -> None:
    logger.error(e.message)
    console.print(f"[red]Error:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")
    for warning in getattr(e, "warnings", []):
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    raise typer.Exit(code=1)


def _unexpected(e: Exception) -> None:
    logger.error(f"Unexpected error: {e}", exc_info=True)
    console.print(f"[red]Unexpected error:[/red] {e}")
    console.print("\nRun with --verbose --log-file debug.log for more details")
    raise typer.Exit(code=1)


def _print_warnings(outcome) -> None:
    for warning in outcome.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def build_orchestrator():
    """Wire the orchestrator to the real k3d, helm and Kubernetes adapters."""
    from lab_manager import gitops
    from lab_manager.config import Settings
    from lab_manager.helm import HelmInstaller
    from lab_manager.kube import KubeClient
    from lab_manager.orchestrator import ClusterOrchestrator
    from lab_manager.runtime import K3dRuntime
    from lab_manager.session import SessionStore

    settings = Settings.from_env()
    runtime = K3dRuntime()
    return ClusterOrchestrator(
        runtime=runtime,
        charts=HelmInstaller(),
        kube_factory=lambda name: KubeClient.for_cluster(name, str(runtime.kubeconfig)),
        store=SessionStore(settings.home),
        scaffolder=gitops.scaffold,
        settings=settings,
        logger=get_logger("lab_manager.orchestrator"),
    )


def _kube_or_none(cluster_name: str):
    from lab_manager.exceptions import KubernetesError
    from lab_manager.kube import KubeClient

    try:
        return KubeClient.for_cluster(cluster_name)
    except KubernetesError as e:
        logger.warning(f"Could not connect to cluster '{cluster_name}': {e.message}")
        return None


def _load_session(cluster_name: str):
    from lab_manager.config import Settings
    from lab_manager.session import SessionStore

    return SessionStore(Settings.from_env().home).load(cluster_name)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"labctl version {__version__}")


@cluster_app.command("create")
def cluster_create(
    bootstrap: str | None = typer.Option(
        None, "--bootstrap", help="GitOps bootstrap repository URL to scaffold from"
    ),
    bootstrap_version: str | None = typer.Option(
        None,
        "--bootstrap-version",
        help="Tag or branch of the bootstrap repository (empty string for HEAD)",
    ),
) -> None:
    """
    Create a cluster with Cilium, Argo CD and a local GitOps repository.

    Examples:
        labctl cluster create
        labctl --cluster dev cluster create --bootstrap https://github.com/me/homelab.git
    """
    from lab_manager.config import DEFAULT_BOOTSTRAP_URL, resolve_bootstrap_version
    from lab_manager.orchestrator import CreateOptions

    name = state["cluster"]
    url = bootstrap or DEFAULT_BOOTSTRAP_URL
    options = CreateOptions(
        bootstrap_url=url,
        bootstrap_version=resolve_bootstrap_version(
            __version__,
            url == DEFAULT_BOOTSTRAP_URL,
            bootstrap_version,
            bootstrap_version is not None,
        ),
    )

    try:
        with console.status(f"Creating cluster '{name}'..."):
            outcome = build_orchestrator().create(name, options)
    except LabError as e:
        _fail(e)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=130)
    except Exception as e:
        _unexpected(e)

    _print_warnings(outcome)
    console.print(f"[green]✓[/green] Cluster '{name}' created")
    _print_session(outcome.value)


@cluster_app.command("delete")
def cluster_delete(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Delete a cluster and its local state."""
    name = state["cluster"]
    if not yes:
        confirm = typer.confirm(f"Delete cluster '{name}' and its GitOps directory?")
        if not confirm:
            raise typer.Exit(code=0)

    try:
        outcome = build_orchestrator().delete(name)
    except LabError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)

    _print_warnings(outcome)
    console.print(f"[green]✓[/green] Cluster '{name}' deleted")


@cluster_app.command("start")
def cluster_start() -> None:
    """Start a stopped cluster."""
    name = state["cluster"]
    try:
        with console.status(f"Starting cluster '{name}'..."):
            outcome = build_orchestrator().start(name)
    except LabError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)

    _print_warnings(outcome)
    console.print(f"[green]✓[/green] Cluster '{name}' started")


@cluster_app.command("stop")
def cluster_stop() -> None:
    """Stop a running cluster, keeping its state."""
    name = state["cluster"]
    try:
        with console.status(f"Stopping cluster '{name}'..."):
            outcome = build_orchestrator().stop(name)
    except LabError as e:
        _fail(e)
    except Exception as e:
        _unexpected(e)

    _print_warnings(outcome)
    console.print(f"[green]✓[/green] Cluster '{name}' stopped")


def _print_session(session) -> None:
    if session is None:
        return
    table = Table(title=f"Cluster {session.cluster_name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("State", session.state.value)
    table.add_row("Kube context", session.kube_context)
    table.add_row("Created", session.created_at.strftime("%Y-%m-%d %H:%M:%S %Z"))
    runtime = session.runtime
    table.add_row("Nodes", f"{runtime.servers} server(s), {runtime.agents} agent(s)")
    table.add_row("Image", session.runtime.image)
    table.add_row("GitOps path", session.gitops_path)
    table.add_row("Bootstrap", f"{session.bootstrap_url} ({session.bootstrap_version or 'HEAD'})")
    argo = session.services.argocd
    table.add_row("Argo CD", argo.url)
    table.add_row("Argo CD login", f"{argo.username} / {argo.password or '-'}")
    table.add_row("Hubble UI", session.services.hubble.url)
    table.add_row("API server port", str(session.host_ports.api_server))
    table.add_row("HTTP / HTTPS", f"{session.host_ports.http} / {session.host_ports.https}")
    console.print(table)


@cluster_app.command("info")
def cluster_info() -> None:
    """Show what labctl recorded about a cluster."""
    name = state["cluster"]
    try:
        session = _load_session(name)
    except LabError as e:
        _fail(e)
    _print_session(session)


@app.command()
def doctor() -> None:
    """
    Run health checks on the cluster and its components.

    Exits with code 1 if any check fails.
    """
    from lab_manager.config import Settings
    from lab_manager.doctor import diagnose
    from lab_manager.kube import KubeClient
    from lab_manager.session import SessionStore

    name = state["cluster"]
    try:
        store = SessionStore(Settings.from_env().home)
    except LabError as e:
        _fail(e)

    results = diagnose(name, store, KubeClient.for_cluster, logger=logger)

    width = max((len(r.name) for r in results), default=0)
    indent = " " * (width + 6)
    any_failed = False
    for r in results:
        padded = r.name.ljust(width)
        if r.ok:
            console.print(f"[green]ok[/green]  {padded}  {r.message}", highlight=False)
            continue
        any_failed = True
        console.print(f"[red]!![/red]  {padded}  {r.message or r.cause}", highlight=False)
        if r.cause and r.message:
            console.print(f"{indent}-> {r.cause}", highlight=False)
        if r.fix:
            console.print(f"{indent}-> Try: {r.fix}", highlight=False)

    if any_failed:
        raise typer.Exit(code=1)


def _sync(session) -> list[str]:
    from lab_manager import argocd

    return argocd.sync(_kube_or_none(session.cluster_name), session.services.argocd.url)


@argocd_app.command("sync")
def argocd_sync() -> None:
    """Ask Argo CD to reconcile the local GitOps repository now."""
    name = state["cluster"]
    try:
        session = _load_session(name)
    except LabError as e:
        _fail(e)

    failures = _sync(session)
    if failures:
        for failure in failures:
            console.print(f"[yellow]Warning:[/yellow] {failure}")
        console.print("Argo CD will still pick up changes on its next poll")
        return
    console.print("[green]✓[/green] Sync triggered")


@catalog_app.command("list")
def catalog_list() -> None:
    """List catalog applications and whether they are enabled."""
    from lab_manager import catalog

    name = state["cluster"]
    try:
        session = _load_session(name)
        entries = catalog.list_entries(session.gitops_path)
    except LabError as e:
        _fail(e)

    if not entries:
        console.print("[yellow]The catalog is empty[/yellow]")
        return

    table = Table(title="Catalog")
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="magenta")
    table.add_column("Enabled", style="green")
    table.add_column("Description")
    for entry in entries:
        enabled = "Yes" if entry.enabled else "No"
        table.add_row(entry.name, entry.category, enabled, entry.description)
    console.print(table)
    console.print(f"\n[bold]Enabled:[/bold] {sum(1 for e in entries if e.enabled)}/{len(entries)}")


def _toggle(app_name: str, enabled: bool) -> None:
    from lab_manager import catalog, gitops

    name = state["cluster"]
    verb = "enable" if enabled else "disable"
    try:
        session = _load_session(name)
        entry = catalog.find_entry(session.gitops_path, app_name)
        if entry.enabled == enabled:
            console.print(f"App '{app_name}' is already {verb}d")
            return
        rel = catalog.set_enabled(session.gitops_path, app_name, enabled)
        gitops.commit(session.gitops_path, f"catalog: {verb} {app_name}", str(rel))
    except LabError as e:
        _fail(e)

    console.print(f"[green]✓[/green] App '{app_name}' {verb}d")
    for failure in _sync(session):
        console.print(f"[yellow]Warning:[/yellow] {failure}")


@catalog_app.command("enable")
def catalog_enable(app_name: str = typer.Argument(..., help="Catalog application name")) -> None:
    """Enable a catalog application and trigger a sync."""
    _toggle(app_name, True)


@catalog_app.command("disable")
def catalog_disable(app_name: str = typer.Argument(..., help="Catalog application name")) -> None:
    """Disable a catalog application and trigger a sync."""
    _toggle(app_name, False)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
