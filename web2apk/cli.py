"""
web2apk CLI.

Command-line interface for building APKs locally, materializing template projects
and running storage maintenance.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .core.config import get_config
from .core.exceptions import Web2APKError
from .core.logging import setup_logging

app = typer.Typer(
    name="web2apk",
    help="Turn websites into installable Android apps",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from . import __version__
        console.print(f"web2apk v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """web2apk: website to Android APK build engine."""
    pass


def _request(
    url: str,
    app_name: str,
    package_name: Optional[str],
    version_code: int,
    version_name: str,
    color: str,
    icon: Optional[Path],
    splash_image: Optional[Path],
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "website_url": url,
        "app_name": app_name,
        "version_code": version_code,
        "version_name": version_name,
        "splash_background": color,
        "icon_path": icon,
        "splash_image_path": splash_image,
    }
    if package_name:
        request["package_name"] = package_name
    return request


@app.command()
def build(
    url: str = typer.Option(..., "--url", "-u", help="Website loaded by the app"),
    app_name: str = typer.Option(..., "--name", "-n", help="App display name"),
    package_name: Optional[str] = typer.Option(
        None,
        "--package",
        "-p",
        help="Application id (derived from the name when omitted)",
    ),
    version_code: int = typer.Option(1, "--version-code", help="Android versionCode"),
    version_name: str = typer.Option("1.0.0", "--version-name", help="Android versionName"),
    color: str = typer.Option("#FFFFFF", "--splash-color", help="Splash background color"),
    icon: Optional[Path] = typer.Option(None, "--icon", exists=True, dir_okay=False, help="Icon image"),
    splash_image: Optional[Path] = typer.Option(
        None, "--splash-image", exists=True, dir_okay=False, help="Splash logo image"
    ),
    premium: bool = typer.Option(False, "--premium", help="Build without watermark"),
    pull_to_refresh: bool = typer.Option(True, "--pull-to-refresh/--no-pull-to-refresh"),
    progress_bar: bool = typer.Option(True, "--progress-bar/--no-progress-bar"),
    error_page: bool = typer.Option(True, "--error-page/--no-error-page"),
    file_upload: bool = typer.Option(False, "--file-upload/--no-file-upload"),
    deep_linking: bool = typer.Option(False, "--deep-linking/--no-deep-linking"),
    local_storage: bool = typer.Option(True, "--local-storage/--no-local-storage"),
    geolocation: bool = typer.Option(False, "--geolocation/--no-geolocation"),
    user_id: str = typer.Option("local", "--user", help="Owner recorded on the build"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Build one APK and wait for the result."""
    config = get_config()
    if verbose:
        config.log_level = "DEBUG"
    setup_logging(config)

    console.print(Panel.fit(
        f"[bold blue]web2apk[/bold blue]\n{url} → {app_name}",
        border_style="blue",
    ))

    request = _request(url, app_name, package_name, version_code, version_name, color, icon, splash_image)
    features = {
        "pull_to_refresh": pull_to_refresh,
        "progress_bar": progress_bar,
        "error_page": error_page,
        "file_upload": file_upload,
        "deep_linking": deep_linking,
        "local_storage": local_storage,
        "geolocation": geolocation,
    }

    async def run_async() -> None:
        from .models.build import BuildStatus
        from .orchestration import BuildService
        from .storage import LocalArtifactStore

        async with BuildService(config) as service:
            build_id = await service.submit(user_id, request, features, premium=premium)
            waiter = asyncio.create_task(service.wait_for(build_id))

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task("Waiting in build queue...", total=100)
                while not waiter.done():
                    status = await service.get_status(build_id)
                    progress.update(task, completed=status.progress, description=status.current_step)
                    await asyncio.wait({waiter}, timeout=0.5)
                status = waiter.result()
                progress.update(task, completed=status.progress, description=status.current_step)

        if status.status != BuildStatus.COMPLETED:
            console.print("\n[bold red]✗ Build failed![/bold red]")
            if status.error:
                console.print(f"Error [{status.error.code}]: {status.error.message}")
            raise typer.Exit(1)

        console.print("\n[bold green]✓ Build completed successfully![/bold green]\n")
        table = Table(title="Build Result")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Build ID", status.build_id)
        table.add_row("Package", status.package_name)
        table.add_row("Size", status.size_formatted or "-")
        table.add_row("Duration", status.duration_formatted or "-")
        if status.output:
            table.add_row("Location", status.output.location or "-")
            if isinstance(service.artifacts, LocalArtifactStore) and status.output.location:
                local_path = service.artifacts.get_local_path(status.output.location)
                table.add_row("File", str(local_path) if local_path else "-")
            table.add_row("Download URL", status.output.download_url or "-")
        table.add_row("Expires", status.expires_at.isoformat() if status.expires_at else "-")
        console.print(table)

    try:
        asyncio.run(run_async())
    except Web2APKError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def materialize(
    output: Path = typer.Argument(..., help="Directory to write the project into"),
    url: str = typer.Option(..., "--url", "-u", help="Website loaded by the app"),
    app_name: str = typer.Option(..., "--name", "-n", help="App display name"),
    package_name: Optional[str] = typer.Option(None, "--package", "-p", help="Application id"),
    color: str = typer.Option("#FFFFFF", "--splash-color", help="Splash background color"),
    icon: Optional[Path] = typer.Option(None, "--icon", exists=True, dir_okay=False, help="Icon image"),
    premium: bool = typer.Option(False, "--premium", help="Omit the watermark"),
) -> None:
    """Write a configured Android project without compiling it."""
    config = get_config()
    setup_logging(config)

    from pydantic import ValidationError

    from .models.build import BuildConfig, FeatureFlags
    from .services.materializer import ProjectMaterializer, TemplateStore

    try:
        build_config = BuildConfig.model_validate(
            _request(url, app_name, package_name, 1, "1.0.0", color, icon, None)
        )
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)

    materializer = ProjectMaterializer(
        TemplateStore(config.template_dir, config.toolchain.driver_name),
        config.watermark_text,
    )

    try:
        workspace = asyncio.run(
            materializer.materialize(output.resolve(), build_config, FeatureFlags(), premium)
        )
    except Web2APKError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold green]✓ Project written to[/bold green] {workspace}")
    console.print(f"  Package: {build_config.package_name}")
    console.print("\nNext steps:")
    console.print(f"  1. cd {workspace}")
    console.print("  2. ./gradlew assembleRelease")


@app.command()
def status(
    build_id: str = typer.Argument(..., help="Build id"),
) -> None:
    """Show the stored status of a build."""
    config = get_config()

    async def run_async() -> None:
        from .orchestration import BuildService

        service = BuildService(config)
        view = await service.get_status(build_id)

        table = Table(title=f"Build {view.build_id}")
        table.add_column("Property", style="cyan")
        table.add_column("Value")
        table.add_row("App", view.app_name)
        table.add_row("Package", view.package_name)
        table.add_row("Status", view.status.value)
        table.add_row("Progress", f"{view.progress}%")
        table.add_row("Step", view.current_step)
        if view.error:
            table.add_row("Error", f"[red]{view.error.code}: {view.error.message}[/red]")
        if view.output:
            table.add_row("Download URL", view.output.download_url or "-")
        console.print(table)

    try:
        asyncio.run(run_async())
    except Web2APKError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def sweep() -> None:
    """Delete expired artifacts and mark their build records."""
    config = get_config()
    setup_logging(config)

    async def run_async() -> int:
        from .orchestration import BuildService

        return await BuildService(config).sweep_expired()

    count = asyncio.run(run_async())
    console.print(f"[bold]Swept {count} expired build(s)[/bold]")


@app.command()
def config(
    show: bool = typer.Option(
        True,
        "--show",
        help="Show current configuration",
    ),
) -> None:
    """Show the effective configuration."""
    cfg = get_config()

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Log Level", cfg.log_level)
    table.add_row("Temp Dir", str(cfg.temp_dir))
    table.add_row("Template Dir", str(cfg.template_dir or "(packaged)"))
    table.add_row("Concurrent Builds", str(cfg.queue.max_concurrent_builds))
    table.add_row("Attempts", str(cfg.queue.max_attempts))
    table.add_row("Backoff", f"{cfg.queue.backoff_delay_ms}ms")
    table.add_row("Build Timeout", f"{cfg.queue.build_timeout_ms}ms")
    table.add_row("Android SDK", str(cfg.toolchain.android_sdk_root))
    table.add_row("Java Home", str(cfg.toolchain.java_home))
    table.add_row("Build Tools", cfg.toolchain.build_tools_version)
    table.add_row("Signing", "[green]configured[/green]" if cfg.signing.configured else "[yellow]unsigned[/yellow]")
    table.add_row("Artifacts", str(cfg.storage.base_path))
    table.add_row("Records", str(cfg.storage.records_path))
    table.add_row("Retention", f"premium {cfg.retention.premium_days}d / free {cfg.retention.free_days}d")

    console.print(table)

    console.print("\n[dim]Configure via environment variables:[/dim]")
    console.print("  MAX_CONCURRENT_BUILDS, BUILD_QUEUE_ATTEMPTS, BUILD_TIMEOUT_MS")
    console.print("  ANDROID_SDK_ROOT, JAVA_HOME, KEYSTORE_PATH, KEY_ALIAS")


if __name__ == "__main__":
    app()
