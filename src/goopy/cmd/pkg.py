import pathlib
import typing

import typer

import goopy.cmd.common as cmd_common


def install(
    ctx: typer.Context,
    packages: typing.Annotated[
        list[str], typer.Argument(help="name, name.arch, name.arch.version or a .goo file")
    ],
    reinstall: typing.Annotated[
        bool, typer.Option("--reinstall", help="Install installed packages again")
    ] = False,
):
    """
    Install packages and their dependencies.
    """
    with cmd_common.open_manager(ctx) as manager:
        done = manager.install(packages, reinstall=reinstall)

    for pkg_id in done:
        typer.echo(f"Installed {pkg_id}")


def remove(
    ctx: typer.Context,
    packages: typing.Annotated[list[str], typer.Argument(help="name or name.arch")],
    db_only: typing.Annotated[
        bool, typer.Option("--dbonly", help="Only remove the database records, run no scripts")
    ] = False,
):
    """
    Remove packages and every package depending on them.
    """
    with cmd_common.open_manager(ctx) as manager:
        done = manager.remove(packages, db_only=db_only)

    for pkg_id in done:
        typer.echo(f"Removed {pkg_id}")


def update(ctx: typer.Context):
    """
    Bring every installed package to the version its repos select.
    """
    with cmd_common.open_manager(ctx) as manager:
        done = manager.update()

    if len(done) == 0:
        typer.echo("No updates available for any installed packages.")
    for pkg_id in done:
        typer.echo(f"Installed {pkg_id}")


def check(ctx: typer.Context):
    """
    List the updates `update` would apply.
    """
    with cmd_common.open_manager(ctx) as manager:
        updates = manager.check()

    if len(updates) == 0:
        typer.echo("No updates available for any installed packages.")
        return

    typer.echo("Available updates:")
    for update in updates:
        typer.echo(
            f"  {update.pkg_id.key}, {update.installed_version} --> {update.pkg_id.version} "
            f"from {update.candidate.repo_url}"
        )


def verify(
    ctx: typer.Context,
    packages: typing.Annotated[list[str], typer.Argument(help="name or name.arch")],
):
    """
    Check installed files against their recorded checksums and run verify scripts.
    """
    with cmd_common.open_manager(ctx) as manager:
        results = manager.verify(packages)

    failed = False
    for key, problems in results.items():
        if len(problems) == 0:
            typer.echo(f"Verification of {key} completed")
            continue
        failed = True
        typer.echo(f"Verification of {key} failed:", err=True)
        for problem in problems:
            typer.echo(f"  - {problem}", err=True)

    if failed:
        raise typer.Exit(code=1)


def download(
    ctx: typer.Context,
    packages: typing.Annotated[
        list[str], typer.Argument(help="name, name.arch or name.arch.version")
    ],
    directory: typing.Annotated[
        pathlib.Path | None, typer.Option("--dir", help="Where to store the archives")
    ] = None,
):
    """
    Download package archives without installing them.
    """
    if directory is None:
        directory = pathlib.Path.cwd()

    with cmd_common.open_manager(ctx) as manager:
        paths = manager.download(packages, directory)

    for path in paths:
        typer.echo(f"Downloaded {path}")
