import typing

import typer

import goopy.cmd.common as cmd_common


def clean(
    ctx: typer.Context,
    all_: typing.Annotated[
        bool, typer.Option("--all", help="Empty the cache, installed packages included")
    ] = False,
    packages: typing.Annotated[
        str, typer.Option("--packages", help="Comma separated names whose archives to remove")
    ] = "",
):
    """
    Remove cached archives. By default, those of packages that are not installed.
    """
    names = [name.strip() for name in packages.split(",") if name.strip() != ""]
    with cmd_common.open_manager(ctx) as manager:
        removed = manager.clean(all_=all_, packages=names)

    typer.echo(f"Removed {len(removed)} cache entries.")
