import pathlib
import typing

import typer

import goopy.cmd.clean
import goopy.cmd.common as cmd_common
import goopy.cmd.pkg
import goopy.cmd.query
import goopy.cmd.repo
import goopy.logging
import goopy.settings


def main_callback(
    ctx: typer.Context,
    root: typing.Annotated[
        pathlib.Path | None,
        typer.Option(
            "--root", envvar=goopy.settings.GOOPY_ROOT_ENV, help="Installation root directory"
        ),
    ] = None,
    verbose: typing.Annotated[bool, typer.Option("--verbose", help="Debug logging")] = False,
    sources: typing.Annotated[
        str, typer.Option("--sources", help="Comma separated repo URLs overriding repo files")
    ] = "",
):
    goopy.logging.set_verbose(verbose)
    ctx.obj = cmd_common.GlobalOptions(root=root, sources=sources)


def create_app() -> typer.Typer:
    """
    Build the goopy CLI: global options plus one command per verb.
    """
    typer_app = typer.Typer(no_args_is_help=True)
    _ = typer_app.callback()(main_callback)

    commands: dict[str, typing.Callable[..., None]] = {
        "install": goopy.cmd.pkg.install,
        "remove": goopy.cmd.pkg.remove,
        "update": goopy.cmd.pkg.update,
        "check": goopy.cmd.pkg.check,
        "verify": goopy.cmd.pkg.verify,
        "download": goopy.cmd.pkg.download,
        "clean": goopy.cmd.clean.clean,
        "installed": goopy.cmd.query.installed,
        "latest": goopy.cmd.query.latest,
        "available": goopy.cmd.query.available,
        "addrepo": goopy.cmd.repo.addrepo,
        "rmrepo": goopy.cmd.repo.rmrepo,
        "listrepos": goopy.cmd.repo.listrepos,
    }
    for name, command in commands.items():
        _ = typer_app.command(name=name)(command)
    return typer_app


def main():
    create_app()()
