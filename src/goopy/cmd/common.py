import contextlib
import dataclasses
import pathlib
import typing

import typer

import goopy.errors
import goopy.logging
import goopy.manager
import goopy.settings


@dataclasses.dataclass
class GlobalOptions:
    root: pathlib.Path | None = None
    sources: str = ""


def global_options(ctx: typer.Context) -> GlobalOptions:
    if isinstance(ctx.obj, GlobalOptions):
        return ctx.obj
    return GlobalOptions()


def environment(ctx: typer.Context) -> goopy.settings.Environment:
    return goopy.settings.Environment.from_root(global_options(ctx).root)


@contextlib.contextmanager
def reporting_errors() -> typing.Iterator[None]:
    """
    Translate failures into a one line message on stderr and the error's exit code.
    """
    try:
        yield
    except goopy.errors.GoopyError as e:
        goopy.logging.logger.debug("%s", type(e).__name__, exc_info=e)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=e.exit_code) from e
    except KeyboardInterrupt:
        typer.echo("Error: operation cancelled", err=True)
        raise typer.Exit(code=goopy.errors.Cancelled.exit_code) from None


@contextlib.contextmanager
def open_manager(ctx: typer.Context) -> typing.Iterator[goopy.manager.Manager]:
    with reporting_errors():
        manager = goopy.manager.Manager(environment(ctx), sources=global_options(ctx).sources)
        try:
            with manager:
                yield manager
        except KeyboardInterrupt:
            manager.cancel_event.set()
            raise
