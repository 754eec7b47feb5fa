import typing

import typer

import goopy.cmd.common as cmd_common
import goopy.priority
from goopy.models import state as state_models


def _print_info(state: state_models.PackageState) -> None:
    spec = state.package_spec
    typer.echo(f"  {spec.name}.{spec.arch} {spec.version}")
    for label, value in (
        ("Description", spec.description),
        ("Authors", spec.authors),
        ("Owners", spec.owners),
        ("License", spec.license),
        ("Source", spec.source),
        ("Repo", state.source_repo),
    ):
        if value != "":
            typer.echo(f"    {label}: {value}")
    if len(spec.pkg_dependencies) > 0:
        typer.echo("    Dependencies:")
        for dep, version in sorted(spec.pkg_dependencies.items()):
            typer.echo(f"      {dep} >= {version}")
    if len(spec.release_notes) > 0:
        typer.echo("    Release notes:")
        for note in spec.release_notes:
            typer.echo(f"      {note}")


def installed(
    ctx: typer.Context,
    name_filter: typing.Annotated[str, typer.Argument(help="Only names containing this")] = "",
    info: typing.Annotated[bool, typer.Option("--info", help="Show package details")] = False,
    files: typing.Annotated[bool, typer.Option("--files", help="List installed files")] = False,
):
    """
    List installed packages.
    """
    with cmd_common.open_manager(ctx) as manager:
        states = manager.installed(name_filter)

    if len(states) == 0:
        typer.echo(f"No package matching filter {name_filter!r} installed.")
        raise typer.Exit(code=1)

    if name_filter == "":
        typer.echo("Installed packages:")
    else:
        typer.echo(f"Installed packages matching {name_filter!r}:")
    for state in states:
        if info:
            _print_info(state)
        else:
            typer.echo(f"  {state.key} {state.version}")
        if files:
            if len(state.installed_files) == 0:
                typer.echo("    - No files directly managed by goopy.")
            for path in sorted(state.installed_files):
                typer.echo(f"    - {path}")


def latest(
    ctx: typer.Context,
    package: typing.Annotated[str, typer.Argument(help="name or name.arch")],
):
    """
    Show the version of a package that install would select.
    """
    with cmd_common.open_manager(ctx) as manager:
        candidate = manager.latest(package)

    typer.echo(
        f"{candidate.pkg_id} from {candidate.repo_url} "
        f"(priority {goopy.priority.to_string(candidate.priority)})"
    )


def available(
    ctx: typer.Context,
    name_filter: typing.Annotated[str, typer.Argument(help="Only names containing this")] = "",
):
    """
    List packages offered by the configured repos.
    """
    with cmd_common.open_manager(ctx) as manager:
        offered = manager.available(name_filter)

    if len(offered) == 0:
        typer.echo(f"No package matching filter {name_filter!r} available.")
        raise typer.Exit(code=1)

    current_url = None
    for url, repo_spec in sorted(offered, key=lambda item: item[0]):
        if url != current_url:
            typer.echo(url)
            current_url = url
        spec = repo_spec.package_spec
        typer.echo(f"  {spec.name}.{spec.arch} {spec.version}")
