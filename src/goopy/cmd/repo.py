import typing

import typer

import goopy.cmd.common as cmd_common
import goopy.priority
import goopy.repo
from goopy.models import repo as repo_models


def addrepo(
    ctx: typer.Context,
    name: typing.Annotated[str, typer.Argument()],
    url: typing.Annotated[str, typer.Argument()],
    file: typing.Annotated[
        str | None,
        typer.Option("--file", help="Repo file to add the repo to, <name>.repo by default"),
    ] = None,
    priority: typing.Annotated[
        str | None,
        typer.Option("--priority", help="An integer or one of default, canary, pin, rollback"),
    ] = None,
):
    """
    Add a repository, replacing any repo with the same name or URL in the file.
    """
    with cmd_common.reporting_errors():
        env = cmd_common.environment(ctx)
        if file is None:
            file = f"{name}.repo"
        elif not file.endswith(goopy.repo.REPO_FILE_SUFFIX):
            typer.echo(f"Error: repo file name must end in {goopy.repo.REPO_FILE_SUFFIX}", err=True)
            raise typer.Exit(code=2)

        entry = repo_models.RepoEntry(
            name=name,
            url=url,
            priority=(
                goopy.priority.from_string(priority)
                if priority is not None
                else goopy.priority.DEFAULT
            ),
        )
        repo_file = env.repo_dir / file
        content = goopy.repo.add_entry_to_file(entry, repo_file)

    typer.echo(f"Appended to repo file {repo_file} with the following content:\n{content}")


def rmrepo(
    ctx: typer.Context,
    name: typing.Annotated[str, typer.Argument()],
):
    """
    Remove every repository with this name.
    """
    with cmd_common.reporting_errors():
        changed = goopy.repo.remove_entry_from_files(name, cmd_common.environment(ctx).repo_dir)

    if len(changed) == 0:
        typer.echo(f"Repo {name!r} not found.")
        raise typer.Exit(code=1)
    for path in changed:
        typer.echo(f"Removed repo {name!r} from {path}")


def listrepos(ctx: typer.Context):
    """
    List configured repositories.
    """
    with cmd_common.reporting_errors():
        repo_files = goopy.repo.config_files(cmd_common.environment(ctx).repo_dir)

    for repo_file in repo_files:
        typer.echo(f"{repo_file.path}:")
        for entry in repo_file.entries:
            typer.echo(f"  {entry.name}: {entry.url} ({goopy.priority.to_string(entry.priority)})")
