import typing

import pydantic
import pydantic.alias_generators

from goopy.models import pkg as pkg_models
from goopy.models import spec as spec_models


class PackageState(pydantic.BaseModel):
    """
    What the database records about one installed package.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=pydantic.alias_generators.to_pascal,
        populate_by_name=True,
        extra="ignore",
    )

    package_spec: spec_models.PkgSpec
    source_repo: str = ""
    download_url: str = pydantic.Field(default="", alias="DownloadURL")
    checksum: str = ""
    # cached archive, empty when the archive is not kept
    local_path: str = ""
    # absolute path -> sha256, "" for directories
    installed_files: typing.Annotated[
        dict[str, str], pydantic.BeforeValidator(lambda v: {} if v is None else v)
    ] = {}
    install_exit_code: int = 0
    install_date: int = 0

    @property
    def pkg_id(self) -> pkg_models.PkgId:
        return self.package_spec.pkg_id

    @property
    def key(self) -> str:
        return self.package_spec.key

    @property
    def name(self) -> str:
        return self.package_spec.name

    @property
    def version(self) -> str:
        return self.package_spec.version


class InstalledState(pydantic.RootModel[list[PackageState]]):
    """
    The whole database as stored on disk.
    """

    root: list[PackageState] = []


def package_map(states: typing.Iterable[PackageState]) -> dict[str, str]:
    """
    name.arch -> installed version
    """
    return {state.key: state.version for state in states}
