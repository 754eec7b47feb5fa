import dataclasses
import os
import pathlib
import typing

import pydantic
import yaml

import goopy.errors
import goopy.logging
import goopy.system

GOOPY_ROOT_ENV = "GOOPY_ROOT"

DB_FILE_NAME = "goopy.db"
CACHE_DIR_NAME = "cache"
REPO_DIR_NAME = "repos"
LOCK_FILE_NAME = "goopy.lock"
LOG_FILE_NAME = "goopy.log"
CONF_FILE_NAME = "goopy.conf"


class Config(pydantic.BaseModel):
    """
    Settings read from goopy.conf under the install root.
    """

    model_config = pydantic.ConfigDict(extra="ignore")

    archs: list[str] = pydantic.Field(default_factory=goopy.system.installable_archs)
    cache_life: typing.Annotated[int, pydantic.Field(ge=0)] = 180
    proxy_server: str | None = None
    allow_unsafe_url: bool = False
    parallel_downloads: typing.Annotated[int, pydantic.Field(ge=1)] = 4
    lock_timeout: typing.Annotated[float, pydantic.Field(ge=0)] = 70

    @pydantic.field_validator("archs", mode="before")
    @classmethod
    def _split_archs(cls, value: typing.Any) -> typing.Any:
        if isinstance(value, str):
            return [arch.strip() for arch in value.split(",") if arch.strip() != ""]
        return value

    @property
    def proxies(self) -> dict[str, str] | None:
        if not self.proxy_server:
            return None
        return {"http": self.proxy_server, "https": self.proxy_server}


def load_config(conf_file: pathlib.Path) -> Config:
    """
    Loads goopy.conf. A missing or empty file yields the defaults.
    """
    if not conf_file.is_file():
        goopy.logging.debug("No config file at %s, using defaults", conf_file)
        return Config()

    try:
        raw = yaml.safe_load(conf_file.read_text())
    except yaml.YAMLError as e:
        raise goopy.errors.ParseError(f"unable to parse {conf_file}: {e}") from e

    if raw is None:
        return Config()

    try:
        return Config.model_validate(raw)
    except pydantic.ValidationError as e:
        raise goopy.errors.ParseError(f"invalid config in {conf_file}: {e}") from e


def discover_root(root: pathlib.Path | None = None) -> pathlib.Path:
    """
    Explicit root first, then $GOOPY_ROOT, then the platform default.
    """
    if root is not None:
        return root

    env_root = os.environ.get(GOOPY_ROOT_ENV, "")
    if env_root != "":
        return pathlib.Path(env_root)

    return goopy.system.default_root()


@dataclasses.dataclass(frozen=True)
class Environment:
    """
    Everything a command needs to know about where it operates. Built once at startup and
    passed down explicitly.
    """

    root: pathlib.Path
    config: Config

    @classmethod
    def from_root(
        cls, root: pathlib.Path | None = None, config: Config | None = None
    ) -> "Environment":
        root = discover_root(root).absolute()
        if config is None:
            config = load_config(root / CONF_FILE_NAME)
        return cls(root=root, config=config)

    @property
    def cache_dir(self) -> pathlib.Path:
        return self.root / CACHE_DIR_NAME

    @property
    def db_file(self) -> pathlib.Path:
        return self.root / DB_FILE_NAME

    @property
    def repo_dir(self) -> pathlib.Path:
        return self.root / REPO_DIR_NAME

    @property
    def lock_file(self) -> pathlib.Path:
        return self.root / LOCK_FILE_NAME

    @property
    def log_file(self) -> pathlib.Path:
        return self.root / LOG_FILE_NAME

    @property
    def conf_file(self) -> pathlib.Path:
        return self.root / CONF_FILE_NAME
