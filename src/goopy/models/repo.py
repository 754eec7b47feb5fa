import dataclasses
import typing

import pydantic

import goopy.priority
from goopy.models import spec as spec_models


def _lowercase_keys(value: typing.Any) -> typing.Any:
    if isinstance(value, dict):
        return {str(k).lower(): v for k, v in value.items()}
    return value


def _parse_priority(value: typing.Any) -> typing.Any:
    if value is None or value == "":
        return goopy.priority.DEFAULT
    if isinstance(value, str):
        return goopy.priority.from_string(value)
    return value


class RepoEntry(pydantic.BaseModel):
    """
    One repository as configured in a .repo file.
    """

    name: str = ""
    url: str
    priority: typing.Annotated[int, pydantic.BeforeValidator(_parse_priority)] = (
        goopy.priority.DEFAULT
    )

    @pydantic.model_validator(mode="before")
    @classmethod
    def _case_insensitive_keys(cls, value: typing.Any) -> typing.Any:
        return _lowercase_keys(value)

    @pydantic.field_serializer("priority")
    def serialize_priority(self, priority: int) -> str | int:
        name = goopy.priority.to_name(priority)
        return name if name is not None else priority

    def file_data(self) -> dict[str, typing.Any]:
        """
        The entry as written to a .repo file. An empty name and the default priority are
        left out.
        """
        data = self.model_dump()
        if self.name == "":
            del data["name"]
        if self.priority == goopy.priority.DEFAULT:
            del data["priority"]
        return data


@dataclasses.dataclass
class Repo:
    """
    A loaded repository: its priority and the packages its manifest offers.
    """

    priority: int
    packages: list[spec_models.RepoSpec]


# repo url -> Repo
RepoMap = dict[str, Repo]
