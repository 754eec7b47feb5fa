# pyright: reportUnknownMemberType=false

import io
import pathlib
import tarfile
import typing

import pytest

import goopy.hash
import goopy.settings
from goopy.models import repo as repo_models
from goopy.models import spec as spec_models
from goopy.models import state as state_models

REPO_URL = "https://repo.example.com/goopy/stable"


class MockHttpResponse:
    def __init__(self, content: bytes, status_code: int = 200):
        self.content: bytes = content
        self.status_code: int = status_code
        self.ok: bool = status_code == 200

    @property
    def text(self):
        return self.content.decode("utf-8")

    def iter_content(self, chunk_size: int = 1) -> typing.Iterator[bytes]:
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def raise_for_status(self):
        if not self.ok:
            raise RuntimeError(f"HTTP error: {self.status_code}")

    def __enter__(self) -> "MockHttpResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        pass


class MockHttp404Response(MockHttpResponse):
    def __init__(self):
        super().__init__(b"", status_code=404)


class FakeHttpServer:
    """
    Serves bytes by URL and records every requested URL.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.requests: list[str] = []

    def serve(self, url: str, content: bytes) -> None:
        self.files[url] = content

    def get(self, url: str, *args: typing.Any, **kwargs: typing.Any) -> MockHttpResponse:
        self.requests.append(url)
        if url in self.files:
            return MockHttpResponse(self.files[url])
        return MockHttp404Response()


@pytest.fixture(name="http_server")
def http_server_fixture(mocker) -> FakeHttpServer:
    server = FakeHttpServer()
    _ = mocker.patch("goopy.download.requests.get", side_effect=server.get)
    return server


@pytest.fixture(name="goopy_env")
def goopy_env_fixture(tmp_path: pathlib.Path) -> goopy.settings.Environment:
    return goopy.settings.Environment.from_root(
        tmp_path / "root", goopy.settings.Config(archs=["noarch", "x86_64"])
    )


class Helpers:
    @staticmethod
    def pkg_spec(name: str, version: str, arch: str = "noarch", **kwargs: typing.Any):
        return spec_models.PkgSpec(name=name, version=version, arch=arch, **kwargs)

    @staticmethod
    def build_archive(
        directory: pathlib.Path,
        spec: spec_models.PkgSpec,
        payload: dict[str, bytes] | None = None,
        executable: typing.Collection[str] = (),
    ) -> pathlib.Path:
        """
        Write a .goo archive holding the spec and payload (archive path -> content).
        """
        directory.mkdir(parents=True, exist_ok=True)
        archive = directory / f"{spec.pkg_id}.goo"
        members = dict(payload or {})
        members[f"{spec.name}.pkgspec"] = spec.model_dump_json(by_alias=True).encode()
        with tarfile.open(archive, "w:gz") as tar:
            for name, content in members.items():
                info = tarfile.TarInfo(name)
                info.size = len(content)
                info.mode = 0o755 if name in executable else 0o644
                tar.addfile(info, io.BytesIO(content))
        return archive

    @staticmethod
    def repo_spec(spec: spec_models.PkgSpec, archive: pathlib.Path | None = None):
        return spec_models.RepoSpec(
            checksum=goopy.hash.hash_file(archive, "sha256") if archive is not None else "",
            source=f"{spec.pkg_id}.goo",
            package_spec=spec,
        )

    @staticmethod
    def repo_map(
        *repos: tuple[str, int, list[spec_models.RepoSpec]],
    ) -> repo_models.RepoMap:
        return {
            url: repo_models.Repo(priority=priority, packages=packages)
            for url, priority, packages in repos
        }

    @staticmethod
    def state(spec: spec_models.PkgSpec, **kwargs: typing.Any) -> state_models.PackageState:
        return state_models.PackageState(package_spec=spec, **kwargs)


@pytest.fixture(name="helpers")
def helpers_fixture() -> Helpers:
    return Helpers()
