import pathlib

import goopy.clean


def _touch(path: pathlib.Path) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_bytes(b"x")
    return path


def test_clean_all(tmp_path: pathlib.Path):
    cache = tmp_path / "cache"
    _ = _touch(cache / "foo.noarch.1.goo")
    _ = _touch(cache / "leftover.goo.unpacked" / "file")

    removed = goopy.clean.clean_all(cache)

    assert len(removed) == 2
    assert list(cache.iterdir()) == []


def test_clean_all_missing_cache(tmp_path: pathlib.Path):
    assert goopy.clean.clean_all(tmp_path / "cache") == []


def test_clean_packages(tmp_path: pathlib.Path, helpers):
    # GIVEN: two installed packages with cached archives
    cache = tmp_path / "cache"
    want = _touch(cache / "want.noarch.1.goo")
    keep = _touch(cache / "keep.noarch.1.goo")
    states = [
        helpers.state(helpers.pkg_spec("want", "1"), local_path=str(want)),
        helpers.state(helpers.pkg_spec("keep", "1"), local_path=str(keep)),
    ]

    # WHEN: cleaning one of them by name
    removed = goopy.clean.clean_packages(states, {"want"})

    # THEN: only that archive is gone
    assert removed == [want]
    assert not want.exists()
    assert keep.exists()


def test_clean_uninstalled(tmp_path: pathlib.Path, helpers):
    # GIVEN: a cache with an installed package's archive and unrelated entries
    cache = tmp_path / "cache"
    installed = _touch(cache / "foo.noarch.1.goo")
    stale = _touch(cache / "foo.noarch.0.9.goo")
    unpacked = _touch(cache / "bar.noarch.1.goo.unpacked" / "file").parent
    states = [helpers.state(helpers.pkg_spec("foo", "1"), local_path=str(installed))]

    # WHEN: cleaning uninstalled entries
    removed = goopy.clean.clean_uninstalled(cache, states)

    # THEN: only the installed archive is kept
    assert sorted(removed) == sorted([stale, unpacked])
    assert list(cache.iterdir()) == [installed]
