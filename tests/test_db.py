import pathlib

import pytest

import goopy.db
import goopy.errors


def test_open_missing_db_is_empty(tmp_path: pathlib.Path):
    with goopy.db.StateDB.open(tmp_path / "goopy.db") as db:
        assert db.fetch_all() == []
        assert not db.contains("foo.noarch")


def test_write_and_reopen(tmp_path: pathlib.Path, helpers):
    # GIVEN: two packages written to the database
    db_file = tmp_path / "goopy.db"
    with goopy.db.StateDB.open(db_file) as db:
        db.write(
            [
                helpers.state(helpers.pkg_spec("foo", "1.0"), installed_files={"/x": "abc"}),
                helpers.state(helpers.pkg_spec("bar", "2.0", "x86_64")),
            ]
        )

    # WHEN: reopening it
    with goopy.db.StateDB.open(db_file) as db:
        states = db.fetch_all()
        foo = db.fetch_one("foo.noarch")

    # THEN: records come back sorted by name.arch with their contents
    assert [state.key for state in states] == ["bar.x86_64", "foo.noarch"]
    assert foo.installed_files == {"/x": "abc"}
    assert '"PackageSpec"' in db_file.read_text()


def test_fetch_all_filter(tmp_path: pathlib.Path, helpers):
    with goopy.db.StateDB.open(tmp_path / "goopy.db") as db:
        db.write(
            [
                helpers.state(helpers.pkg_spec("googet", "1.0")),
                helpers.state(helpers.pkg_spec("python", "3.12")),
            ]
        )

        assert [state.name for state in db.fetch_all("goo")] == ["googet"]


def test_upsert_and_delete(tmp_path: pathlib.Path, helpers):
    db_file = tmp_path / "goopy.db"
    with goopy.db.StateDB.open(db_file) as db:
        db.upsert(helpers.state(helpers.pkg_spec("foo", "1.0")))
        db.upsert(helpers.state(helpers.pkg_spec("foo", "2.0")))
        assert db.fetch_one("foo.noarch").version == "2.0"
        assert len(db.fetch_all()) == 1

        db.delete("foo.noarch")
        with pytest.raises(goopy.errors.NotInstalled):
            _ = db.fetch_one("foo.noarch")
        with pytest.raises(goopy.errors.NotInstalled):
            db.delete("foo.noarch")

    with goopy.db.StateDB.open(db_file) as db:
        assert db.fetch_all() == []


def test_fetched_records_are_copies(tmp_path: pathlib.Path, helpers):
    with goopy.db.StateDB.open(tmp_path / "goopy.db") as db:
        db.upsert(helpers.state(helpers.pkg_spec("foo", "1.0")))

        state = db.fetch_one("foo.noarch")
        state.installed_files["/tmp/x"] = ""

        assert db.fetch_one("foo.noarch").installed_files == {}


def test_write_rejects_duplicate_keys(tmp_path: pathlib.Path, helpers):
    with goopy.db.StateDB.open(tmp_path / "goopy.db") as db:
        with pytest.raises(ValueError):
            db.write(
                [
                    helpers.state(helpers.pkg_spec("foo", "1.0")),
                    helpers.state(helpers.pkg_spec("foo", "2.0")),
                ]
            )


def test_second_open_is_busy(tmp_path: pathlib.Path):
    # GIVEN: the database held open
    db_file = tmp_path / "goopy.db"
    with goopy.db.StateDB.open(db_file):
        # THEN: another open fails without waiting
        with pytest.raises(goopy.errors.DBBusy):
            _ = goopy.db.StateDB.open(db_file)

    # THEN: it can be opened again once released
    goopy.db.StateDB.open(db_file).close()


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        '{"PackageSpec": {}}',
        '[{"PackageSpec": {"Name": "foo", "Version": "1", "Arch": "noarch"}},'
        ' {"PackageSpec": {"Name": "foo", "Version": "2", "Arch": "noarch"}}]',
    ],
)
def test_corrupt_db(tmp_path: pathlib.Path, content: str):
    db_file = tmp_path / "goopy.db"
    _ = db_file.write_text(content)

    with pytest.raises(goopy.errors.DBCorrupt):
        _ = goopy.db.StateDB.open(db_file)

    # A failed open releases its lock, so the error repeats rather than turning into DBBusy
    with pytest.raises(goopy.errors.DBCorrupt):
        _ = goopy.db.StateDB.open(db_file)


def test_failed_commit_keeps_previous_contents(tmp_path: pathlib.Path, helpers, mocker):
    # GIVEN: a database with one record
    db_file = tmp_path / "goopy.db"
    with goopy.db.StateDB.open(db_file) as db:
        db.upsert(helpers.state(helpers.pkg_spec("foo", "1.0")))
    before = db_file.read_bytes()

    # WHEN: the final rename fails
    _ = mocker.patch("goopy.db.os.replace", side_effect=OSError("disk full"))
    with goopy.db.StateDB.open(db_file) as db:
        with pytest.raises(OSError):
            db.upsert(helpers.state(helpers.pkg_spec("bar", "1.0")))

        # THEN: neither memory nor disk changed, and no temporary file is left
        assert [state.key for state in db.fetch_all()] == ["foo.noarch"]
    assert db_file.read_bytes() == before
    assert sorted(path.name for path in tmp_path.iterdir()) == ["goopy.db", "goopy.db.lock"]
