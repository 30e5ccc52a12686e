import json
import os

import pytest

from brave.CONFIG.settings import BravePaths, HostSettings, default_settings, load_settings, save_settings
from brave.errors import ConfigError, PersistenceError, RemoteNotFoundError
from brave.MODELS.unit import UnitData
from brave.RUNTIME.remotes import Remote, RemoteStore, parse_remote_name
from brave.STORE.unit_store import UnitStore


def test_unit_records(unit_store):
    first = unit_store.insert_unit("web", UnitData(cpu=2, ram="1GB", ip="10.0.0.20", image="web/1.0/x86_64"))
    unit_store.insert_unit("db", UnitData(cpu=1, ram="512MB"))

    fetched = unit_store.get_unit("web")
    assert fetched.uid == first.uid
    assert fetched.data.ip == "10.0.0.20"
    assert [r.name for r in unit_store.list_units()] == ["web", "db"]

    assert unit_store.delete_unit("web") == 1
    assert unit_store.get_unit("web") is None
    assert unit_store.delete_unit("web") == 0


def test_unit_store_creates_database_directory(tmp_path):
    store = UnitStore(tmp_path / "nested" / "db" / "brave.db")
    assert store.list_units() == []
    assert (tmp_path / "nested" / "db" / "brave.db").exists()


def test_unit_store_wraps_database_errors(tmp_path):
    path = tmp_path / "brave.db"
    path.write_text("this is not a database " * 100)
    with pytest.raises(PersistenceError):
        UnitStore(path).list_units()


def test_settings_round_trip(brave_paths):
    settings = default_settings("lab")
    save_settings(brave_paths, settings)

    loaded = load_settings(brave_paths)
    assert loaded == settings
    assert loaded.profile == "lab"
    assert loaded.storage_pool.name == "lab-pool"
    assert oct(os.stat(brave_paths.config_file).st_mode & 0o777) == "0o600"


def test_load_settings_errors(tmp_path):
    paths = BravePaths(str(tmp_path))
    with pytest.raises(ConfigError, match="brave init"):
        load_settings(paths)
    paths.config_file.write_text("storage_pool: [not, a, mapping]\n")
    with pytest.raises(ConfigError):
        load_settings(paths)


def test_brave_home_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("BRAVE_HOME", str(tmp_path))
    assert BravePaths().images_dir == tmp_path / "images"


def test_remote_store(brave_paths):
    store = RemoteStore(brave_paths)
    store.save(Remote(name="prod", url="https://10.0.0.5:8443", cert="c.crt", key="c.key"))

    assert store.list() == ["prod"]
    assert store.load("prod").has_auth
    assert store.find("staging") is None
    with pytest.raises(RemoteNotFoundError):
        store.load("staging")

    (brave_paths.remotes_dir / "broken.json").write_text(json.dumps({"url": "x"}))
    with pytest.raises(ConfigError):
        store.load("broken")

    store.delete("prod")
    assert store.list() == ["broken"]


def test_parse_remote_name():
    assert parse_remote_name("prod:web") == ("prod", "web")
    assert parse_remote_name("web") == ("local", "web")
    assert parse_remote_name(":web") == ("local", "web")
    assert not Remote(name="x", url="https://h:8443").has_auth
    assert Remote(name="local", url="unix.socket", protocol="unix").has_auth
    assert HostSettings().backend.resources.os == "jammy"
