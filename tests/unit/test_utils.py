import logging

import pytest

from feedrank.utils.io import atomic_path, load_yaml_section
from feedrank.utils.logging import setup_logging
from feedrank.utils.path_utils import find_repo_root


def test_load_yaml_section(temp_data_dir):
    path = temp_data_dir / "cfg.yaml"
    path.write_text("feed:\n  batch_size: 5\nother: 1\n", encoding="utf-8")
    assert load_yaml_section(str(path), "feed") == {"batch_size": 5}
    assert load_yaml_section(str(path), "missing") == {}


def test_load_yaml_section_non_mapping(temp_data_dir):
    path = temp_data_dir / "cfg.yaml"
    path.write_text("feed: [1, 2]\n", encoding="utf-8")
    assert load_yaml_section(str(path), "feed") == {}


def test_load_yaml_section_missing_file(temp_data_dir):
    assert load_yaml_section(str(temp_data_dir / "nope.yaml"), "feed") == {}
    assert load_yaml_section(None, "feed") == {}


def test_atomic_path_replaces_target(temp_data_dir):
    target = temp_data_dir / "models" / "net.pt"
    with atomic_path(target) as tmp:
        tmp.write_text("new", encoding="utf-8")
        assert not target.exists()
    assert target.read_text(encoding="utf-8") == "new"
    assert not tmp.exists()


def test_atomic_path_keeps_old_file_on_error(temp_data_dir):
    target = temp_data_dir / "net.pt"
    target.write_text("old", encoding="utf-8")
    with pytest.raises(RuntimeError):
        with atomic_path(target) as tmp:
            tmp.write_text("partial", encoding="utf-8")
            raise RuntimeError("boom")
    assert target.read_text(encoding="utf-8") == "old"
    assert not tmp.exists()


def test_find_repo_root_prefers_env(temp_data_dir, monkeypatch):
    monkeypatch.setenv("FEEDRANK_HOME", str(temp_data_dir))
    assert find_repo_root() == temp_data_dir.resolve()


def test_find_repo_root_walks_up_to_marker(temp_data_dir, monkeypatch):
    monkeypatch.delenv("FEEDRANK_HOME", raising=False)
    (temp_data_dir / "feedrank.yaml").write_text("", encoding="utf-8")
    nested = temp_data_dir / "a" / "b"
    nested.mkdir(parents=True)
    assert find_repo_root(nested / "file.py") == temp_data_dir


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        setup_logging("LOUD")


def test_setup_logging_quiets_scheduler_logs():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("DEBUG")
        assert logging.getLogger("apscheduler").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
