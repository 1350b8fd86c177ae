import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from settings import Settings, SettingsFile


def test_defaults_when_missing(tmp_path):
    s = SettingsFile(tmp_path / "settings.json").load()
    assert s.selected_folder is None
    assert s.media_library is None


def test_save_and_load(tmp_path):
    f = SettingsFile(tmp_path / "settings.json")
    f.save(Settings(selected_folder="/photos", media_library="/lib"))
    s = f.load()
    assert s.selected_folder == "/photos"
    assert s.media_library == "/lib"
    assert not (tmp_path / "settings.json.tmp").exists()


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    assert SettingsFile(path).load() == Settings()


def test_non_object_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(["a", "b"]))
    assert SettingsFile(path).load() == Settings()


def test_select_folder(tmp_path):
    f = SettingsFile(tmp_path / "settings.json")
    folder = tmp_path / "photos"
    folder.mkdir()

    msg = f.select_folder(str(folder))
    assert msg.startswith("Selected folder:")
    assert f.load().selected_folder == str(folder.resolve())


def test_select_folder_rejects_non_directory(tmp_path):
    f = SettingsFile(tmp_path / "settings.json")
    msg = f.select_folder(str(tmp_path / "missing"))
    assert msg.startswith("Not a directory:")
    assert f.load().selected_folder is None


def test_clear_folder_keeps_media_library(tmp_path):
    f = SettingsFile(tmp_path / "settings.json")
    f.save(Settings(selected_folder=str(tmp_path), media_library="/lib"))
    msg = f.select_folder(None)
    assert msg.startswith("Cleared folder selection")
    s = f.load()
    assert s.selected_folder is None
    assert s.media_library == "/lib"
