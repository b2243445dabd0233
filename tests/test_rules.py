import pytest
from pathlib import Path
from model_catalog import config
from model_catalog.models import DirKind
from model_catalog.scanning import rules


def test_ignored_regex_matches_names_and_sizes():
    ignored = rules.build_ignored_regex("stl, Supported ,pre-supported")

    assert ignored.match("STL")
    assert ignored.match("supported")
    assert ignored.match("Pre-Supported")
    assert ignored.match("25mm")
    assert ignored.match("32 mm")
    # Full-name match only
    assert not ignored.match("stl_files")
    assert not ignored.match("5mm")
    assert not ignored.match("Dragon")

def test_ignored_regex_empty_list():
    assert rules.build_ignored_regex("") is None
    assert rules.build_ignored_regex(" , ,") is None

def test_parse_folder_set():
    assert rules.parse_folder_set("Archive, _Trash ,") == {"archive", "_trash"}
    assert rules.parse_folder_set("") == set()

def test_find_model_files_respects_depth(tmp_path, write_file):
    write_file(tmp_path / "a.STL")
    write_file(tmp_path / "notes.txt")
    write_file(tmp_path / "l1" / "b.obj")
    write_file(tmp_path / "l1" / "l2" / "c.3mf")
    write_file(tmp_path / ".hidden" / "d.stl")

    direct = rules.find_direct_model_files(tmp_path)
    assert direct == [tmp_path / "a.STL"]

    names = {p.name for p in rules.find_model_files(tmp_path, max_depth=5)}
    assert names == {"a.STL", "b.obj", "c.3mf"}

    shallow = {p.name for p in rules.find_model_files(tmp_path, max_depth=1)}
    assert shallow == {"a.STL", "b.obj"}

def test_missing_directory_is_empty(tmp_path):
    missing = tmp_path / "gone"
    assert rules.find_direct_model_files(missing) == []
    assert rules.find_model_files(missing) == []
    assert rules.list_subdirs(missing) == []
    assert rules.find_thumbnail(missing) is None

def test_classify_excluded_and_category(tmp_path, write_file):
    archive = tmp_path / "Archive"
    write_file(archive / "m.stl")
    ignored = rules.build_ignored_regex(config.DEFAULT_IGNORED_FOLDERS)

    res = rules.classify_directory(archive, 5, 2, ignored, {"archive"})
    assert res.kind is DirKind.EXCLUDED

    res = rules.classify_directory(archive, 1, 2, ignored, set())
    assert res.kind is DirKind.CATEGORY

def test_classify_direct_files_wins(tmp_path, write_file):
    dragon = tmp_path / "Dragon"
    write_file(dragon / "body.stl")
    write_file(dragon / "STL" / "extra.stl")
    ignored = rules.build_ignored_regex("stl")

    res = rules.classify_directory(dragon, 0, 0, ignored, set())

    assert res.kind is DirKind.MODEL_LEAF
    assert res.rule == rules.RULE_DIRECT_FILES
    assert {p.name for p in res.files} == {"body.stl", "extra.stl"}

@pytest.mark.parametrize("sub_name", ["Supported", "25mm"])
def test_classify_ignored_subdir(tmp_path, write_file, sub_name):
    dragon = tmp_path / "Dragon"
    write_file(dragon / sub_name / "body.stl")
    ignored = rules.build_ignored_regex(config.DEFAULT_IGNORED_FOLDERS)

    res = rules.classify_directory(dragon, 2, 2, ignored, set())

    assert res.kind is DirKind.MODEL_LEAF
    assert res.rule == rules.RULE_IGNORED_SUBDIR

def test_classify_any_subdir(tmp_path, write_file):
    dragon = tmp_path / "Dragon"
    write_file(dragon / "Wings" / "left" / "wing.obj")
    ignored = rules.build_ignored_regex(config.DEFAULT_IGNORED_FOLDERS)

    res = rules.classify_directory(dragon, 2, 2, ignored, set())

    assert res.kind is DirKind.MODEL_LEAF
    assert res.rule == rules.RULE_ANY_SUBDIR
    assert [p.name for p in res.files] == ["wing.obj"]

def test_classify_unclassified(tmp_path, write_file):
    folder = tmp_path / "Misc"
    write_file(folder / "readme.txt")
    write_file(folder / "Docs" / "guide.pdf")

    res = rules.classify_directory(folder, 3, 2, None, set())
    assert res.kind is DirKind.UNCLASSIFIED
    assert res.files == []

def test_thumbnail_prefers_direct_image(tmp_path, write_file):
    write_file(tmp_path / "renders" / "shot.png")
    write_file(tmp_path / "cover.jpg")

    assert rules.find_thumbnail(tmp_path) == tmp_path / "cover.jpg"

def test_thumbnail_prefers_render_folder(tmp_path, write_file):
    write_file(tmp_path / "misc" / "other.png")
    write_file(tmp_path / "Renders" / "shot.png")
    write_file(tmp_path / "body.stl")

    assert rules.find_thumbnail(tmp_path) == tmp_path / "Renders" / "shot.png"

def test_thumbnail_recursive_search(tmp_path, write_file):
    write_file(tmp_path / "a" / "b" / "deep.webp")
    assert rules.find_thumbnail(tmp_path) == tmp_path / "a" / "b" / "deep.webp"

    too_deep = tmp_path / "x"
    write_file(too_deep / "l1" / "l2" / "l3" / "l4" / "img.png")
    assert rules.find_thumbnail(too_deep) is None
