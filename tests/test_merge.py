import os
import sys
import sqlite3
import pytest
from pathlib import Path
from model_catalog.database.ops import CatalogOps
from model_catalog.exceptions import MergeError, ModelNotFoundError
from model_catalog.models import Model, ModelFile
from model_catalog.organization.merge import ModelMerger, merged_name
from model_catalog.organization import mover


@pytest.fixture
def merger(library, conn):
    return ModelMerger(library, conn)


@pytest.fixture
def add_model(library, ops, conn, write_file):
    """Creates a model folder on disk plus its catalog rows. `files` maps relative name -> size."""
    def _add(path: str, files: dict, **fields) -> int:
        model_id = ops.create_model(Model(name=Path(path).name, path=path, **fields))
        for rel, size in files.items():
            disk = write_file(library / path / rel, size)
            ops.add_file(ModelFile(
                model_id=model_id,
                file_path=f"{path}/{rel}",
                file_name=disk.name,
                file_ext=disk.suffix.lower(),
                file_size=size,
            ))
        conn.commit()
        return model_id
    return _add


def test_merged_name():
    assert merged_name("a/render.png", 0) == "a/render.png"
    assert merged_name("a/render.png", 1) == "a/render_merged.png"
    assert merged_name("a/render.png", 2) == "a/render_merged_2.png"
    assert merged_name("a/LICENSE", 1) == "a/LICENSE_merged"

def test_basic_merge_layout(library, merger, ops, add_model):
    target_id = add_model("Dragon", {"body.stl": 10})
    source_id = add_model("Dragon_v2", {"body.stl": 20, "parts/wing.stl": 5})

    result = merger.merge(target_id, source_id)

    assert result.moved == 2
    assert ops.get_model(source_id) is None
    assert not (library / "Dragon_v2").exists()

    # Target's loose files moved into a same-named subfolder
    assert (library / "Dragon" / "Dragon" / "body.stl").stat().st_size == 10
    assert (library / "Dragon" / "Dragon_v2" / "body.stl").stat().st_size == 20
    assert (library / "Dragon" / "Dragon_v2" / "parts" / "wing.stl").exists()
    assert not (library / "Dragon" / "body.stl").exists()

    paths = sorted((f.file_path, f.file_name) for f in ops.get_files_by_model(target_id))
    assert paths == [
        ("Dragon/Dragon/body.stl", "body.stl"),
        ("Dragon/Dragon_v2/body.stl", "body.stl"),
        ("Dragon/Dragon_v2/parts/wing.stl", "wing.stl"),
    ]

def test_same_size_file_is_duplicate(library, merger, ops, conn, add_model, write_file):
    target_id = add_model("Dragon", {"Dragon_v2/render.png": 1024})
    source_id = add_model("Dragon_v2", {"render.png": 1024})

    result = merger.merge(target_id, source_id)

    assert result.duplicates == 1
    assert result.moved == 0
    assert not (library / "Dragon" / "Dragon_v2" / "render_merged.png").exists()
    files = ops.get_files_by_model(target_id)
    assert [f.file_path for f in files] == ["Dragon/Dragon_v2/render.png"]
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM model_files WHERE model_id = ?", (source_id,))
    assert cur.fetchone()[0] == 0

def test_different_size_file_gets_merged_suffix(library, merger, ops, add_model):
    target_id = add_model("Dragon", {"Dragon_v2/render.png": 2048})
    source_id = add_model("Dragon_v2", {"render.png": 1024})

    result = merger.merge(target_id, source_id)

    assert result.renamed == 1
    renamed = library / "Dragon" / "Dragon_v2" / "render_merged.png"
    assert renamed.stat().st_size == 1024
    assert (library / "Dragon" / "Dragon_v2" / "render.png").stat().st_size == 2048

    row = ops.get_file_by_path("Dragon/Dragon_v2/render_merged.png")
    assert row is not None
    assert row.model_id == target_id
    assert row.file_name == "render_merged.png"

def test_catalog_rolls_back_when_transaction_fails(library, merger, ops, add_model, monkeypatch):
    target_id = add_model("Dragon", {})
    source_id = add_model("Dragon_v2", {"a.stl": 1, "b.stl": 2, "c.stl": 3})
    before = [(f.id, f.model_id, f.file_path) for f in ops.get_files_by_model(source_id)]

    calls = []
    original = CatalogOps.move_file_to_model
    def flaky(self, file_id, target_model_id, new_path):
        calls.append(file_id)
        if len(calls) == 3:
            raise sqlite3.OperationalError("database is locked")
        return original(self, file_id, target_model_id, new_path)
    monkeypatch.setattr(CatalogOps, "move_file_to_model", flaky)

    with pytest.raises(MergeError):
        merger.merge(target_id, source_id)

    after = [(f.id, f.model_id, f.file_path) for f in ops.get_files_by_model(source_id)]
    assert after == before
    assert ops.get_files_by_model(target_id) == []
    assert ops.get_model(source_id) is not None
    # Moves already done are not reverted, and the source folder is kept
    assert (library / "Dragon" / "Dragon_v2" / "a.stl").exists()
    assert (library / "Dragon_v2").is_dir()

def test_move_failure_aborts_merge(library, merger, ops, add_model, monkeypatch):
    target_id = add_model("Dragon", {})
    source_id = add_model("Dragon_v2", {"a.stl": 1})

    def broken_rename(src, dst):
        raise PermissionError(13, "Permission denied")
    def broken_copy(src, dst):
        raise PermissionError(13, "Permission denied")
    monkeypatch.setattr(mover.os, "rename", broken_rename)
    monkeypatch.setattr(mover.shutil, "copy2", broken_copy)

    with pytest.raises(MergeError):
        merger.merge(target_id, source_id)

    assert ops.get_model(source_id) is not None
    assert ops.get_file_by_path("Dragon_v2/a.stl").model_id == source_id
    assert (library / "Dragon_v2" / "a.stl").exists()

def test_missing_source_file_is_tolerated(library, merger, ops, add_model):
    target_id = add_model("Dragon", {})
    source_id = add_model("Dragon_v2", {"body.stl": 10, "ghost.stl": 5})
    (library / "Dragon_v2" / "ghost.stl").unlink()

    result = merger.merge(target_id, source_id)

    assert result.missing == 1
    assert result.moved == 1
    assert ops.get_file_by_path("Dragon_v2/ghost.stl") is None
    assert [f.file_path for f in ops.get_files_by_model(target_id)] == ["Dragon/Dragon_v2/body.stl"]

def test_untracked_files_follow_the_merge(library, merger, ops, add_model, write_file):
    target_id = add_model("Dragon", {})
    source_id = add_model("Dragon_v2", {"body.stl": 10})
    write_file(library / "Dragon_v2" / "readme.txt")
    write_file(library / "Dragon_v2" / "extra" / "horn.obj", 7)

    merger.merge(target_id, source_id)

    assert (library / "Dragon" / "Dragon_v2" / "readme.txt").exists()
    horn = ops.get_file_by_path("Dragon/Dragon_v2/extra/horn.obj")
    assert horn is not None
    assert horn.model_id == target_id
    assert horn.file_size == 7
    assert ops.get_file_by_path("Dragon/Dragon_v2/readme.txt") is None

def test_tags_and_metadata_backfilled(library, merger, ops, conn, add_model):
    author_id = ops.create_author("Sculptor")
    target_id = add_model("Dragon", {"body.stl": 1})
    source_id = add_model(
        "Dragon_v2", {"body.stl": 2, "cover.jpg": 3},
        notes="printed at 0.05mm", thumbnail_path="Dragon_v2/cover.jpg",
    )
    shared = ops.create_tag("dragon")
    only_source = ops.create_tag("fantasy")
    ops.add_tag(target_id, shared)
    ops.add_tag(source_id, shared)
    ops.add_tag(source_id, only_source)
    ops.set_model_author(source_id, author_id)
    conn.commit()

    merger.merge(target_id, source_id)

    target = ops.get_model(target_id)
    assert target.tag_ids == sorted([shared, only_source])
    assert target.notes == "printed at 0.05mm"
    assert target.author_id == author_id
    assert target.thumbnail_path == "Dragon/Dragon_v2/cover.jpg"
    assert (library / target.thumbnail_path).exists()

def test_target_metadata_is_kept(library, merger, ops, add_model):
    target_id = add_model("Dragon", {"body.stl": 1, "cover.png": 1},
                          notes="mine", thumbnail_path="Dragon/cover.png")
    source_id = add_model("Dragon_v2", {"body.stl": 2}, notes="theirs")

    merger.merge(target_id, source_id)

    target = ops.get_model(target_id)
    assert target.notes == "mine"
    # Loose target thumbnail follows its file
    assert target.thumbnail_path == "Dragon/Dragon/cover.png"
    assert (library / "Dragon" / "Dragon" / "cover.png").exists()

def test_missing_models_are_reported(library, merger, ops, add_model):
    target_id = add_model("Dragon", {"body.stl": 1})

    with pytest.raises(ModelNotFoundError):
        merger.merge(target_id, 999)
    with pytest.raises(ModelNotFoundError):
        merger.merge(999, target_id)
    with pytest.raises(ModelNotFoundError):
        merger.merge(999, 999)

    # Nothing touched
    assert (library / "Dragon" / "body.stl").exists()
    assert ops.get_file_by_path("Dragon/body.stl") is not None

def test_invalid_merge_requests(merger, add_model):
    parent_id = add_model("Dragon", {"body.stl": 1})
    nested_id = add_model("Dragon/Variant", {"v.stl": 1})

    with pytest.raises(MergeError):
        merger.merge(parent_id, parent_id)
    with pytest.raises(MergeError):
        merger.merge(parent_id, nested_id)

def test_rename_path_updates_catalog(merger, ops, add_model):
    model_id = add_model("Old Name", {"body.stl": 1, "parts/arm.stl": 1}, thumbnail_path="Old Name/cover.png")

    owner = merger.rename_model_path(model_id, " New Name/ ")

    assert owner == model_id
    model = ops.get_model(model_id)
    assert model.path == "New Name"
    assert model.thumbnail_path == "New Name/cover.png"
    assert sorted(f.file_path for f in ops.get_files_by_model(model_id)) == [
        "New Name/body.stl", "New Name/parts/arm.stl",
    ]

def test_rename_path_collision_merges(library, merger, ops, add_model):
    existing_id = add_model("Dragon", {"body.stl": 1})
    renamed_id = add_model("Dragon copy", {"body.stl": 2})

    owner = merger.rename_model_path(renamed_id, "Dragon")

    assert owner == existing_id
    assert ops.get_model(renamed_id) is None
    assert (library / "Dragon" / "Dragon copy" / "body.stl").exists()
    assert not (library / "Dragon copy").exists()

def test_rename_path_validation(merger, add_model):
    model_id = add_model("Dragon", {"body.stl": 1})

    with pytest.raises(ValueError):
        merger.rename_model_path(model_id, "  ")
    with pytest.raises(ModelNotFoundError):
        merger.rename_model_path(999, "Other")
    assert merger.rename_model_path(model_id, "Dragon") == model_id

@pytest.mark.skipif(sys.platform != "linux", reason="filesystem must accept non-UTF-8 names")
def test_unstorable_file_name_rolls_back_merge(library, merger, ops, conn, add_model, write_file):
    target_id = add_model("Dragon", {})
    source_id = add_model("V2", {"a.stl": 1})
    write_file(library / "V2" / os.fsdecode(b"z\xff.stl"))

    with pytest.raises(MergeError):
        merger.merge(target_id, source_id)

    assert not conn.in_transaction
    conn.commit()
    assert ops.get_file_by_path("V2/a.stl").model_id == source_id
    assert ops.get_file_by_path("Dragon/V2/a.stl") is None
    assert ops.get_model(source_id) is not None

def test_unexpected_error_rolls_back_merge(library, merger, ops, conn, add_model, write_file, monkeypatch):
    target_id = add_model("Dragon", {})
    source_id = add_model("V2", {"a.stl": 1})
    write_file(library / "V2" / "untracked.obj")

    def no_row_id(self, mf):
        raise RuntimeError("Database INSERT failed to return a row ID.")
    monkeypatch.setattr(CatalogOps, "add_file", no_row_id)

    with pytest.raises(MergeError):
        merger.merge(target_id, source_id)

    assert not conn.in_transaction
    assert ops.get_file_by_path("V2/a.stl").model_id == source_id
    assert ops.get_files_by_model(target_id) == []
