import sqlite3
import logging
from datetime import datetime, UTC
from pathlib import PurePosixPath
from typing import Optional, List, Tuple

from ..models import Category, Model, ModelFile

MODEL_COLUMNS = """
    id, name, path, author_id, category_id, notes, thumbnail_path, hidden,
    created_at, updated_at, scanned_at
"""

FILE_COLUMNS = "id, model_id, file_path, file_name, file_ext, file_size"


def utc_now_iso() -> str:
    """Timestamp format used for every catalog column (sortable as text)."""
    return datetime.now(UTC).isoformat()


def _row_to_category(row) -> Category:
    cid, name, path, parent_id, depth = row
    return Category(id=cid, name=name, path=path, parent_id=parent_id, depth=depth)


def _row_to_model(row) -> Model:
    (mid, name, path, author_id, category_id, notes, thumb, hidden,
     created_at, updated_at, scanned_at) = row
    return Model(
        id=mid, name=name, path=path, author_id=author_id, category_id=category_id,
        notes=notes or "", thumbnail_path=thumb or "", hidden=bool(hidden),
        created_at=created_at, updated_at=updated_at, scanned_at=scanned_at,
    )


def _row_to_file(row) -> ModelFile:
    fid, model_id, file_path, file_name, file_ext, file_size = row
    return ModelFile(
        id=fid, model_id=model_id, file_path=file_path,
        file_name=file_name, file_ext=file_ext, file_size=file_size or 0,
    )


class CatalogOps:
    """
    Repository over the catalog tables.
    Nothing here commits: callers decide where a unit of work begins and ends.
    """
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def commit(self):
        self.conn.commit()

    def rollback(self):
        self.conn.rollback()

    # --- Categories ---

    def get_category_by_path(self, path: str) -> Optional[Category]:
        cur = self.conn.cursor()
        cur.execute("SELECT id, name, path, parent_id, depth FROM categories WHERE path = ?", (path,))
        row = cur.fetchone()
        return _row_to_category(row) if row else None

    def create_category(self, cat: Category) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO categories (name, path, parent_id, depth) VALUES (?, ?, ?, ?)",
            (cat.name, cat.path, cat.parent_id, cat.depth),
        )
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        cat.id = cur.lastrowid
        return cat.id

    def list_child_categories(self, parent_id: int) -> List[Category]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, name, path, parent_id, depth FROM categories
            WHERE parent_id = ? ORDER BY name ASC
        """, (parent_id,))
        return [_row_to_category(r) for r in cur.fetchall()]

    def list_root_categories(self) -> List[Category]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, name, path, parent_id, depth FROM categories
            WHERE parent_id IS NULL ORDER BY name ASC
        """)
        return [_row_to_category(r) for r in cur.fetchall()]

    def list_categories(self) -> List[Category]:
        cur = self.conn.cursor()
        cur.execute("SELECT id, name, path, parent_id, depth FROM categories ORDER BY depth, path")
        return [_row_to_category(r) for r in cur.fetchall()]

    def delete_all_categories(self):
        self.conn.execute("DELETE FROM categories")

    # --- Models ---

    def get_model(self, model_id: int) -> Optional[Model]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {MODEL_COLUMNS} FROM models WHERE id = ?", (model_id,))
        row = cur.fetchone()
        if row is None:
            return None
        model = _row_to_model(row)
        model.tag_ids = self.get_model_tag_ids(model_id)
        return model

    def get_model_by_path(self, path: str) -> Optional[Model]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {MODEL_COLUMNS} FROM models WHERE path = ?", (path,))
        row = cur.fetchone()
        return _row_to_model(row) if row else None

    def create_model(self, model: Model, scanned_at: Optional[str] = None) -> int:
        now_iso = utc_now_iso()
        cur = self.conn.cursor()
        cur.execute("""
            INSERT INTO models (
                name, path, author_id, category_id, notes, thumbnail_path, hidden,
                created_at, updated_at, scanned_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            model.name, model.path, model.author_id, model.category_id, model.notes,
            model.thumbnail_path, int(model.hidden), now_iso, now_iso, scanned_at or now_iso,
        ))
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        model.id = cur.lastrowid
        return model.id

    def update_model(self, model_id: int, name: str, notes: str):
        self.conn.execute(
            "UPDATE models SET name = ?, notes = ?, updated_at = ? WHERE id = ?",
            (name, notes, utc_now_iso(), model_id),
        )

    def update_model_path(self, model_id: int, new_path: str):
        self.conn.execute(
            "UPDATE models SET path = ?, updated_at = ? WHERE id = ?",
            (new_path, utc_now_iso(), model_id),
        )

    def set_model_category(self, model_id: int, category_id: Optional[int]):
        self.conn.execute(
            "UPDATE models SET category_id = ?, updated_at = ? WHERE id = ?",
            (category_id, utc_now_iso(), model_id),
        )

    def set_model_author(self, model_id: int, author_id: Optional[int]):
        self.conn.execute(
            "UPDATE models SET author_id = ?, updated_at = ? WHERE id = ?",
            (author_id, utc_now_iso(), model_id),
        )

    def update_thumbnail(self, model_id: int, thumbnail_path: str):
        self.conn.execute("UPDATE models SET thumbnail_path = ? WHERE id = ?", (thumbnail_path, model_id))

    def mark_scanned(self, model_id: int, scanned_at: Optional[str] = None):
        self.conn.execute(
            "UPDATE models SET scanned_at = ? WHERE id = ?",
            (scanned_at or utc_now_iso(), model_id),
        )

    def delete_stale_models(self, before: str) -> int:
        """Deletes models not revisited since `before`. Files and tag links cascade."""
        cur = self.conn.execute("DELETE FROM models WHERE scanned_at < ?", (before,))
        return cur.rowcount

    def delete_model(self, model_id: int):
        # Explicit child deletes so this works even without PRAGMA foreign_keys
        for q in (
            "DELETE FROM model_files WHERE model_id = ?",
            "DELETE FROM model_tags WHERE model_id = ?",
            "DELETE FROM models WHERE id = ?",
        ):
            self.conn.execute(q, (model_id,))

    def count_models(self) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM models")
        return cur.fetchone()[0]

    def list_models(self, category_id: Optional[int] = None) -> List[Model]:
        """Lists models, optionally restricted to a category and all of its subcategories."""
        cur = self.conn.cursor()
        if category_id is None:
            cur.execute(f"SELECT {MODEL_COLUMNS} FROM models ORDER BY name ASC, path ASC")
        else:
            cur.execute(f"""
                WITH RECURSIVE category_tree AS (
                    SELECT id FROM categories WHERE id = ?
                    UNION ALL
                    SELECT c.id FROM categories c
                    JOIN category_tree ct ON c.parent_id = ct.id
                )
                SELECT {MODEL_COLUMNS} FROM models
                WHERE category_id IN (SELECT id FROM category_tree)
                ORDER BY name ASC, path ASC
            """, (category_id,))
        return [_row_to_model(r) for r in cur.fetchall()]

    def find_merge_candidates(self, model_id: int, query: str = "", limit: int = 20) -> List[Tuple[Model, int]]:
        """
        Models that could be merged with `model_id`: every other model, those
        sharing the most tags with it first, then by name. `query` narrows
        by a name/path substring. Returns (model, shared tag count) pairs.
        """
        params: list = [model_id, model_id]
        where = "WHERE m.id != ?"
        if query:
            where += " AND (m.name LIKE ? OR m.path LIKE ?)"
            params += [f"%{query}%", f"%{query}%"]
        params.append(limit)

        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT {MODEL_COLUMNS}, (
                SELECT COUNT(*) FROM model_tags mt
                WHERE mt.model_id = m.id
                  AND mt.tag_id IN (SELECT tag_id FROM model_tags WHERE model_id = ?)
            ) AS shared
            FROM models m
            {where}
            ORDER BY shared DESC, m.name ASC, m.path ASC
            LIMIT ?
        """, params)
        return [(_row_to_model(r[:-1]), r[-1]) for r in cur.fetchall()]

    def copy_missing_metadata(self, source_id: int, target_id: int, source_thumbnail: Optional[str] = None):
        """
        Backfills notes, author and thumbnail on the target from the source,
        only where the target has none. `source_thumbnail` overrides the
        source's stored thumbnail (used when the merge relocated it).
        """
        source = self.get_model(source_id)
        if source is None:
            return
        thumb = source.thumbnail_path if source_thumbnail is None else source_thumbnail
        self.conn.execute("""
            UPDATE models SET
                notes = CASE WHEN notes = '' THEN ? ELSE notes END,
                author_id = CASE WHEN author_id IS NULL THEN ? ELSE author_id END,
                thumbnail_path = CASE WHEN thumbnail_path = '' THEN ? ELSE thumbnail_path END,
                updated_at = ?
            WHERE id = ?
        """, (source.notes, source.author_id, thumb, utc_now_iso(), target_id))

    # --- Files ---

    def get_file_by_path(self, path: str) -> Optional[ModelFile]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {FILE_COLUMNS} FROM model_files WHERE file_path = ?", (path,))
        row = cur.fetchone()
        return _row_to_file(row) if row else None

    def add_file(self, mf: ModelFile) -> int:
        cur = self.conn.cursor()
        cur.execute("""
            INSERT INTO model_files (model_id, file_path, file_name, file_ext, file_size)
            VALUES (?, ?, ?, ?, ?)
        """, (mf.model_id, mf.file_path, mf.file_name, mf.file_ext, mf.file_size))
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        mf.id = cur.lastrowid
        return mf.id

    def get_files_by_model(self, model_id: int) -> List[ModelFile]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {FILE_COLUMNS} FROM model_files WHERE model_id = ? ORDER BY file_path", (model_id,))
        return [_row_to_file(r) for r in cur.fetchall()]

    def update_file_path(self, file_id: int, new_path: str):
        self.conn.execute(
            "UPDATE model_files SET file_path = ?, file_name = ? WHERE id = ?",
            (new_path, PurePosixPath(new_path).name, file_id),
        )

    def move_file_to_model(self, file_id: int, target_model_id: int, new_path: str):
        self.conn.execute(
            "UPDATE model_files SET model_id = ?, file_path = ?, file_name = ? WHERE id = ?",
            (target_model_id, new_path, PurePosixPath(new_path).name, file_id),
        )

    def replace_file_path_prefix(self, model_id: int, old_prefix: str, new_prefix: str) -> int:
        """Rewrites `old_prefix/...` to `new_prefix/...` for every file of a model."""
        updated = 0
        for mf in self.get_files_by_model(model_id):
            if mf.file_path == old_prefix or mf.file_path.startswith(old_prefix + "/"):
                new_path = new_prefix + mf.file_path[len(old_prefix):]
                self.update_file_path(mf.id, new_path)
                updated += 1
            else:
                logging.debug(f"File {mf.file_path} is outside {old_prefix}; left unchanged")
        return updated

    def delete_file(self, file_id: int):
        self.conn.execute("DELETE FROM model_files WHERE id = ?", (file_id,))

    # --- Tags & Authors ---

    def create_tag(self, name: str, color: str = '#6b7280') -> int:
        cur = self.conn.cursor()
        cur.execute("INSERT INTO tags (name, color) VALUES (?, ?)", (name, color))
        return cur.lastrowid

    def add_tag(self, model_id: int, tag_id: int):
        self.conn.execute("INSERT OR IGNORE INTO model_tags (model_id, tag_id) VALUES (?, ?)", (model_id, tag_id))

    def get_model_tag_ids(self, model_id: int) -> List[int]:
        cur = self.conn.cursor()
        cur.execute("SELECT tag_id FROM model_tags WHERE model_id = ? ORDER BY tag_id", (model_id,))
        return [r[0] for r in cur.fetchall()]

    def get_model_tags(self, model_id: int) -> List[Tuple[int, str, str]]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT t.id, t.name, t.color FROM tags t
            JOIN model_tags mt ON mt.tag_id = t.id
            WHERE mt.model_id = ?
            ORDER BY t.name
        """, (model_id,))
        return cur.fetchall()

    def merge_tags(self, source_id: int, target_id: int):
        """Copies the source's tag links to the target, ignoring ones already present."""
        self.conn.execute("""
            INSERT OR IGNORE INTO model_tags (model_id, tag_id)
            SELECT ?, tag_id FROM model_tags WHERE model_id = ?
        """, (target_id, source_id))

    def create_author(self, name: str, url: str = "") -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO authors (name, url, created_at) VALUES (?, ?, ?)",
            (name, url, utc_now_iso()),
        )
        return cur.lastrowid
