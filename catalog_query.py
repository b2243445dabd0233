#!/usr/bin/env python

import argparse
import sqlite3
from pathlib import Path
from typing import Optional


def connect_db(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        raise SystemExit(f"DB not found: {db_path}")
    return sqlite3.connect(db_path)


def print_category_tree(conn: sqlite3.Connection):
    cur = conn.cursor()
    cur.execute("SELECT id, name, parent_id FROM categories ORDER BY name")
    rows = cur.fetchall()
    if not rows:
        print("No categories found. Run a scan first.")
        return

    children = {}
    for cid, name, parent_id in rows:
        children.setdefault(parent_id, []).append((cid, name))

    cur.execute("SELECT category_id, COUNT(*) FROM models WHERE category_id IS NOT NULL GROUP BY category_id")
    counts = dict(cur.fetchall())

    def _print(parent_id: Optional[int], indent: int):
        for cid, name in children.get(parent_id, []):
            print(f"{'  ' * indent}{name} [{cid}] ({counts.get(cid, 0)} models)")
            _print(cid, indent + 1)

    _print(None, 0)


def list_models(conn: sqlite3.Connection, category_id: Optional[int] = None):
    cur = conn.cursor()
    if category_id is None:
        cur.execute("""
            SELECT m.id, m.name, m.path, COUNT(f.id)
            FROM models m
            LEFT JOIN model_files f ON f.model_id = m.id
            GROUP BY m.id
            ORDER BY m.name
        """)
    else:
        # Include every subcategory of the requested one
        cur.execute("""
            WITH RECURSIVE category_tree AS (
                SELECT id FROM categories WHERE id = ?
                UNION ALL
                SELECT c.id FROM categories c
                JOIN category_tree ct ON c.parent_id = ct.id
            )
            SELECT m.id, m.name, m.path, COUNT(f.id)
            FROM models m
            LEFT JOIN model_files f ON f.model_id = m.id
            WHERE m.category_id IN (SELECT id FROM category_tree)
            GROUP BY m.id
            ORDER BY m.name
        """, (category_id,))
    rows = cur.fetchall()
    if not rows:
        print("No models found.")
        return

    print("id    | files | name                           | path")
    print("------+-------+--------------------------------+----------")
    for mid, name, path, n_files in rows:
        print(f"{mid:5d} | {n_files:5d} | {name[:30].ljust(30)} | {path}")


def show_model_details(conn: sqlite3.Connection, model_id: int):
    cur = conn.cursor()
    cur.execute("""
        SELECT m.id, m.name, m.path, m.notes, m.thumbnail_path, m.scanned_at, c.path, a.name
        FROM models m
        LEFT JOIN categories c ON m.category_id = c.id
        LEFT JOIN authors a ON m.author_id = a.id
        WHERE m.id = ?
    """, (model_id,))
    row = cur.fetchone()
    if not row:
        print(f"No model with id={model_id}")
        return

    mid, name, path, notes, thumb, scanned_at, category, author = row
    print("Model:")
    print(f"  id:          {mid}")
    print(f"  name:        {name}")
    print(f"  path:        {path}")
    print(f"  category:    {category or ''}")
    print(f"  author:      {author or ''}")
    print(f"  thumbnail:   {thumb or ''}")
    print(f"  scanned_at:  {scanned_at}")
    if notes:
        print(f"  notes:       {notes}")

    cur.execute("""
        SELECT t.name FROM tags t
        JOIN model_tags mt ON mt.tag_id = t.id
        WHERE mt.model_id = ?
        ORDER BY t.name
    """, (model_id,))
    tags = [r[0] for r in cur.fetchall()]
    print(f"  tags:        {', '.join(tags)}")

    cur.execute("""
        SELECT id, file_ext, file_size, file_path FROM model_files
        WHERE model_id = ? ORDER BY file_path
    """, (model_id,))
    files = cur.fetchall()
    if not files:
        print("  (No files)")
        return

    print("\n  Files:")
    print("  id   | ext   | size_bytes | file_path")
    print("  -----+-------+------------+----------")
    for fid, ext, size, file_path in files:
        print(f"  {fid:4d} | {ext.ljust(5)} | {str(size or 0).rjust(10)} | {file_path}")


def print_merge_candidates(conn: sqlite3.Connection, model_id: int, limit: int = 20):
    """Other models ranked by how many tags they share with `model_id`."""
    cur = conn.cursor()
    cur.execute("SELECT name FROM models WHERE id = ?", (model_id,))
    row = cur.fetchone()
    if not row:
        print(f"No model with id={model_id}")
        return

    cur.execute("""
        SELECT m.id, m.name, m.path, (
            SELECT COUNT(*) FROM model_tags mt
            WHERE mt.model_id = m.id
              AND mt.tag_id IN (SELECT tag_id FROM model_tags WHERE model_id = ?)
        ) AS shared
        FROM models m
        WHERE m.id != ?
        ORDER BY shared DESC, m.name ASC, m.path ASC
        LIMIT ?
    """, (model_id, model_id, limit))
    rows = cur.fetchall()
    if not rows:
        print("No merge candidates.")
        return

    print(f"Merge candidates for {row[0]} [{model_id}]:")
    print("id    | shared | name                           | path")
    print("------+--------+--------------------------------+----------")
    for mid, name, path, shared in rows:
        print(f"{mid:5d} | {shared:6d} | {name[:30].ljust(30)} | {path}")


def parse_args():
    p = argparse.ArgumentParser(description="Query helper for the model_catalog SQLite DB.")
    p.add_argument("--db", required=True, help="Path to model_catalog.db (typically under your library root)")
    p.add_argument("--category", type=int, default=None, help="Restrict --models to a category subtree")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--tree", action="store_true", help="Print the category tree")
    group.add_argument("--models", action="store_true", help="List models")
    group.add_argument("--model", type=int, help="Show details and files for a model by id")
    group.add_argument("--candidates", type=int, metavar="ID", help="List models to merge with a model, by shared tags")
    return p.parse_args()


def main():
    args = parse_args()
    db_path = Path(args.db).resolve()
    conn = connect_db(db_path)

    try:
        if args.tree:
            print_category_tree(conn)
        elif args.models:
            list_models(conn, args.category)
        elif args.model is not None:
            show_model_details(conn, args.model)
        elif args.candidates is not None:
            print_merge_candidates(conn, args.candidates)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
