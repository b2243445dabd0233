import argparse
import logging
import sys
import time
from pathlib import Path

from . import config
from .core import ModelCatalogApp
from .exceptions import ModelCatalogError, ModelNotFoundError

def setup_logging(root: Path, verbose: bool):
    """Sets up logging to both console and a file in the library root."""
    log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(root / config.LOG_FILE_NAME, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Model Catalog: mirror a 3D model library into SQLite")

    p.add_argument("root", type=Path, help="Library root directory")
    p.add_argument("--db", type=Path, default=None, help=f"Custom path for SQLite DB (default: root/{config.DEFAULT_DB_NAME})")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="Run one scan pass and print the summary")

    merge = sub.add_parser("merge", help="Merge SOURCE model into TARGET model")
    merge.add_argument("target", type=int, help="Id of the model that survives")
    merge.add_argument("source", type=int, help="Id of the model that is absorbed")
    merge.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    rename = sub.add_parser("rename", help="Point a model at a renamed folder (merges on collision)")
    rename.add_argument("model_id", type=int)
    rename.add_argument("new_path", help="New root-relative folder path")

    schedule = sub.add_parser("schedule", help="Run the daily scan scheduler until interrupted")
    schedule.add_argument("--interval", type=float, default=config.SCHEDULER_INTERVAL_SEC,
                          help="Seconds between schedule checks")

    return p.parse_args(argv)

def run(args) -> int:
    root = args.root.resolve()
    if not root.is_dir():
        logging.error(f"Library root {root} is not a directory.")
        return 1

    db_path = args.db if args.db else root / config.DEFAULT_DB_NAME
    show_progress = args.command == "merge" and not args.no_progress and sys.stdout.isatty()

    with ModelCatalogApp(root, db_path, show_progress=show_progress) as app:
        try:
            if args.command == "scan":
                status = app.scan()
                if status is None:
                    logging.warning("A scan is already running.")
                    return 1
                print(f"{status.message} ({status.processed} models processed)")

            elif args.command == "merge":
                result = app.merge(args.target, args.source)
                print(f"Merged model {result.source_id} into {result.target_id}: "
                      f"{result.moved} moved, {result.renamed} renamed, "
                      f"{result.duplicates} duplicates, {result.missing} missing")

            elif args.command == "rename":
                owner_id = app.rename_model_path(args.model_id, args.new_path)
                print(f"Model {owner_id} now owns {args.new_path}")

            elif args.command == "schedule":
                app.start_scheduler(args.interval)
                logging.info("Scheduler running. Press Ctrl+C to stop.")
                while True:
                    time.sleep(1)

        except ModelNotFoundError as e:
            logging.error(str(e))
            return 1
        except (ModelCatalogError, ValueError) as e:
            logging.error(f"{args.command} failed: {e}")
            return 1
    return 0

def main(argv=None):
    args = parse_args(argv)

    root = args.root.resolve()
    if root.is_dir():
        setup_logging(root, args.verbose)
    else:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    logging.info("=== Model Catalog Started ===")
    logging.info(f"Root: {root}")

    try:
        code = run(args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        code = 1
    except Exception:
        logging.exception("Fatal error.")
        code = 1
    sys.exit(code)

if __name__ == "__main__":
    main()
