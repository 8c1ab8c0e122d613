#!/usr/bin/env python
"""Operator command line for an inknote database."""
import argparse
import logging
import os
import sys
from pathlib import Path

from inknote import __version__
from inknote.config import config
from inknote.events import EventHub
from inknote.exceptions import InknoteError
from inknote.models.db_models import init_db
from inknote.models.schema import EntityKind
from inknote.observability import configure_logging
from inknote.services.rebalancer import OrderRebalancer, order_key
from inknote.storage.object_store import ObjectStore


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="inknote notebook maintenance")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("INKNOTE_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("INKNOTE_LOG_LEVEL", "WARNING")
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for the rotating log file",
        type=str,
        default=os.environ.get("INKNOTE_LOG_DIR")
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("tree", help="Print notebooks, categories and notes with their orders")
    normalize = subparsers.add_parser(
        "normalize-orders", help="Renumber notes and categories evenly"
    )
    normalize.add_argument(
        "--notebook-id", help="Only renumber this notebook", type=str, default=None
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
        config.in_memory_db = False


def print_tree(store: ObjectStore, out=None) -> int:
    """Print every notebook as an indented tree. Returns the note count."""
    out = out or sys.stdout
    notes = store.results(EntityKind.NOTE).sorted(order_key).to_list()
    categories = store.results(EntityKind.CATEGORY).sorted(order_key).to_list()
    notebooks = store.results(EntityKind.NOTEBOOK).sorted(
        lambda nb: (nb.created_at, nb.id)
    )
    for notebook in notebooks:
        print(f"{notebook.title} [{notebook.id}]", file=out)
        for category in categories:
            if category.notebook_id != notebook.id:
                continue
            print(f"  {category.order:>12g}  {category.title}", file=out)
            for note in notes:
                if note.category_id == category.id:
                    print(f"    {note.order:>12g}  {note.title}", file=out)
        uncategorized = [
            n for n in notes if n.notebook_id == notebook.id and not n.category_id
        ]
        for note in uncategorized:
            print(f"    {note.order:>12g}  {note.title} (no category)", file=out)
    return len(notes)


def main(argv=None):
    """Run an inknote maintenance command."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(log_dir=args.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        store = ObjectStore(init_db())
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        if args.command == "tree":
            print_tree(store)
        elif args.command == "normalize-orders":
            rebalancer = OrderRebalancer(store, EventHub(), step=config.order_step)
            categories = rebalancer.normalize(EntityKind.CATEGORY, args.notebook_id)
            notes = rebalancer.normalize(EntityKind.NOTE, args.notebook_id)
            print(f"Renumbered {categories} categories and {notes} notes")
    except InknoteError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        store.engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
