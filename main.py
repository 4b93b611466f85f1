"""CLI entry point for the SKU manager."""

from __future__ import annotations

import logging
from datetime import datetime

import click

from config import settings
from database import init_database


def _open_db():
    from database.connection import get_db

    return get_db(settings.database_path)


@click.group()
def cli() -> None:
    """SKU manager: product and variant SKUs with an audit trail."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@cli.command()
def init_db() -> None:
    """Initialise the SQLite database (creates tables if missing)."""
    init_database(settings.database_path)
    print(f"Database initialised at {settings.database_path}")


@cli.command()
def web() -> None:
    """Start the Flask API server."""
    from api.app import create_app

    app = create_app()
    app.run(
        host=settings.flask_host,
        port=settings.flask_port,
        debug=settings.flask_debug,
    )


@cli.command()
@click.argument("name")
def add_category(name: str) -> None:
    """Create a product category."""
    import sqlite3

    import database.models as models

    conn = _open_db()
    try:
        category = models.create_category(conn, name)
    except sqlite3.IntegrityError:
        print(f"Error: category '{name}' already exists")
        raise SystemExit(1) from None
    finally:
        conn.close()
    print(f"Created category #{category['id']}: {category['name']}")


@cli.command()
@click.argument("name")
@click.option("--category", "categories", multiple=True, help="Category name (repeatable).")
@click.option("--type", "type_tag", default="product", show_default=True, help="Entity type tag.")
def add_product(name: str, categories: tuple[str, ...], type_tag: str) -> None:
    """Create a product and assign its SKU."""
    import database.models as models
    from services.entities import Entity
    from services.exceptions import SkuError
    from services.lifecycle import build_guard

    conn = _open_db()
    try:
        rows = []
        for cat_name in categories:
            row = models.get_category_by_name(conn, cat_name)
            if row is None:
                print(f"Error: no category named '{cat_name}'")
                raise SystemExit(1)
            rows.append(row)

        product = Entity(
            type_tag=type_tag,
            name=name,
            relations={"category": rows[0] if rows else None, "categories": rows},
        )
        try:
            build_guard(conn, settings.sku_bundle()).create(product)
        except SkuError as exc:
            print(f"Error: {exc}")
            raise SystemExit(1) from None
        print(f"Created {type_tag} #{product.id}: {product.sku}")
    finally:
        conn.close()


@cli.command()
@click.argument("product_id", type=int)
@click.option("--name", default="", help="Variant name.")
@click.option(
    "--value",
    "values",
    multiple=True,
    help="Property value as PROPERTY=VALUE (repeatable), e.g. color=Red.",
)
@click.option("--type", "type_tag", default="variant", show_default=True, help="Entity type tag.")
def add_variant(product_id: int, name: str, values: tuple[str, ...], type_tag: str) -> None:
    """Create a variant of PRODUCT_ID and assign its SKU."""
    import database.models as models
    from services.entities import Entity
    from services.exceptions import SkuError
    from services.lifecycle import build_guard

    conn = _open_db()
    try:
        parent = models.load_product(conn, product_id)
        if parent is None:
            print(f"Error: no product with id {product_id}")
            raise SystemExit(1)

        property_values = []
        for raw in values:
            prop, sep, value = raw.partition("=")
            if not sep or not prop.strip() or not value.strip():
                print(f"Error: expected PROPERTY=VALUE, got '{raw}'")
                raise SystemExit(1)
            property_values.append(
                models.get_or_create_property_value(conn, prop.strip(), value.strip())
            )

        variant = Entity(
            type_tag=type_tag,
            name=name,
            parent=parent,
            relations={"property_values": property_values},
        )
        try:
            build_guard(conn, settings.sku_bundle()).create(variant)
        except SkuError as exc:
            print(f"Error: {exc}")
            raise SystemExit(1) from None
        print(f"Created {type_tag} #{variant.id}: {variant.sku}")
    finally:
        conn.close()


@cli.command()
@click.argument("type_tag")
@click.option("--chunk-size", default=100, show_default=True, help="Rows loaded per chunk.")
@click.option("--dry-run", is_flag=True, help="Show the new SKUs without saving them.")
@click.option("--reason", default=None, help="Reason recorded in the SKU history.")
def regenerate(type_tag: str, chunk_size: int, dry_run: bool, reason: str | None) -> None:
    """Regenerate SKUs for every entity of TYPE_TAG."""
    from services.exceptions import SkuError
    from services.regeneration import regenerate_all

    conn = _open_db()
    try:
        try:
            result = regenerate_all(
                conn,
                settings.sku_bundle(),
                type_tag,
                chunk_size=chunk_size,
                dry_run=dry_run,
                reason=reason,
            )
        except (SkuError, ValueError) as exc:
            print(f"Error: {exc}")
            raise SystemExit(1) from None
    finally:
        conn.close()

    verb = "Would update" if dry_run else "Updated"
    for change in result.changes:
        print(f"{verb} SKU: {change.old_sku or '-'} → {change.new_sku}")
    for failure in result.failures:
        print(f"Failed #{failure.id}: {failure.error}")

    print(
        f"\nFinished regenerating SKUs for {result.succeeded} of {result.processed} "
        f"{type_tag} record(s)" + (" (dry run, nothing saved)" if dry_run else "")
    )
    if not result.ok:
        print(f"{result.failed} record(s) failed")
        raise SystemExit(1)


@cli.command()
@click.argument("type_tag", required=False)
@click.option("--id", "subject_id", type=int, default=None, help="Entity ID.")
@click.option("--sku", default=None, help="SKU to search for (old or new value).")
@click.option("--recent", is_flag=True, help="Show recent changes only.")
@click.option("--days", default=7, show_default=True, help="Window for --recent, in days.")
@click.option(
    "--event",
    "event_type",
    default=None,
    help="Filter by event type (created, regenerated, modified, deleted).",
)
@click.option("--limit", default=50, show_default=True, help="Maximum records to display.")
def history(
    type_tag: str | None,
    subject_id: int | None,
    sku: str | None,
    recent: bool,
    days: int,
    event_type: str | None,
    limit: int,
) -> None:
    """View the SKU audit trail."""
    from services.history_logger import HistoryLogger

    if type_tag:
        label = f" ID: {subject_id}" if subject_id is not None else ""
        print(f"Showing history for {type_tag}{label}")
    if sku:
        print(f"Showing history for SKU: {sku}")
    if recent:
        print(f"Showing changes from the last {days} days")
    if event_type:
        print(f"Filtering by event type: {event_type}")

    conn = _open_db()
    try:
        try:
            records = HistoryLogger(conn).find_history(
                subject_type=type_tag or None,
                subject_id=subject_id,
                sku=sku,
                event_type=event_type,
                days=days if recent else None,
                limit=limit,
            )
        except ValueError as exc:
            print(f"Error: {exc}")
            raise SystemExit(1) from None
    finally:
        conn.close()

    if not records:
        print("No history records found.")
        return

    print(
        f"\n{'ID':>6} {'Event':<12} {'Old SKU':<24} {'New SKU':<24} "
        f"{'Type':<10} {'Type ID':>8} {'Actor':<10} {'Date':<19}"
    )
    print("-" * 120)
    for record in records:
        print(
            f"{record.id:>6} "
            f"{record.formatted_event_type:<12} "
            f"{record.old_sku or '-':<24} "
            f"{record.new_sku or '-':<24} "
            f"{record.subject_type:<10} "
            f"{record.subject_id:>8} "
            f"{record.actor_id or '-':<10} "
            f"{record.created_at:<19}"
        )

    total = len(records)
    print(f"\nShowing {total} record(s)")
    if total >= limit:
        print(f"Note: Results limited to {limit} records. Use --limit to see more.")


@cli.command()
@click.option("--days", type=int, default=None, help="Delete records older than this many days.")
@click.option("--before", default=None, help="Delete records before this date (YYYY-MM-DD).")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt.")
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without deleting.")
def history_cleanup(days: int | None, before: str | None, force: bool, dry_run: bool) -> None:
    """Delete old SKU history records."""
    from services.history_logger import HistoryLogger, cutoff_for_days, format_cutoff

    if before:
        try:
            cutoff = format_cutoff(datetime.strptime(before, "%Y-%m-%d"))
        except ValueError:
            print("Error: invalid date format. Please use YYYY-MM-DD format.")
            raise SystemExit(1) from None
    elif days is not None:
        cutoff = cutoff_for_days(days)
    elif settings.sku_history_retention_days is not None:
        cutoff = cutoff_for_days(settings.sku_history_retention_days)
    else:
        print("No retention policy configured and no cutoff date specified.")
        print("Use --days or --before, or set SKU_HISTORY_RETENTION_DAYS.")
        return

    cutoff_day = cutoff[:10]
    conn = _open_db()
    try:
        logger = HistoryLogger(conn)
        count = logger.count_before(cutoff)
        if count == 0:
            print(f"No history records found before {cutoff_day}")
            return

        print(f"Found {count} history record(s) before {cutoff_day}")

        if dry_run:
            print("Dry run mode - no records will be deleted.")
            print(f"\n{'ID':>6} {'Event':<12} {'SKU':<24} {'Type':<10} {'Date':<19}")
            print("-" * 75)
            for record in logger.records_before(cutoff, limit=10):
                print(
                    f"{record.id:>6} "
                    f"{record.formatted_event_type:<12} "
                    f"{record.new_sku or record.old_sku or '-':<24} "
                    f"{record.subject_type:<10} "
                    f"{record.created_at:<19}"
                )
            if count > 10:
                print(f"Showing 10 of {count} records...")
            return

        if not force and not click.confirm(
            f"Delete {count} history record(s) before {cutoff_day}?", default=False
        ):
            print("Operation cancelled.")
            return

        deleted = logger.cleanup_before(cutoff)
        print(f"Successfully deleted {deleted} history record(s)")
    finally:
        conn.close()


if __name__ == "__main__":
    cli()
