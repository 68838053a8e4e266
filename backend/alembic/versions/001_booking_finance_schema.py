"""booking_finance_schema

Revision ID: 001_booking_finance
Revises:
Create Date: 2026-10-19

Creates the cost catalog and settlement ledger:
- drivers, partners (read-only master directories)
- tour_item_categories, service_items, service_item_partners, service_item_drivers
- tour_cost_patterns, tour_cost_pattern_items
- bookings (status, is_paid, paid_at)
- booking_finances, booking_finance_items (category snapshot columns,
  self-referencing related_item_id with ON DELETE SET NULL)

All DDL is guarded by existence checks so the migration is idempotent, safe to
run even when Base.metadata.create_all() already created the tables.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

revision = '001_booking_finance'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def _create(conn, name: str, *columns, **kw) -> None:
    if _table_exists(conn, name):
        logger.info(f"Table {name} already exists — skipping create")
        return
    op.create_table(name, *columns, **kw)
    logger.info(f"Created table: {name}")


def upgrade() -> None:
    conn = op.get_bind()

    # ── master directories ────────────────────────────────────────────────────
    for directory in ('drivers', 'partners'):
        _create(
            conn, directory,
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('phone', sa.String(50), nullable=True),
            sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        )

    # ── cost catalog ──────────────────────────────────────────────────────────
    _create(
        conn, 'tour_item_categories',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('default_direction', sa.String(20), nullable=False, server_default='EXPENSE'),
        sa.Column('payee_mode', sa.String(20), nullable=False, server_default='PARTNER_ONLY'),
        sa.Column('auto_driver_from_booking', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('is_commission', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('allow_related_item', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('require_partner', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('sort_order', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    _create(
        conn, 'service_items',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category_id', sa.Integer, sa.ForeignKey('tour_item_categories.id'), nullable=True),
        sa.Column('default_partner_id', sa.Integer, sa.ForeignKey('partners.id'), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    _create(
        conn, 'service_item_partners',
        sa.Column('service_item_id', sa.Integer,
                  sa.ForeignKey('service_items.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('partner_id', sa.Integer, sa.ForeignKey('partners.id', ondelete='CASCADE'), primary_key=True),
    )
    _create(
        conn, 'service_item_drivers',
        sa.Column('service_item_id', sa.Integer,
                  sa.ForeignKey('service_items.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('driver_id', sa.Integer, sa.ForeignKey('drivers.id', ondelete='CASCADE'), primary_key=True),
    )
    _create(
        conn, 'tour_cost_patterns',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('package_id', sa.Integer, nullable=False, index=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    _create(
        conn, 'tour_cost_pattern_items',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('pattern_id', sa.Integer,
                  sa.ForeignKey('tour_cost_patterns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_item_id', sa.Integer, sa.ForeignKey('service_items.id'), nullable=False),
        sa.Column('default_partner_id', sa.Integer, sa.ForeignKey('partners.id'), nullable=True),
        sa.Column('default_unit_type', sa.String(20), nullable=False, server_default='PER_BOOKING'),
        sa.Column('default_qty', sa.Numeric(10, 2), nullable=False, server_default='1'),
        sa.Column('default_price', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
    )

    # ── bookings ──────────────────────────────────────────────────────────────
    _create(
        conn, 'bookings',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('booking_ref', sa.String(100), nullable=True, unique=True),
        sa.Column('tour_date', sa.Date, nullable=False, index=True),
        sa.Column('number_of_adult', sa.Integer, nullable=False, server_default='0'),
        sa.Column('number_of_child', sa.Integer, nullable=True, server_default='0'),
        sa.Column('assigned_driver_id', sa.Integer, sa.ForeignKey('drivers.id'), nullable=True),
        sa.Column('package_id', sa.Integer, nullable=True),
        sa.Column('main_contact_name', sa.String(255), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('total_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='NEW', index=True),
        sa.Column('is_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── settlement ledger ─────────────────────────────────────────────────────
    _create(
        conn, 'booking_finances',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('booking_id', sa.Integer, sa.ForeignKey('bookings.id'), nullable=False, unique=True),
        sa.Column('pattern_id', sa.Integer, sa.ForeignKey('tour_cost_patterns.id'), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_locked', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    _create(
        conn, 'booking_finance_items',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('finance_id', sa.Integer,
                  sa.ForeignKey('booking_finances.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('service_item_id', sa.Integer, sa.ForeignKey('service_items.id'), nullable=True),
        sa.Column('name_snapshot', sa.String(255), nullable=False),
        sa.Column('category_id_snapshot', sa.Integer, nullable=True),
        sa.Column('category_name_snapshot', sa.String(100), nullable=False),
        sa.Column('is_commission_snapshot', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('allow_related_item_snapshot', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('direction', sa.String(20), nullable=False),
        sa.Column('is_manual', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('unit_type', sa.String(20), nullable=False, server_default='PER_BOOKING'),
        sa.Column('unit_qty', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('driver_id', sa.Integer, sa.ForeignKey('drivers.id'), nullable=True),
        sa.Column('partner_id', sa.Integer, sa.ForeignKey('partners.id'), nullable=True),
        sa.Column('payee_type', sa.String(20), nullable=False, server_default='NONE'),
        sa.Column('related_item_id', sa.Integer,
                  sa.ForeignKey('booking_finance_items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('relation_type', sa.String(30), nullable=True),
        sa.Column('paid', sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_by', sa.String(255), nullable=True),
        sa.Column('paid_note', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_finance_items_related "
        "ON booking_finance_items (related_item_id)"
    )


def downgrade() -> None:
    for table in (
        'booking_finance_items', 'booking_finances', 'bookings',
        'tour_cost_pattern_items', 'tour_cost_patterns',
        'service_item_drivers', 'service_item_partners', 'service_items',
        'tour_item_categories', 'partners', 'drivers',
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
