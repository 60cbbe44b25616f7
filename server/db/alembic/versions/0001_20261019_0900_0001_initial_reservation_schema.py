"""Initial reservation schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create room_types table
    op.create_table('room_types',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('price_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), server_default='PHP', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('total_quantity >= 0', name='ck_room_type_total_quantity_non_negative'),
        sa.CheckConstraint('price_amount >= 0', name='ck_room_type_price_non_negative'),
        sa.CheckConstraint('length(name) > 0', name='ck_room_type_name_not_empty'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('guest_ref', sa.String(length=128), nullable=False),
        sa.Column('guest_name', sa.String(length=200), nullable=True),
        sa.Column('check_in', sa.Date(), nullable=False),
        sa.Column('check_out', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), server_default='PHP', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('check_in < check_out', name='ck_booking_range_not_empty'),
        sa.CheckConstraint('total_price >= 0', name='ck_booking_total_price_non_negative'),
        sa.CheckConstraint('length(guest_ref) > 0', name='ck_booking_guest_ref_not_empty'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_guest_ref'), 'bookings', ['guest_ref'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)

    # Create booking_rooms table
    op.create_table('booking_rooms',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('room_type_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_booking_room_quantity_positive'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['room_type_id'], ['room_types.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_booking_rooms_booking_id'), 'booking_rooms', ['booking_id'], unique=False)

    # Create reservation_holds table
    op.create_table('reservation_holds',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('room_type_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('check_in', sa.Date(), nullable=False),
        sa.Column('check_out', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('release_reason', sa.Text(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_hold_quantity_positive'),
        sa.CheckConstraint('check_in < check_out', name='ck_hold_range_not_empty'),
        sa.ForeignKeyConstraint(['room_type_id'], ['room_types.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_reservation_holds_booking_id'), 'reservation_holds', ['booking_id'], unique=False)
    op.create_index('ix_reservation_holds_room_type_state', 'reservation_holds', ['room_type_id', 'state'], unique=False)
    op.create_index('ix_reservation_holds_state_expires_at', 'reservation_holds', ['state', 'expires_at'], unique=False)

    # Create payments table
    op.create_table('payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), server_default='PHP', nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('verification_status', sa.String(length=20), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('provider_ref', sa.String(length=255), nullable=True),
        sa.Column('verified_by', sa.String(length=255), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('flagged_by', sa.String(length=255), nullable=True),
        sa.Column('flag_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.JSON(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('reconcile_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('next_reconcile_at', sa.DateTime(), nullable=True),
        sa.Column('last_reconciled_at', sa.DateTime(), nullable=True),
        sa.Column('needs_attention', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('attention_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_payment_amount_non_negative'),
        sa.CheckConstraint('reconcile_attempts >= 0', name='ck_payment_reconcile_attempts_non_negative'),
        sa.CheckConstraint(
            "verification_status = 'UNVERIFIED' OR status IN ('PAID', 'REFUNDED')",
            name='ck_payment_verification_requires_paid'
        ),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_ref')
    )
    op.create_index(op.f('ix_payments_booking_id'), 'payments', ['booking_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)
    op.create_index('ix_payments_status_next_reconcile_at', 'payments', ['status', 'next_reconcile_at'], unique=False)

    # Create audit_entries table
    op.create_table('audit_entries',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('actor_id', sa.String(length=255), nullable=False),
        sa.Column('actor_name', sa.String(length=255), nullable=False),
        sa.Column('actor_role', sa.String(length=32), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_entries_entity', 'audit_entries', ['entity_type', 'entity_id', 'timestamp'], unique=False)
    op.create_index('ix_audit_entries_actor', 'audit_entries', ['actor_id', 'timestamp'], unique=False)
    op.create_index('ix_audit_entries_timestamp', 'audit_entries', ['timestamp'], unique=False)

    # Audit entries are append-only at the database level too
    op.execute("""
        CREATE OR REPLACE FUNCTION audit_entries_immutable()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit entries are immutable';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER audit_entries_no_update_delete
        BEFORE UPDATE OR DELETE ON audit_entries
        FOR EACH ROW EXECUTE FUNCTION audit_entries_immutable();
    """)

    # Create notification_events table
    op.create_table('notification_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('event_type', sa.String(length=40), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('payment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notification_events_booking_id'), 'notification_events', ['booking_id'], unique=False)
    op.create_index(op.f('ix_notification_events_payment_id'), 'notification_events', ['payment_id'], unique=False)
    op.create_index('ix_notification_events_undelivered', 'notification_events', ['delivered_at', 'created_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('ix_notification_events_undelivered', table_name='notification_events')
    op.drop_index(op.f('ix_notification_events_payment_id'), table_name='notification_events')
    op.drop_index(op.f('ix_notification_events_booking_id'), table_name='notification_events')
    op.drop_table('notification_events')

    op.execute("DROP TRIGGER IF EXISTS audit_entries_no_update_delete ON audit_entries")
    op.execute("DROP FUNCTION IF EXISTS audit_entries_immutable()")
    op.drop_index('ix_audit_entries_timestamp', table_name='audit_entries')
    op.drop_index('ix_audit_entries_actor', table_name='audit_entries')
    op.drop_index('ix_audit_entries_entity', table_name='audit_entries')
    op.drop_table('audit_entries')

    op.drop_index('ix_payments_status_next_reconcile_at', table_name='payments')
    op.drop_index(op.f('ix_payments_status'), table_name='payments')
    op.drop_index(op.f('ix_payments_booking_id'), table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_reservation_holds_state_expires_at', table_name='reservation_holds')
    op.drop_index('ix_reservation_holds_room_type_state', table_name='reservation_holds')
    op.drop_index(op.f('ix_reservation_holds_booking_id'), table_name='reservation_holds')
    op.drop_table('reservation_holds')

    op.drop_index(op.f('ix_booking_rooms_booking_id'), table_name='booking_rooms')
    op.drop_table('booking_rooms')

    op.drop_index(op.f('ix_bookings_status'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_guest_ref'), table_name='bookings')
    op.drop_table('bookings')

    op.drop_table('room_types')
