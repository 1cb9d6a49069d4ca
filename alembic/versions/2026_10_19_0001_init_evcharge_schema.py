"""init evcharge schema

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 00:01:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '2026_10_19_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # stations
    op.create_table(
        'stations',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('address', sa.String(length=256), nullable=True),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lng', sa.Float(), nullable=False),
        sa.Column('total_slots', sa.Integer(), nullable=False),
        sa.Column('available_slots', sa.Integer(), nullable=False),
        sa.Column('rate_per_hour_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('open_time', sa.String(length=5), nullable=False),
        sa.Column('close_time', sa.String(length=5), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('total_slots > 0', name='ck_stations_total_positive'),
        sa.CheckConstraint(
            'available_slots >= 0 AND available_slots <= total_slots',
            name='ck_stations_available_bounds',
        ),
    )
    op.create_index('ix_stations_owner', 'stations', ['owner_id'], unique=False)
    op.create_index('ix_stations_status', 'stations', ['status'], unique=False)

    # bookings; station_id has no FK so bookings outlive a deleted station
    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('station_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('station_name', sa.String(length=128), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('rate_per_hour_cents', sa.Integer(), nullable=False),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('slot_held', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('slot_released', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('verified_by', sa.String(length=64), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('duration_minutes > 0', name='ck_bookings_duration_positive'),
    )
    op.create_index('ix_bookings_user', 'bookings', ['user_id'], unique=False)
    op.create_index('ix_bookings_station', 'bookings', ['station_id'], unique=False)
    op.create_index('ix_bookings_sweep', 'bookings', ['status', 'slot_released', 'end_time'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_bookings_sweep', table_name='bookings')
    op.drop_index('ix_bookings_station', table_name='bookings')
    op.drop_index('ix_bookings_user', table_name='bookings')
    op.drop_table('bookings')
    op.drop_index('ix_stations_status', table_name='stations')
    op.drop_index('ix_stations_owner', table_name='stations')
    op.drop_table('stations')
