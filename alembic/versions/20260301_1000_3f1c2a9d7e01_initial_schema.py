"""initial_schema

Revision ID: 3f1c2a9d7e01
Revises:
Create Date: 2026-03-01 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c2a9d7e01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('email', sa.TEXT(), nullable=True),
        sa.Column('full_name', sa.TEXT(), nullable=False, server_default=''),
        sa.Column('phone_number', sa.TEXT(), nullable=False, server_default=''),
        sa.Column('stripe_customer_id', sa.TEXT(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_profiles_stripe_customer', 'profiles', ['stripe_customer_id'])

    op.create_table(
        'units',
        sa.Column('id', sa.INTEGER(), nullable=False),
        sa.Column('name', sa.TEXT(), nullable=False),
        sa.Column('price_monthly', sa.BIGINT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='vacant'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.INTEGER(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('unit_id', sa.INTEGER(), nullable=False),
        sa.Column('stripe_subscription_id', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='active'),
        sa.Column('current_period_end', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id']),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_subscription_id'),
    )
    # At most one active entitlement per (user, unit)
    op.create_index(
        'uq_subscriptions_active_user_unit',
        'subscriptions',
        ['user_id', 'unit_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index(
        'idx_subscriptions_user_unit_status',
        'subscriptions',
        ['user_id', 'unit_id', 'status'],
    )

    op.create_table(
        'access_logs',
        sa.Column('id', sa.INTEGER(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('unit_id', sa.INTEGER(), nullable=True),
        sa.Column('action', sa.TEXT(), nullable=False, server_default='OPEN_GATE'),
        sa.Column('status', sa.TEXT(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_access_logs_user_created', 'access_logs', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_access_logs_user_created', table_name='access_logs')
    op.drop_table('access_logs')
    op.drop_index('idx_subscriptions_user_unit_status', table_name='subscriptions')
    op.drop_index('uq_subscriptions_active_user_unit', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('units')
    op.drop_index('idx_profiles_stripe_customer', table_name='profiles')
    op.drop_table('profiles')
