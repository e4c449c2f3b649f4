"""Initial schema: partner accounts, shop tokens, scheduled flash sales, refresh log, workers

Revision ID: flash_sale_engine_20261018
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = 'flash_sale_engine_20261018'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(JSONB(), 'postgresql')


def upgrade():
    # partner_accounts: partner_id + encrypted partner_key, maintained by operators
    op.create_table(
        'partner_accounts',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('partner_id', sa.BigInteger(), nullable=False),
        sa.Column('partner_key', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_partner_accounts_partner_id', 'partner_accounts', ['partner_id'], unique=True)
    op.create_index('ix_partner_accounts_is_active', 'partner_accounts', ['is_active'])

    # shopee_shops: one OAuth grant per shop, tokens encrypted at rest
    op.create_table(
        'shopee_shops',
        sa.Column('shop_id', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column(
            'partner_account_id',
            sa.String(length=36),
            sa.ForeignKey('partner_accounts.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('merchant_id', sa.BigInteger(), nullable=True),
        sa.Column('shop_name', sa.Text(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expire_in', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('token_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refresh_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_shopee_shops_partner_account_id', 'shopee_shops', ['partner_account_id'])
    op.create_index('idx_shopee_shops_expires_at', 'shopee_shops', ['expires_at'])

    # scheduled_flash_sales: copy jobs swept by status + scheduled_at
    op.create_table(
        'scheduled_flash_sales',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('shop_id', sa.BigInteger(), nullable=False),
        sa.Column('source_flash_sale_id', sa.BigInteger(), nullable=False),
        sa.Column('target_timeslot_id', sa.BigInteger(), nullable=False),
        sa.Column('target_start_time', sa.BigInteger(), nullable=False),
        sa.Column('target_end_time', sa.BigInteger(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('items_data', JSONType, nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('result_flash_sale_id', sa.BigInteger(), nullable=True),
        sa.Column('result_message', sa.Text(), nullable=True),
        sa.Column('failed_items', JSONType, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_scheduled_flash_sales_shop_id', 'scheduled_flash_sales', ['shop_id'])
    op.create_index('ix_scheduled_flash_sales_status', 'scheduled_flash_sales', ['status'])
    op.create_index('idx_scheduled_flash_sales_due', 'scheduled_flash_sales', ['status', 'scheduled_at'])

    # shopee_token_refresh_log: one row per refresh attempt
    op.create_table(
        'shopee_token_refresh_log',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('shop_id', sa.BigInteger(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('old_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('new_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('triggered_by', sa.String(length=32), nullable=False, server_default='proactive'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_shopee_token_refresh_log_shop_id', 'shopee_token_refresh_log', ['shop_id'])

    # background_workers: heartbeat for the sweep loop
    op.create_table(
        'background_workers',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('worker_name', sa.String(length=128), nullable=False),
        sa.Column('interval_seconds', sa.Integer(), nullable=True),
        sa.Column('last_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_status', sa.String(length=32), nullable=True),
        sa.Column('last_error_message', sa.Text(), nullable=True),
        sa.Column('runs_ok_in_row', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('runs_error_in_row', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_background_workers_worker_name', 'background_workers', ['worker_name'], unique=True)


def downgrade():
    op.drop_index('ix_background_workers_worker_name', table_name='background_workers')
    op.drop_table('background_workers')

    op.drop_index('ix_shopee_token_refresh_log_shop_id', table_name='shopee_token_refresh_log')
    op.drop_table('shopee_token_refresh_log')

    op.drop_index('idx_scheduled_flash_sales_due', table_name='scheduled_flash_sales')
    op.drop_index('ix_scheduled_flash_sales_status', table_name='scheduled_flash_sales')
    op.drop_index('ix_scheduled_flash_sales_shop_id', table_name='scheduled_flash_sales')
    op.drop_table('scheduled_flash_sales')

    op.drop_index('idx_shopee_shops_expires_at', table_name='shopee_shops')
    op.drop_index('ix_shopee_shops_partner_account_id', table_name='shopee_shops')
    op.drop_table('shopee_shops')

    op.drop_index('ix_partner_accounts_is_active', table_name='partner_accounts')
    op.drop_index('ix_partner_accounts_partner_id', table_name='partner_accounts')
    op.drop_table('partner_accounts')
