from alembic import op
import sqlalchemy as sa


revision = '0001_inventory_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'businesses',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(256), nullable=False),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('email', sa.String(256), nullable=True),
        sa.Column('sms_from_number', sa.String(32), nullable=True),
        sa.Column('inventory_alerts_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('inventory_alert_channel', sa.String(16), nullable=False, server_default='both'),
        sa.Column('inventory_default_threshold', sa.Integer, nullable=False, server_default='10'),
        sa.Column('created_at', sa.Integer, nullable=False),
    )

    op.create_table(
        'connected_accounts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('business_id', sa.String(64), sa.ForeignKey('businesses.id'), index=True, nullable=False),
        sa.Column('provider', sa.String(32), index=True, nullable=False),
        sa.Column('merchant_id', sa.String(128), index=True, nullable=False),
        sa.Column('location_id', sa.String(128), nullable=True),
        sa.Column('environment', sa.String(16), nullable=False, server_default='production'),
        sa.Column('access_token_enc', sa.Text(), nullable=True),
        sa.Column('status', sa.String(24), nullable=False, server_default='connected'),
        sa.Column('connected_at', sa.Integer, nullable=False),
    )

    # inventory items keyed by the provider's id
    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('business_id', sa.String(64), sa.ForeignKey('businesses.id'), index=True, nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('provider_item_id', sa.String(128), nullable=False),
        sa.Column('name', sa.String(256), nullable=False),
        sa.Column('sku', sa.String(128), nullable=True),
        sa.Column('category', sa.String(256), index=True, nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer, nullable=False, server_default='10'),
        sa.Column('unit_price', sa.Integer, nullable=True),
        sa.Column('track_stock', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('last_alert_sent_at', sa.Integer, nullable=True),
        sa.Column('last_synced_at', sa.Integer, nullable=False),
        sa.Column('created_at', sa.Integer, nullable=False),
        sa.Column('updated_at', sa.Integer, nullable=False),
        sa.UniqueConstraint('business_id', 'provider', 'provider_item_id', name='uq_inventory_item_remote'),
    )
    op.create_index('ix_inventory_items_business_quantity', 'inventory_items', ['business_id', 'quantity'])

    op.create_table(
        'inventory_sync_runs',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('business_id', sa.String(64), index=True, nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('synced', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated', sa.Integer, nullable=False, server_default='0'),
        sa.Column('pages', sa.Integer, nullable=False, server_default='0'),
        sa.Column('alerts_sent', sa.Integer, nullable=False, server_default='0'),
        sa.Column('errors_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('started_at', sa.Integer, nullable=False),
        sa.Column('finished_at', sa.Integer, nullable=True),
    )

    # events_ledger (json payload)
    op.create_table(
        'events_ledger',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('ts', sa.Integer, nullable=False),
        sa.Column('business_id', sa.String(64), index=True, nullable=False),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Integer, nullable=False),
    )


def downgrade():
    op.drop_table('events_ledger')
    op.drop_table('inventory_sync_runs')
    op.drop_index('ix_inventory_items_business_quantity', table_name='inventory_items')
    op.drop_table('inventory_items')
    op.drop_table('connected_accounts')
    op.drop_table('businesses')
