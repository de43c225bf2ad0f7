"""Create feed_items table

Revision ID: 001_feed_items
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_feed_items'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TEXT_COLUMNS = (
    ('price_retail', 32), ('price_sale', 32), ('price_ebay', 32), ('price_keystone', 32),
    ('price_chronos', 32), ('price_wholesale', 32), ('cost_invoiced', 32),
    ('title', 500), ('style', 100), ('brand', 255), ('model', 255), ('year', 32),
    ('material', 255), ('reference_number', 255), ('movement', 255), ('case', 255),
    ('dial', 255), ('strap', 255), ('condition', 255), ('diameter', 64),
    ('box_papers', 255), ('category', 255), ('serial_number', 255),
)


def upgrade() -> None:
    op.create_table(
        'feed_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='AVAILABLE'),
        sa.Column('remote_id', sa.String(length=100), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('web_status', sa.String(length=32), nullable=True),
        *[sa.Column(name, sa.String(length=length), nullable=True) for name, length in TEXT_COLUMNS],
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('internal_notes', sa.Text(), nullable=True),
        sa.Column('image_paths', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    )
    op.create_index('ix_feed_items_sku', 'feed_items', ['sku'], unique=True)
    op.create_index('ix_feed_items_remote_id', 'feed_items', ['remote_id'])


def downgrade() -> None:
    op.drop_index('ix_feed_items_remote_id', table_name='feed_items')
    op.drop_index('ix_feed_items_sku', table_name='feed_items')
    op.drop_table('feed_items')
