"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Local store: entries captured on this device
    op.create_table(
        'local_entries',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('root_id', sa.String(64), nullable=False),
        sa.Column('parent_id', sa.String(64), nullable=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('sync_state', sa.String(20), nullable=False),
    )
    op.create_index('idx_local_entries_sync_created', 'local_entries', ['sync_state', 'created_at'])
    op.create_index('idx_local_entries_created', 'local_entries', ['created_at'])

    # Local store: attachments, payload kept until uploaded
    op.create_table(
        'local_attachments',
        sa.Column('pk', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'entry_id', sa.String(64),
            sa.ForeignKey('local_entries.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=False),
        sa.Column('name', sa.String(1024), nullable=False),
        sa.Column('payload', sa.LargeBinary(), nullable=True),
        sa.Column('remote_key', sa.String(255), nullable=True),
    )
    op.create_index('idx_local_attachments_entry', 'local_attachments', ['entry_id', 'position'])

    # Entry service: authoritative records
    op.create_table(
        'remote_entries',
        sa.Column('entry_id', sa.String(64), primary_key=True),
        sa.Column('root_id', sa.String(64), nullable=False),
        sa.Column('parent_id', sa.String(64), nullable=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('attachments_json', sa.Text(), nullable=True),
    )
    op.create_index('idx_remote_entries_created', 'remote_entries', ['created_at'])


def downgrade() -> None:
    op.drop_table('remote_entries')
    op.drop_table('local_attachments')
    op.drop_table('local_entries')
