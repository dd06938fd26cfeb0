"""create user and location tables

Revision ID: 5b2d9c1e7f30
Revises:
Create Date: 2025-10-02 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b2d9c1e7f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'location' not in existing_tables:
        op.create_table(
            'location',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=128), nullable=False),
            sa.Column('country', sa.String(length=64), nullable=True),
            sa.Column('latitude', sa.Float(), nullable=False),
            sa.Column('longitude', sa.Float(), nullable=False),
            sa.Column('difficulty', sa.String(length=16), nullable=False),
            sa.Column('category', sa.String(length=32), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_location_difficulty', 'location', ['difficulty'], unique=False)
        op.create_index('ix_location_category', 'location', ['category'], unique=False)


def downgrade():
    op.drop_index('ix_location_category', table_name='location')
    op.drop_index('ix_location_difficulty', table_name='location')
    op.drop_table('location')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
