"""Initial schema: users, projects, bids, reviews, maker profiles, earnings and payouts

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, ENUM


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

user_role_enum = ENUM('client', 'maker', name='user_role', create_type=False)
project_status_enum = ENUM('active', 'reserved', 'completed', name='project_status', create_type=False)
bid_status_enum = ENUM('pending', 'accepted', 'rejected', name='bid_status', create_type=False)
payout_method_enum = ENUM('stripe', 'paypal', 'bank', name='payout_method', create_type=False)
payout_status_enum = ENUM('pending', 'processing', 'completed', 'failed', name='payout_status', create_type=False)
earning_source_enum = ENUM('bid', 'design_purchase', name='earning_source', create_type=False)

ENUMS = (
    user_role_enum,
    project_status_enum,
    bid_status_enum,
    payout_method_enum,
    payout_status_enum,
    earning_source_enum,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', user_role_enum, nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('material', sa.String(), nullable=True),
        sa.Column('dimensions', sa.String(), nullable=True),
        sa.Column('files', JSONB(), server_default='[]', nullable=False),
        sa.Column('status', project_status_enum, server_default='active', nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'], unique=False)
    op.create_index('ix_projects_status', 'projects', ['status'], unique=False)

    op.create_table(
        'bids',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('maker_id', sa.String(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('delivery_days', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('status', bid_status_enum, server_default='pending', nullable=False),
        sa.Column('is_read', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('delivery_confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['maker_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('price >= 0.50', name='ck_bids_min_price'),
        sa.CheckConstraint('delivery_days > 0', name='ck_bids_delivery_days_positive'),
    )
    op.create_index('ix_bids_project_id', 'bids', ['project_id'], unique=False)
    op.create_index('ix_bids_maker_id', 'bids', ['maker_id'], unique=False)
    # Concurrent accepts: the second one to commit fails on this index
    op.create_index(
        'uq_bids_one_accepted_per_project', 'bids', ['project_id'],
        unique=True, postgresql_where=sa.text("status = 'accepted'"),
    )
    op.create_index(
        'uq_bids_open_per_maker_project', 'bids', ['project_id', 'maker_id'],
        unique=True, postgresql_where=sa.text("status <> 'rejected'"),
    )

    op.create_table(
        'reviews',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('from_user_id', sa.String(), nullable=False),
        sa.Column('to_user_id', sa.String(), nullable=False),
        sa.Column('rating', sa.Numeric(2, 1), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'from_user_id', 'to_user_id', name='uq_reviews_project_from_to'),
        sa.CheckConstraint('rating >= 0.5 AND rating <= 5', name='ck_reviews_rating_range'),
    )
    op.create_index('ix_reviews_to_user_id', 'reviews', ['to_user_id'], unique=False)

    op.create_table(
        'maker_profiles',
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('printer_models', JSONB(), server_default='[]', nullable=False),
        sa.Column('rating', sa.Numeric(3, 2), server_default='0', nullable=False),
        sa.Column('total_reviews', sa.Integer(), server_default='0', nullable=False),
        sa.Column('payout_method', payout_method_enum, nullable=True),
        sa.Column('payout_destination', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'maker_earnings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('maker_id', sa.String(), nullable=False),
        sa.Column('source', earning_source_enum, nullable=False),
        sa.Column('source_id', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('available_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['maker_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'source_id', name='uq_maker_earnings_source'),
        sa.CheckConstraint('amount > 0', name='ck_maker_earnings_amount_positive'),
        sa.CheckConstraint('available_date > created_at', name='ck_maker_earnings_retention'),
    )
    op.create_index('ix_maker_earnings_maker_id', 'maker_earnings', ['maker_id'], unique=False)

    op.create_table(
        'maker_payouts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('maker_id', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('method', payout_method_enum, nullable=False),
        sa.Column('status', payout_status_enum, server_default='pending', nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('provider_reference', sa.String(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['maker_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_maker_payouts_amount_positive'),
    )
    op.create_index('ix_maker_payouts_maker_id', 'maker_payouts', ['maker_id'], unique=False)
    op.create_index('ix_maker_payouts_status', 'maker_payouts', ['status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_maker_payouts_status', table_name='maker_payouts')
    op.drop_index('ix_maker_payouts_maker_id', table_name='maker_payouts')
    op.drop_table('maker_payouts')
    op.drop_index('ix_maker_earnings_maker_id', table_name='maker_earnings')
    op.drop_table('maker_earnings')
    op.drop_table('maker_profiles')
    op.drop_index('ix_reviews_to_user_id', table_name='reviews')
    op.drop_table('reviews')
    op.drop_index('uq_bids_open_per_maker_project', table_name='bids')
    op.drop_index('uq_bids_one_accepted_per_project', table_name='bids')
    op.drop_index('ix_bids_maker_id', table_name='bids')
    op.drop_index('ix_bids_project_id', table_name='bids')
    op.drop_table('bids')
    op.drop_index('ix_projects_status', table_name='projects')
    op.drop_index('ix_projects_owner_id', table_name='projects')
    op.drop_table('projects')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
