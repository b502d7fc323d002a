"""Initial tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Organizations
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=200), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('region', sa.String(length=100), nullable=True),
        sa.Column('location', sa.String(length=100), nullable=True),
        sa.Column('logo_url', sa.Text(), nullable=True),
        sa.Column('wiki_url', sa.Text(), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('founded', sa.Date(), nullable=True),
        sa.Column('total_earnings', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('wiki_url'),
    )
    op.create_index('ix_organizations_slug', 'organizations', ['slug'], unique=True)
    op.create_index('ix_organizations_last_synced_at', 'organizations', ['last_synced_at'])

    # Players
    op.create_table(
        'players',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.String(length=200), nullable=False),
        sa.Column('wiki_url', sa.Text(), nullable=True),
        sa.Column('platform_account_id', sa.String(length=64), nullable=True),
        sa.Column('current_ign', sa.String(length=100), nullable=True),
        sa.Column('platform_display_name', sa.String(length=100), nullable=True),
        sa.Column('real_name', sa.String(length=255), nullable=True),
        sa.Column('country', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=100), nullable=True),
        sa.Column('org_slug', sa.String(length=200), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('total_earnings', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('wiki_url'),
    )
    op.create_index('ix_players_player_id', 'players', ['player_id'], unique=True)
    op.create_index('ix_players_platform_account_id', 'players', ['platform_account_id'], unique=True)
    op.create_index('ix_players_org_slug', 'players', ['org_slug'])
    op.create_index('ix_players_last_synced_at', 'players', ['last_synced_at'])

    # Tournaments
    op.create_table(
        'tournaments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tournament_id', sa.String(length=200), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('region', sa.String(length=50), nullable=True),
        sa.Column('tier', sa.String(length=50), nullable=True),
        sa.Column('format', sa.String(length=100), nullable=True),
        sa.Column('organizer', sa.String(length=255), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('prize_pool', sa.Float(), nullable=True),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('window_count', sa.Integer(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tournaments_tournament_id', 'tournaments', ['tournament_id'], unique=True)
    op.create_index('ix_tournaments_last_synced_at', 'tournaments', ['last_synced_at'])

    # Earnings
    op.create_table(
        'earnings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('earning_id', sa.String(length=400), nullable=False),
        sa.Column('player_id', sa.String(length=200), nullable=False),
        sa.Column('tournament_name', sa.String(length=255), nullable=True),
        sa.Column('tournament_date', sa.Date(), nullable=True),
        sa.Column('tier', sa.String(length=50), nullable=True),
        sa.Column('placement', sa.Integer(), nullable=True),
        sa.Column('prize_usd', sa.Float(), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_earnings_earning_id', 'earnings', ['earning_id'], unique=True)
    op.create_index('ix_earnings_player_id', 'earnings', ['player_id'])

    # Transfers
    op.create_table(
        'transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.String(length=64), nullable=False),
        sa.Column('player_name', sa.String(length=100), nullable=True),
        sa.Column('player_id', sa.String(length=200), nullable=True),
        sa.Column('player_wiki_url', sa.Text(), nullable=True),
        sa.Column('from_org', sa.String(length=255), nullable=True),
        sa.Column('to_org', sa.String(length=255), nullable=True),
        sa.Column('transfer_type', sa.String(length=20), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('transfer_date', sa.Date(), nullable=True),
        sa.Column('reference_url', sa.Text(), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transfers_transfer_id', 'transfers', ['transfer_id'], unique=True)
    op.create_index('ix_transfers_player_id', 'transfers', ['player_id'])
    op.create_index('ix_transfers_transfer_date', 'transfers', ['transfer_date'])

    # Device credentials
    op.create_table(
        'device_credentials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('subject_id', sa.String(length=64), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('secret', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_device_credentials_subject_id', 'device_credentials', ['subject_id'], unique=True)
    op.create_index('ix_device_credentials_is_active', 'device_credentials', ['is_active'])


def downgrade() -> None:
    op.drop_table('device_credentials')
    op.drop_table('transfers')
    op.drop_table('earnings')
    op.drop_table('tournaments')
    op.drop_table('players')
    op.drop_table('organizations')
