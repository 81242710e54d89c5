"""Create tournament, ranking, prize, wallet and payout tables

Revision ID: 3f9a1c7d2b4e
Revises:
Create Date: 2026-03-01 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2b4e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(20, 8)


def upgrade() -> None:
    op.create_table(
        'tournaments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('entry_fee', MONEY, nullable=False, server_default='0'),
        sa.Column('prize_pool', MONEY, nullable=False, server_default='0'),
        sa.Column('guaranteed_prize_pool', MONEY, nullable=False, server_default='0'),
        sa.Column('platform_fee_percent', sa.Numeric(5, 2), nullable=False, server_default='10'),
        sa.Column('status', sa.String(20), nullable=False, server_default='upcoming'),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('max_participants', sa.Integer(), nullable=True),
        sa.Column('current_participants', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('renewed_from_id', sa.Uuid(), sa.ForeignKey('tournaments.id'), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('end_time > start_time', name='ck_tournament_window'),
        sa.CheckConstraint('entry_fee >= 0', name='ck_tournament_entry_fee'),
        sa.CheckConstraint('prize_pool >= 0', name='ck_tournament_prize_pool'),
    )
    op.create_index('ix_tournaments_status', 'tournaments', ['status'])
    op.create_index('ix_tournaments_end_time', 'tournaments', ['end_time'])
    op.create_index('ix_tournaments_status_end_time', 'tournaments', ['status', 'end_time'])

    op.create_table(
        'tournament_prize_shares',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.Uuid(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('percent', sa.Numeric(5, 2), nullable=False),
        sa.UniqueConstraint('tournament_id', 'rank', name='unique_prize_share_rank'),
        sa.CheckConstraint('rank >= 1', name='ck_prize_share_rank'),
        sa.CheckConstraint('percent >= 0 AND percent <= 100', name='ck_prize_share_percent'),
    )
    op.create_index('ix_tournament_prize_shares_tournament_id', 'tournament_prize_shares', ['tournament_id'])

    op.create_table(
        'tournament_participants',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.Uuid(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('best_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_entry', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'player_id', name='unique_tournament_participant'),
    )
    op.create_index('ix_tournament_participants_tournament_id', 'tournament_participants', ['tournament_id'])
    op.create_index('ix_tournament_participants_player_id', 'tournament_participants', ['player_id'])
    op.create_index(
        'ix_tournament_participants_ranking',
        'tournament_participants',
        ['tournament_id', 'best_score', 'joined_at'],
    )

    op.create_table(
        'tournament_attempts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.Uuid(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.String(255), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('is_new_best', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tournament_attempts_player', 'tournament_attempts', ['tournament_id', 'player_id'])

    op.create_table(
        'tournament_prizes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tournament_id', sa.Uuid(), sa.ForeignKey('tournaments.id'), nullable=False),
        sa.Column('player_id', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('place', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'player_id', 'place', name='unique_prize_receipt'),
        sa.UniqueConstraint('tournament_id', 'place', name='unique_prize_place'),
    )
    op.create_index('ix_tournament_prizes_tournament_id', 'tournament_prizes', ['tournament_id'])
    op.create_index('ix_tournament_prizes_player_id', 'tournament_prizes', ['player_id'])

    op.create_table(
        'wallet_balances',
        sa.Column('player_id', sa.String(255), primary_key=True),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('player_id', sa.String(255), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_wallet_transactions_player_id', 'wallet_transactions', ['player_id'])

    op.create_table(
        'payout_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('receipt_id', sa.Uuid(), sa.ForeignKey('tournament_prizes.id'), nullable=False, unique=True),
        sa.Column('player_id', sa.String(255), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('tx_reference', sa.String(255), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payout_events_status_next', 'payout_events', ['status', 'next_attempt_at'])


def downgrade() -> None:
    op.drop_index('ix_payout_events_status_next', table_name='payout_events')
    op.drop_table('payout_events')
    op.drop_index('ix_wallet_transactions_player_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_table('wallet_balances')
    op.drop_index('ix_tournament_prizes_player_id', table_name='tournament_prizes')
    op.drop_index('ix_tournament_prizes_tournament_id', table_name='tournament_prizes')
    op.drop_table('tournament_prizes')
    op.drop_index('ix_tournament_attempts_player', table_name='tournament_attempts')
    op.drop_table('tournament_attempts')
    op.drop_index('ix_tournament_participants_ranking', table_name='tournament_participants')
    op.drop_index('ix_tournament_participants_player_id', table_name='tournament_participants')
    op.drop_index('ix_tournament_participants_tournament_id', table_name='tournament_participants')
    op.drop_table('tournament_participants')
    op.drop_index('ix_tournament_prize_shares_tournament_id', table_name='tournament_prize_shares')
    op.drop_table('tournament_prize_shares')
    op.drop_index('ix_tournaments_status_end_time', table_name='tournaments')
    op.drop_index('ix_tournaments_end_time', table_name='tournaments')
    op.drop_index('ix_tournaments_status', table_name='tournaments')
    op.drop_table('tournaments')
