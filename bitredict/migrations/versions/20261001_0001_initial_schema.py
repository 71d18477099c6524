"""Initial schema: oracle domain tables, system coordination tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-01

- oracle.*: fixtures and results, Oddyssey cycles and slips, pools and the
  rows derived from pool events, market id reverse lookup, alerts
- system.*: cron locks, cron execution log, indexer cursors
- analytics: namespace for derived views owned by the query API
- validate_fixture_result_trigger rejects non-canonical outcome strings
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


VALIDATE_FIXTURE_RESULT_FUNCTION = """
CREATE OR REPLACE FUNCTION oracle.validate_fixture_result_format()
RETURNS TRIGGER AS $$
BEGIN
    IF NEW.outcome_1x2 IS NOT NULL AND NEW.outcome_1x2 NOT IN ('Home', 'Draw', 'Away') THEN
        RAISE EXCEPTION 'Invalid outcome_1x2 format: %. Must be Home, Draw, or Away', NEW.outcome_1x2;
    END IF;
    IF NEW.outcome_ou25 IS NOT NULL AND NEW.outcome_ou25 NOT IN ('Over', 'Under') THEN
        RAISE EXCEPTION 'Invalid outcome_ou25 format: %. Must be Over or Under', NEW.outcome_ou25;
    END IF;
    IF NEW.outcome_btts IS NOT NULL AND NEW.outcome_btts NOT IN ('Yes', 'No') THEN
        RAISE EXCEPTION 'Invalid outcome_btts format: %. Must be Yes or No', NEW.outcome_btts;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

VALIDATE_FIXTURE_RESULT_TRIGGER = """
CREATE TRIGGER validate_fixture_result_trigger
    BEFORE INSERT OR UPDATE ON oracle.fixture_results
    FOR EACH ROW EXECUTE FUNCTION oracle.validate_fixture_result_format();
"""


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _log_key() -> list[sa.Column]:
    return [
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.execute('CREATE SCHEMA IF NOT EXISTS oracle')
    op.execute('CREATE SCHEMA IF NOT EXISTS system')
    op.execute('CREATE SCHEMA IF NOT EXISTS analytics')

    # ==========================================================================
    # Fixtures and results
    # ==========================================================================
    op.create_table(
        'fixtures',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(300), nullable=True),
        sa.Column('home_team', sa.String(200), nullable=False),
        sa.Column('away_team', sa.String(200), nullable=False),
        sa.Column('league_name', sa.String(200), nullable=True),
        sa.Column('match_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='NS'),
        sa.Column('home_odds', sa.Numeric(10, 3), nullable=True),
        sa.Column('draw_odds', sa.Numeric(10, 3), nullable=True),
        sa.Column('away_odds', sa.Numeric(10, 3), nullable=True),
        sa.Column('over_25_odds', sa.Numeric(10, 3), nullable=True),
        sa.Column('under_25_odds', sa.Numeric(10, 3), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        schema='oracle',
    )
    op.create_index('idx_fixtures_match_date', 'fixtures', ['match_date'], schema='oracle')

    op.create_table(
        'fixture_results',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fixture_id', sa.BigInteger(), nullable=False),
        sa.Column('home_score', sa.Integer(), nullable=True),
        sa.Column('away_score', sa.Integer(), nullable=True),
        sa.Column('outcome_1x2', sa.String(10), nullable=True),
        sa.Column('outcome_ou25', sa.String(10), nullable=True),
        sa.Column('outcome_btts', sa.String(10), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fixture_id'),
        schema='oracle',
    )
    op.execute(VALIDATE_FIXTURE_RESULT_FUNCTION)
    op.execute(VALIDATE_FIXTURE_RESULT_TRIGGER)

    # ==========================================================================
    # Oddyssey
    # ==========================================================================
    op.create_table(
        'oddyssey_cycles',
        sa.Column('cycle_id', sa.BigInteger(), nullable=False),
        sa.Column('matches_count', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('matches_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('cycle_start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cycle_end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('prize_pool', sa.Numeric(78, 0), nullable=False, server_default='0'),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_tx_hash', sa.String(66), nullable=True),
        sa.Column('resolution_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('evaluation_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('evaluation_completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('cycle_id'),
        sa.CheckConstraint('matches_count = 10', name='ck_oddyssey_cycles_ten_matches'),
        schema='oracle',
    )
    op.create_index(
        'idx_oddyssey_cycles_unresolved',
        'oddyssey_cycles',
        ['cycle_id'],
        schema='oracle',
        postgresql_where=sa.text('is_resolved = false'),
    )

    op.create_table(
        'oddyssey_slips',
        sa.Column('slip_id', sa.BigInteger(), nullable=False),
        sa.Column('cycle_id', sa.BigInteger(), nullable=False),
        sa.Column('player_address', sa.String(42), nullable=False),
        sa.Column('placed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('predictions', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('is_evaluated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('correct_count', sa.Integer(), nullable=True),
        sa.Column('final_score', sa.Numeric(78, 0), nullable=True),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('evaluation_tx_hash', sa.String(66), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('prize_claimed', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('slip_id'),
        sa.ForeignKeyConstraint(['cycle_id'], ['oracle.oddyssey_cycles.cycle_id']),
        sa.UniqueConstraint('slip_id', 'cycle_id', name='uq_oddyssey_slips_slip_cycle'),
        sa.CheckConstraint(
            'correct_count IS NULL OR (correct_count >= 0 AND correct_count <= 10)',
            name='ck_oddyssey_slips_correct_count',
        ),
        schema='oracle',
    )
    op.create_index(
        'idx_oddyssey_slips_cycle_pending', 'oddyssey_slips', ['cycle_id', 'is_evaluated'], schema='oracle'
    )

    op.create_table(
        'prize_claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cycle_id', sa.BigInteger(), nullable=False),
        sa.Column('player_address', sa.String(42), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(78, 0), nullable=False),
        *_log_key(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', 'log_index', name='uq_prize_claims_tx_log'),
        schema='oracle',
    )

    # ==========================================================================
    # Pools
    # ==========================================================================
    op.create_table(
        'pools',
        sa.Column('pool_id', sa.BigInteger(), nullable=False),
        sa.Column('creator_address', sa.String(42), nullable=False),
        sa.Column('predicted_outcome', sa.String(66), nullable=True),
        sa.Column('odds', sa.Integer(), nullable=False),
        sa.Column('creator_stake', sa.Numeric(78, 0), nullable=True),
        sa.Column('total_creator_side_stake', sa.Numeric(78, 0), nullable=True),
        sa.Column('total_bettor_stake', sa.Numeric(78, 0), nullable=True),
        sa.Column('event_start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('event_end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('betting_end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('league', sa.String(200), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('market_id', sa.Text(), nullable=True),
        sa.Column('market_type', sa.Integer(), nullable=True),
        sa.Column('oracle_type', sa.String(10), nullable=False, server_default='Guided'),
        sa.Column('is_private', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('use_bitr', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_settled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('creator_side_won', sa.Boolean(), nullable=True),
        sa.Column('result', sa.String(66), nullable=True),
        sa.Column('settlement_tx_hash', sa.String(66), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_refunded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('pool_id'),
        sa.CheckConstraint(
            'betting_end_time <= event_start_time AND event_start_time <= event_end_time',
            name='ck_pools_event_times',
        ),
        schema='oracle',
    )
    op.create_index('idx_pools_market_id', 'pools', ['market_id'], schema='oracle')
    op.create_index(
        'idx_pools_unsettled',
        'pools',
        ['pool_id'],
        schema='oracle',
        postgresql_where=sa.text('is_settled = false'),
    )

    op.create_table(
        'market_id_lookup',
        sa.Column('market_hash', sa.String(66), nullable=False),
        sa.Column('market_id', sa.Text(), nullable=False),
        sa.Column('pool_id', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('market_hash'),
        schema='oracle',
    )

    op.create_table(
        'bets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pool_id', sa.BigInteger(), nullable=False),
        sa.Column('bettor_address', sa.String(42), nullable=False),
        sa.Column('amount', sa.Numeric(78, 0), nullable=False),
        sa.Column('is_for_outcome', sa.Boolean(), nullable=False),
        *_log_key(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', 'log_index', name='uq_bets_tx_log'),
        schema='oracle',
    )
    op.create_index('idx_bets_pool', 'bets', ['pool_id'], schema='oracle')

    op.create_table(
        'pool_liquidity_providers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pool_id', sa.BigInteger(), nullable=False),
        sa.Column('provider_address', sa.String(42), nullable=False),
        sa.Column('amount', sa.Numeric(78, 0), nullable=False),
        *_log_key(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', 'log_index', name='uq_pool_lp_tx_log'),
        schema='oracle',
    )
    op.create_index('idx_pool_lp_pool', 'pool_liquidity_providers', ['pool_id'], schema='oracle')

    op.create_table(
        'system_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='error'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='oracle',
    )

    # ==========================================================================
    # System: coordination
    # ==========================================================================
    op.create_table(
        'cron_locks',
        sa.Column('job_name', sa.String(100), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('locked_by', sa.String(255), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('execution_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('job_name'),
        sa.CheckConstraint('expires_at > locked_at', name='ck_cron_locks_expiry_future'),
        schema='system',
    )

    op.create_table(
        'cron_execution_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_name', sa.String(100), nullable=False),
        sa.Column('execution_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('started', 'completed', 'failed', 'timeout', 'force_released')",
            name='ck_cron_execution_log_status',
        ),
        schema='system',
    )
    op.create_index(
        'idx_cron_execution_log_job_started',
        'cron_execution_log',
        ['job_name', sa.text('started_at DESC')],
        schema='system',
    )

    op.create_table(
        'indexer_cursors',
        sa.Column('contract', sa.String(50), nullable=False),
        sa.Column('event_name', sa.String(100), nullable=False),
        sa.Column('last_processed_block', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('contract', 'event_name'),
        schema='system',
    )


def downgrade() -> None:
    op.drop_table('indexer_cursors', schema='system')
    op.drop_table('cron_execution_log', schema='system')
    op.drop_table('cron_locks', schema='system')
    op.drop_table('system_alerts', schema='oracle')
    op.drop_table('pool_liquidity_providers', schema='oracle')
    op.drop_table('bets', schema='oracle')
    op.drop_table('market_id_lookup', schema='oracle')
    op.drop_table('pools', schema='oracle')
    op.drop_table('prize_claims', schema='oracle')
    op.drop_table('oddyssey_slips', schema='oracle')
    op.drop_table('oddyssey_cycles', schema='oracle')
    op.execute('DROP TRIGGER IF EXISTS validate_fixture_result_trigger ON oracle.fixture_results')
    op.execute('DROP FUNCTION IF EXISTS oracle.validate_fixture_result_format()')
    op.drop_table('fixture_results', schema='oracle')
    op.drop_table('fixtures', schema='oracle')
