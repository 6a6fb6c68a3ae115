"""initial cache schema

Revision ID: 5b7e2c41d9a3
Revises:
Create Date: 2026-10-19 10:12:05.418223

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5b7e2c41d9a3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Stored in normalized form (lowercase, no stop words or punctuation)
SEED_SYNONYMS = [
    ('passport application', 'passport apply', 0.95),
    ('passport application', 'apply passport', 0.95),
    ('passport application', 'new passport', 0.90),
    ('passport renewal', 'renew passport', 0.95),
    ('passport renewal', 'passport reissue', 0.85),
    ('aadhaar card', 'aadhar card', 0.95),
    ('aadhaar enrollment', 'aadhaar registration', 0.90),
    ('aadhaar update', 'aadhaar correction', 0.85),
    ('pan card', 'pan application', 0.90),
    ('pan card', 'permanent account number', 0.85),
    ('voter id', 'voter card', 0.95),
    ('voter id', 'election card', 0.85),
    ('voter registration', 'voter enrollment', 0.90),
    ('driving license', 'driving licence', 0.95),
    ('driving license', 'dl', 0.85),
    ('dl renewal', 'driving license renewal', 0.95),
    ('learner license', 'learner licence', 0.95),
    ('ration card', 'food card', 0.85),
    ('ration card', 'pds card', 0.80),
    ('property registration', 'property registry', 0.90),
    ('property registration', 'land registration', 0.85),
    ('income certificate', 'salary certificate', 0.80),
    ('income certificate', 'income proof', 0.85),
    ('birth certificate', 'birth proof', 0.85),
    ('birth certificate', 'birth record', 0.80),
]


def upgrade() -> None:
    """Create search_cache, cache_stats, popular_queries and query_synonyms."""

    # search_cache table
    op.create_table(
        'search_cache',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('query_hash', sa.Text(), nullable=False),
        sa.Column('original_query', sa.Text(), nullable=False),
        sa.Column('normalized_query', sa.Text(), nullable=False),
        sa.Column('state', sa.Text(), nullable=False),
        sa.Column('city', sa.Text(), nullable=False),
        sa.Column('search_results', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('hit_count', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('last_accessed', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('query_hash', name='search_cache_query_hash_key'),
        sa.CheckConstraint('hit_count >= 1', name='search_cache_hit_count_check'),
        sa.CheckConstraint('expires_at > created_at', name='search_cache_expiry_check')
    )
    op.create_index('idx_search_cache_expires_at', 'search_cache', ['expires_at'])
    op.create_index('idx_search_cache_location', 'search_cache', ['state', 'city'])
    op.create_index('idx_search_cache_created_at', 'search_cache', ['created_at'])

    # cache_stats table
    op.create_table(
        'cache_stats',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('total_requests', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('cache_hits', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('cache_misses', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('api_calls_saved', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('avg_response_time_ms', sa.Float(), server_default=sa.text('0'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('date', name='cache_stats_date_key')
    )

    # popular_queries table
    op.create_table(
        'popular_queries',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('normalized_query', sa.Text(), nullable=False),
        sa.Column('search_count', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('last_searched', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('avg_results', sa.Float(), server_default=sa.text('0'), nullable=False),
        sa.Column('states_searched', sa.Text(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('normalized_query', name='popular_queries_normalized_query_key')
    )
    op.create_index(
        'idx_popular_queries_rank',
        'popular_queries',
        [sa.text('search_count DESC'), sa.text('last_searched DESC')]
    )

    # query_synonyms table
    synonyms = op.create_table(
        'query_synonyms',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('base_query', sa.Text(), nullable=False),
        sa.Column('synonym_query', sa.Text(), nullable=False),
        sa.Column('confidence_score', sa.Float(), server_default=sa.text('1.0'), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('base_query', 'synonym_query', name='query_synonyms_pair_key')
    )
    op.create_index('idx_query_synonyms_synonym', 'query_synonyms', ['synonym_query'])
    op.create_index('idx_query_synonyms_base', 'query_synonyms', ['base_query'])

    op.bulk_insert(
        synonyms,
        [
            {'base_query': base, 'synonym_query': synonym, 'confidence_score': score}
            for base, synonym, score in SEED_SYNONYMS
        ]
    )


def downgrade() -> None:
    """Drop all cache tables."""
    op.drop_table('query_synonyms')
    op.drop_table('popular_queries')
    op.drop_table('cache_stats')
    op.drop_table('search_cache')
