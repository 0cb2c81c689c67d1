"""Initial feed curator schema

Revision ID: a3c9e1f04b27
Revises:
Create Date: 2026-10-12 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a3c9e1f04b27'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'readers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'sources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('url', sa.String(length=2048), nullable=False),
        sa.Column('feed_type', sa.String(length=32), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=True),
        sa.Column('max_items', sa.Integer(), nullable=True),
        sa.Column('last_fetched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_failure_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consecutive_failures', sa.Integer(), server_default='0', nullable=True),
        sa.Column('total_failures', sa.Integer(), server_default='0', nullable=True),
        sa.Column('last_error', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('url'),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.ForeignKeyConstraint(['source_id'], ['sources.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reader_id', 'source_id', name='uq_subscriptions_reader_source'),
    )
    op.create_index('ix_subscriptions_reader_id', 'subscriptions', ['reader_id'], unique=False)
    op.create_index('ix_subscriptions_source_id', 'subscriptions', ['source_id'], unique=False)

    op.create_table(
        'articles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=2048), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=1024), nullable=False),
        sa.Column('url', sa.String(length=2048), nullable=False),
        sa.Column('raw_content', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ingested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('is_duplicate', sa.Boolean(), server_default=sa.text('false'), nullable=True),
        sa.Column('duplicate_of_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['source_id'], ['sources.id']),
        sa.ForeignKeyConstraint(['duplicate_of_id'], ['articles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id', 'external_id', 'provider', name='uq_articles_source_external_provider'),
    )
    op.create_index('ix_articles_source_id', 'articles', ['source_id'], unique=False)
    op.create_index('ix_articles_ingested', 'articles', ['ingested_at'], unique=False)

    # The native `embedding vector(n)` column is added at startup when pgvector is available
    op.create_table(
        'embeddings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ref_type', sa.String(length=16), nullable=False),
        sa.Column('ref_id', sa.Integer(), nullable=False),
        sa.Column('embedding_text', sa.Text(), nullable=False),
        sa.Column('embedding_json', sa.JSON(), nullable=True),
        sa.Column('embedding_dim', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ref_type', 'ref_id', name='uq_embeddings_ref'),
    )

    op.create_table(
        'interests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=256), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('expanded_description', sa.Text(), nullable=True),
        sa.Column('weight', sa.Float(), server_default='1.0', nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_interests_reader_id', 'interests', ['reader_id'], unique=False)

    op.create_table(
        'exclusions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=256), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('expanded_description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_exclusions_reader_id', 'exclusions', ['reader_id'], unique=False)

    op.create_table(
        'digests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=True),
        sa.Column('article_count', sa.Integer(), nullable=True),
        sa.Column('generated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_digests_reader_id', 'digests', ['reader_id'], unique=False)

    op.create_table(
        'user_articles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('embedding_score', sa.Float(), nullable=True),
        sa.Column('best_interest_id', sa.Integer(), nullable=True),
        sa.Column('relevance_score', sa.Float(), nullable=True),
        sa.Column('relevance_reason', sa.String(length=512), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('is_serendipity', sa.Boolean(), nullable=True),
        sa.Column('digest_id', sa.Integer(), nullable=True),
        sa.Column('sentiment', sa.String(length=16), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True),
        sa.Column('is_bookmarked', sa.Boolean(), nullable=True),
        sa.Column('is_archived', sa.Boolean(), nullable=True),
        sa.Column('scored_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id']),
        sa.ForeignKeyConstraint(['best_interest_id'], ['interests.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['digest_id'], ['digests.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reader_id', 'article_id', name='uq_user_articles_reader_article'),
    )
    op.create_index('ix_user_articles_reader_digest', 'user_articles', ['reader_id', 'digest_id'], unique=False)

    op.create_table(
        'feedback_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_feedback_reader_created', 'feedback_events', ['reader_id', 'created_at'], unique=False)

    op.create_table(
        'learned_preferences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('preference_text', sa.Text(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('derived_from_count', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_learned_preferences_reader_id', 'learned_preferences', ['reader_id'], unique=False)

    op.create_table(
        'interest_suggestions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reader_id', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=256), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('related_interests', sa.JSON(), nullable=True),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('status', sa.String(length=16), server_default='pending', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_interest_suggestions_reader_id', 'interest_suggestions', ['reader_id'], unique=False)

    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(length=64), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope', 'key', name='uq_settings_scope_key'),
    )

    op.create_table(
        'llm_call_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('call_purpose', sa.String(length=128), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('model', sa.String(length=64), nullable=False),
        sa.Column('prompt_tokens', sa.Integer(), nullable=False),
        sa.Column('completion_tokens', sa.Integer(), nullable=False),
        sa.Column('total_tokens', sa.Integer(), nullable=False),
        sa.Column('cost_usd', sa.Float(), nullable=False),
        sa.Column('latency_ms', sa.Integer(), nullable=True),
        sa.Column('reader_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['reader_id'], ['readers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_llm_logs_purpose_date', 'llm_call_logs', ['call_purpose', 'created_at'], unique=False)

    op.create_table(
        'ingestion_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('trigger', sa.String(length=16), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('summary_json', sa.JSON(), nullable=True),
        sa.Column('events_json', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade():
    op.drop_table('ingestion_runs')
    op.drop_index('ix_llm_logs_purpose_date', table_name='llm_call_logs')
    op.drop_table('llm_call_logs')
    op.drop_table('settings')
    op.drop_index('ix_interest_suggestions_reader_id', table_name='interest_suggestions')
    op.drop_table('interest_suggestions')
    op.drop_index('ix_learned_preferences_reader_id', table_name='learned_preferences')
    op.drop_table('learned_preferences')
    op.drop_index('ix_feedback_reader_created', table_name='feedback_events')
    op.drop_table('feedback_events')
    op.drop_index('ix_user_articles_reader_digest', table_name='user_articles')
    op.drop_table('user_articles')
    op.drop_index('ix_digests_reader_id', table_name='digests')
    op.drop_table('digests')
    op.drop_index('ix_exclusions_reader_id', table_name='exclusions')
    op.drop_table('exclusions')
    op.drop_index('ix_interests_reader_id', table_name='interests')
    op.drop_table('interests')
    op.drop_table('embeddings')
    op.drop_index('ix_articles_ingested', table_name='articles')
    op.drop_index('ix_articles_source_id', table_name='articles')
    op.drop_table('articles')
    op.drop_index('ix_subscriptions_source_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_reader_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('sources')
    op.drop_table('readers')
