"""initial

Revision ID: 202601120001
Revises: 
Create Date: 2026-01-12 00:01:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '202601120001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table('transcript',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('vendor_call_key', sa.String(64), nullable=False, unique=True),
        sa.Column('call_start', sa.DateTime()),
        sa.Column('call_end', sa.DateTime()),
        sa.Column('duration_seconds', sa.Integer()),
        sa.Column('disposition', sa.Text()),
        sa.Column('department', sa.String(128)),
        sa.Column('status', sa.String(64)),
        sa.Column('number_of_holds', sa.Integer()),
        sa.Column('hold_duration', sa.Integer()),
        sa.Column('agent_name', sa.Text()),
        sa.Column('agent_role', sa.Text()),
        sa.Column('agent_profile', sa.Text()),
        sa.Column('agent_email', sa.Text()),
        sa.Column('messages', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()')),
    )

    op.create_table('transcript_analysis',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('vendor_call_key', sa.String(64), sa.ForeignKey('transcript.vendor_call_key', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_name', sa.Text()),
        sa.Column('agent_sentiment', sa.String(16), nullable=False),
        sa.Column('agent_sentiment_score', sa.Float(), nullable=False),
        sa.Column('agent_sentiment_reason', sa.Text()),
        sa.Column('customer_sentiment', sa.String(16), nullable=False),
        sa.Column('customer_sentiment_score', sa.Float(), nullable=False),
        sa.Column('customer_sentiment_reason', sa.Text()),
        sa.Column('ai_discovered_topic', sa.Text()),
        sa.Column('ai_discovered_subcategory', sa.Text()),
        sa.Column('topic_confidence', sa.Float()),
        sa.Column('key_issues', sa.JSON()),
        sa.Column('resolution', sa.Text()),
        sa.Column('tags', sa.JSON()),
        sa.Column('model', sa.String(64), nullable=False),
        sa.Column('analyzed_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()')),
    )

    op.create_table('professionalism_review',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('vendor_call_key', sa.String(64), sa.ForeignKey('transcript.vendor_call_key', ondelete='CASCADE'), nullable=False),
        sa.Column('agent_name', sa.Text()),
        sa.Column('professionalism', sa.Float(), nullable=False),
        sa.Column('communication_clarity', sa.Float()),
        sa.Column('active_listening', sa.Float()),
        sa.Column('empathy', sa.Float()),
        sa.Column('de_escalation', sa.Float()),
        sa.Column('caused_frustration', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('customer_start_mood', sa.String(32)),
        sa.Column('customer_end_mood', sa.String(32)),
        sa.Column('agent_issues', sa.JSON()),
        sa.Column('agent_strengths', sa.JSON()),
        sa.Column('summary', sa.Text()),
        sa.Column('model', sa.String(64), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(), server_default=sa.text('now()')),
    )

    op.create_table('sync_run',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('window_start', sa.Date(), nullable=False),
        sa.Column('window_end', sa.Date(), nullable=False),
        sa.Column('method', sa.String(16), nullable=False),
        sa.Column('fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('imported', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('analyzed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_messages', sa.JSON()),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), server_default=sa.text('now()')),
    )

    op.create_index('ix_transcript_call_start', 'transcript', ['call_start'])
    op.create_index('ix_transcript_agent_name', 'transcript', ['agent_name'])
    op.create_index('ix_transcript_analysis_agent_name', 'transcript_analysis', ['agent_name'])
    op.create_index('ix_transcript_analysis_ai_discovered_topic', 'transcript_analysis', ['ai_discovered_topic'])
    op.create_index('ix_professionalism_review_agent_name', 'professionalism_review', ['agent_name'])
    op.create_unique_constraint('uq_transcript_analysis_call', 'transcript_analysis', ['vendor_call_key'])
    op.create_unique_constraint('uq_professionalism_review_call', 'professionalism_review', ['vendor_call_key'])

def downgrade() -> None:
    op.drop_constraint('uq_professionalism_review_call', 'professionalism_review', type_='unique')
    op.drop_constraint('uq_transcript_analysis_call', 'transcript_analysis', type_='unique')
    op.drop_index('ix_professionalism_review_agent_name', table_name='professionalism_review')
    op.drop_index('ix_transcript_analysis_ai_discovered_topic', table_name='transcript_analysis')
    op.drop_index('ix_transcript_analysis_agent_name', table_name='transcript_analysis')
    op.drop_index('ix_transcript_agent_name', table_name='transcript')
    op.drop_index('ix_transcript_call_start', table_name='transcript')
    op.drop_table('sync_run')
    op.drop_table('professionalism_review')
    op.drop_table('transcript_analysis')
    op.drop_table('transcript')
