"""Initial schema - memory/event graph

Revision ID: 001_memory_event_graph
Revises:
Create Date: 2026-10-18

Creates memories with context/tags/people, events and their links, the
separately stored embeddings, the retrieval log and the processing queue.
On PostgreSQL also enables pgvector and adds vector columns with HNSW indexes.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_memory_event_graph'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = 1536


def upgrade() -> None:
    is_postgres = op.get_bind().dialect.name == 'postgresql'
    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, index=True, nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('is_active', sa.Boolean, default=True),
    )

    op.create_table(
        'memories',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), index=True, nullable=False),
        sa.Column('captured_at', sa.DateTime, index=True, nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('media_type', sa.String(20), nullable=False),
        sa.Column('storage_path', sa.Text, nullable=True),
        sa.Column('transcript', sa.Text, nullable=True),
        sa.Column('ai_summary', sa.Text, nullable=True),
        sa.Column('processing_status', sa.String(20), index=True, nullable=False),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_memories_user_captured', 'memories', ['user_id', 'captured_at'])

    op.create_table(
        'memory_context',
        sa.Column('memory_id', sa.String(36), sa.ForeignKey('memories.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_note', sa.Text, nullable=True),
        sa.Column('location_name', sa.String(255), nullable=True),
        sa.Column('latitude', sa.Float, nullable=True),
        sa.Column('longitude', sa.Float, nullable=True),
        sa.Column('confirmed', sa.Boolean, default=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'memory_tags',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('memory_id', sa.String(36), sa.ForeignKey('memories.id', ondelete='CASCADE'), index=True),
        sa.Column('tag', sa.String(100), nullable=False),
        sa.Column('confidence', sa.Float, nullable=True),
        sa.Column('origin', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'memory_people',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('memory_id', sa.String(36), sa.ForeignKey('memories.id', ondelete='CASCADE'), index=True),
        sa.Column('person_name', sa.String(255), nullable=False),
        sa.Column('confidence', sa.Float, nullable=True),
        sa.Column('confirmed', sa.Boolean, default=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), index=True, nullable=False),
        sa.Column('start_time', sa.DateTime, index=True, nullable=False),
        sa.Column('end_time', sa.DateTime, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('summary', sa.Text, nullable=True),
        sa.Column('location_name', sa.String(255), nullable=True),
        sa.Column('location_lat', sa.Float, nullable=True),
        sa.Column('location_lng', sa.Float, nullable=True),
        sa.Column('confidence_score', sa.Float, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_events_user_start', 'events', ['user_id', 'start_time'])

    op.create_table(
        'memory_event_links',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('memory_id', sa.String(36), sa.ForeignKey('memories.id', ondelete='CASCADE'), index=True),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.id', ondelete='CASCADE'), index=True),
        sa.Column('relationship_type', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('memory_id', 'event_id', name='uq_memory_event_link'),
    )

    for table, fk_column, parent in (
        ('memory_embeddings', 'memory_id', 'memories'),
        ('event_embeddings', 'event_id', 'events'),
    ):
        op.create_table(
            table,
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column(fk_column, sa.String(36), sa.ForeignKey(f'{parent}.id', ondelete='CASCADE'), unique=True, index=True),
            sa.Column('embedding_json', sa.Text, nullable=True),
            sa.Column('model_version', sa.String(100), nullable=False),
            sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        )
        if is_postgres:
            op.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS embedding vector({EMBEDDING_DIMENSION})")
            op.execute(f"""
                CREATE INDEX IF NOT EXISTS ix_{table}_embedding_hnsw
                ON {table} USING hnsw (embedding vector_cosine_ops)
                WITH (m = 16, ef_construction = 64)
            """)
        else:
            op.add_column(table, sa.Column('embedding', sa.Text, nullable=True))

    op.create_table(
        'retrieval_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), index=True, nullable=True),
        sa.Column('user_query', sa.Text, nullable=False),
        sa.Column('retrieved_ids_json', sa.Text, nullable=True),
        sa.Column('search_metadata_json', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), index=True),
    )

    op.create_table(
        'processing_tasks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), index=True, nullable=False),
        sa.Column('memory_id', sa.String(36), sa.ForeignKey('memories.id', ondelete='CASCADE'), index=True),
        sa.Column('kind', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), index=True, nullable=False),
        sa.Column('attempts', sa.Integer, default=0),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('available_at', sa.DateTime, index=True, nullable=False),
        sa.Column('claimed_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('memory_id', 'kind', name='uq_processing_task_memory_kind'),
    )
    op.create_index('ix_processing_tasks_due', 'processing_tasks', ['status', 'available_at'])


def downgrade() -> None:
    op.drop_table('processing_tasks')
    op.drop_table('retrieval_logs')
    op.drop_table('event_embeddings')
    op.drop_table('memory_embeddings')
    op.drop_table('memory_event_links')
    op.drop_table('events')
    op.drop_table('memory_people')
    op.drop_table('memory_tags')
    op.drop_table('memory_context')
    op.drop_table('memories')
    op.drop_table('users')
    # Note: We don't drop the vector extension as other things might use it
