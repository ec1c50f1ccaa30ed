"""create projects, changelog entries, webhook queue and notification configs

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a7c1e2d3f4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('github_repo_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=500), nullable=False),
        sa.Column('webhook_secret', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_projects_github_repo_id'), 'projects', ['github_repo_id'], unique=False)
    op.create_index(op.f('ix_projects_slug'), 'projects', ['slug'], unique=False)

    op.create_table(
        'changelog_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('pr_number', sa.Integer(), nullable=False),
        sa.Column('pr_title', sa.String(length=1000), nullable=False),
        sa.Column('pr_body', sa.Text(), nullable=True),
        sa.Column('pr_url', sa.String(length=1000), nullable=False),
        sa.Column('pr_author', sa.String(length=255), nullable=False),
        sa.Column('pr_author_avatar', sa.String(length=1000), nullable=True),
        sa.Column('pr_merged_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('category', sa.String(length=20), nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('emoji', sa.String(length=16), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'pr_number', name='uq_changelog_entries_project_pr'),
        sa.CheckConstraint(
            "category IN ('feature', 'fix', 'improvement', 'breaking')",
            name='ck_changelog_entries_category',
        ),
    )
    op.create_index(op.f('ix_changelog_entries_project_id'), 'changelog_entries', ['project_id'], unique=False)
    op.create_index(op.f('ix_changelog_entries_category'), 'changelog_entries', ['category'], unique=False)
    op.create_index('ix_changelog_entries_project_merged', 'changelog_entries', ['project_id', 'pr_merged_at'], unique=False)

    op.create_table(
        'webhook_queue',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'failed', 'completed', 'dead')",
            name='ck_webhook_queue_status',
        ),
    )
    op.create_index('ix_webhook_queue_status', 'webhook_queue', ['status'], unique=False)
    op.create_index('ix_webhook_queue_status_next_retry', 'webhook_queue', ['status', 'next_retry_at'], unique=False)
    op.create_index(op.f('ix_webhook_queue_project_id'), 'webhook_queue', ['project_id'], unique=False)

    op.create_table(
        'notification_configs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('webhook_url', sa.String(length=1000), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('events', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("provider IN ('slack', 'discord')", name='ck_notification_configs_provider'),
    )
    op.create_index(op.f('ix_notification_configs_project_id'), 'notification_configs', ['project_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_notification_configs_project_id'), table_name='notification_configs')
    op.drop_table('notification_configs')
    op.drop_index(op.f('ix_webhook_queue_project_id'), table_name='webhook_queue')
    op.drop_index('ix_webhook_queue_status_next_retry', table_name='webhook_queue')
    op.drop_index('ix_webhook_queue_status', table_name='webhook_queue')
    op.drop_table('webhook_queue')
    op.drop_index('ix_changelog_entries_project_merged', table_name='changelog_entries')
    op.drop_index(op.f('ix_changelog_entries_category'), table_name='changelog_entries')
    op.drop_index(op.f('ix_changelog_entries_project_id'), table_name='changelog_entries')
    op.drop_table('changelog_entries')
    op.drop_index(op.f('ix_projects_slug'), table_name='projects')
    op.drop_index(op.f('ix_projects_github_repo_id'), table_name='projects')
    op.drop_table('projects')
