"""initial automation schema: recipes, rules, audit logs, bulk jobs, usage

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


JSON_COL = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(updated: bool = True) -> list:
    cols = [sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False)]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        'recipes',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(16), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('trigger_event', sa.String(64), nullable=False),
        sa.Column('trigger_resource', sa.String(32), nullable=False),
        sa.Column('conditions', JSON_COL, nullable=False),
        sa.Column('actions', JSON_COL, nullable=False),
        sa.Column('execution_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_executed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("category IN ('customer','order','product','inventory')", name='ck_recipes_category'),
        sa.PrimaryKeyConstraint('id', name='pk_recipes'),
    )
    op.create_index('ix_recipes_shop_enabled_event', 'recipes', ['shop', 'enabled', 'trigger_event'])
    op.create_index('ix_recipes_shop_category', 'recipes', ['shop', 'category'])

    op.create_table(
        'tagging_rules',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(16), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('condition_logic', sa.String(3), nullable=False, server_default='AND'),
        sa.Column('conditions', JSON_COL, nullable=False),
        sa.Column('tags', JSON_COL, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("condition_logic IN ('AND','OR')", name='ck_tagging_rules_condition_logic'),
        sa.PrimaryKeyConstraint('id', name='pk_tagging_rules'),
    )
    op.create_index('ix_tagging_rules_shop_type_enabled', 'tagging_rules', ['shop', 'resource_type', 'is_enabled'])

    op.create_table(
        'metafield_rules',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('resource_type', sa.String(16), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('condition_logic', sa.String(3), nullable=False, server_default='AND'),
        sa.Column('conditions', JSON_COL, nullable=False),
        sa.Column('namespace', sa.String(64), nullable=False),
        sa.Column('key', sa.String(64), nullable=False),
        sa.Column('value', sa.String(2000), nullable=False),
        sa.Column('value_type', sa.String(64), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("condition_logic IN ('AND','OR')", name='ck_metafield_rules_condition_logic'),
        sa.PrimaryKeyConstraint('id', name='pk_metafield_rules'),
        sa.UniqueConstraint('shop', 'resource_type', 'namespace', 'key', name='uq_metafield_rules_shop_type_ns_key'),
    )
    op.create_index('ix_metafield_rules_shop_type_enabled', 'metafield_rules', ['shop', 'resource_type', 'is_enabled'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('job_id', sa.String(128), nullable=True),
        sa.Column('resource_type', sa.String(32), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=False),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('category', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_activity_logs'),
        sa.UniqueConstraint('shop', 'job_id', name='uq_activity_logs_shop_job_id'),
    )
    op.create_index('ix_activity_logs_shop_created', 'activity_logs', ['shop', 'created_at'])
    op.create_index('ix_activity_logs_shop_category', 'activity_logs', ['shop', 'category'])

    op.create_table(
        'activity_log_details',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('log_id', sa.String(32), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['log_id'], ['activity_logs.id'], ondelete='CASCADE',
                                name='fk_activity_log_details_log_id_activity_logs'),
        sa.PrimaryKeyConstraint('id', name='pk_activity_log_details'),
    )
    op.create_index('ix_activity_log_details_log_id', 'activity_log_details', ['log_id'])

    op.create_table(
        'automation_logs',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('log_type', sa.String(32), nullable=False),
        sa.Column('severity', sa.String(16), nullable=False),
        sa.Column('recipe_id', sa.String(32), nullable=True),
        sa.Column('recipe_title', sa.String(100), nullable=True),
        sa.Column('resource_type', sa.String(32), nullable=True),
        sa.Column('resource_id', sa.String(255), nullable=True),
        sa.Column('resource_title', sa.String(255), nullable=True),
        sa.Column('action', JSON_COL, nullable=True),
        sa.Column('message', sa.String(500), nullable=False),
        sa.Column('metadata', JSON_COL, nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('delivery_id', sa.String(64), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id', name='pk_automation_logs'),
    )
    op.create_index('ix_automation_logs_shop_created', 'automation_logs', ['shop', 'created_at'])
    op.create_index('ix_automation_logs_shop_recipe', 'automation_logs', ['shop', 'recipe_id', 'created_at'])
    op.create_index('ix_automation_logs_created', 'automation_logs', ['created_at'])
    op.create_index('ix_automation_logs_shop_delivery', 'automation_logs', ['shop', 'delivery_id'])

    op.create_table(
        'backups',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('job_id', sa.String(128), nullable=False),
        sa.Column('resource_type', sa.String(32), nullable=False),
        sa.Column('items', JSON_COL, nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id', name='pk_backups'),
        sa.UniqueConstraint('shop', 'job_id', 'resource_type', name='uq_backups_shop_job_type'),
    )
    op.create_index('ix_backups_created', 'backups', ['created_at'])

    op.create_table(
        'usage',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('operation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_operation', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_usage'),
        sa.UniqueConstraint('shop', 'month', name='uq_usage_shop_month'),
    )

    op.create_table(
        'job_metrics',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('queue', sa.String(32), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('total_jobs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_jobs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_jobs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_duration_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_duration_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('success_rate', sa.Float(), nullable=False, server_default='0'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id', name='pk_job_metrics'),
        sa.UniqueConstraint('shop', 'queue', 'day', name='uq_job_metrics_shop_queue_day'),
    )
    op.create_index('ix_job_metrics_day', 'job_metrics', ['day'])

    op.create_table(
        'bulk_jobs',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('job_id', sa.String(128), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('queue', sa.String(32), nullable=False),
        sa.Column('step', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('state', JSON_COL, nullable=False),
        sa.Column('current_operation_id', sa.String(255), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_bulk_jobs'),
        sa.UniqueConstraint('job_id', name='uq_bulk_jobs_job_id'),
    )
    op.create_index('ix_bulk_jobs_operation', 'bulk_jobs', ['current_operation_id'])
    op.create_index('ix_bulk_jobs_shop_status', 'bulk_jobs', ['shop', 'status'])

    op.create_table(
        'shop_installations',
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('access_token', sa.String(255), nullable=False),
        sa.Column('scope', sa.String(1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('shop', name='pk_shop_installations'),
    )


def downgrade() -> None:
    op.drop_table('shop_installations')
    op.drop_index('ix_bulk_jobs_shop_status', table_name='bulk_jobs')
    op.drop_index('ix_bulk_jobs_operation', table_name='bulk_jobs')
    op.drop_table('bulk_jobs')
    op.drop_index('ix_job_metrics_day', table_name='job_metrics')
    op.drop_table('job_metrics')
    op.drop_table('usage')
    op.drop_index('ix_backups_created', table_name='backups')
    op.drop_table('backups')
    op.drop_index('ix_automation_logs_created', table_name='automation_logs')
    op.drop_index('ix_automation_logs_shop_recipe', table_name='automation_logs')
    op.drop_index('ix_automation_logs_shop_created', table_name='automation_logs')
    op.drop_table('automation_logs')
    op.drop_index('ix_activity_log_details_log_id', table_name='activity_log_details')
    op.drop_table('activity_log_details')
    op.drop_index('ix_activity_logs_shop_category', table_name='activity_logs')
    op.drop_index('ix_activity_logs_shop_created', table_name='activity_logs')
    op.drop_table('activity_logs')
    op.drop_index('ix_metafield_rules_shop_type_enabled', table_name='metafield_rules')
    op.drop_table('metafield_rules')
    op.drop_index('ix_tagging_rules_shop_type_enabled', table_name='tagging_rules')
    op.drop_table('tagging_rules')
    op.drop_index('ix_recipes_shop_category', table_name='recipes')
    op.drop_index('ix_recipes_shop_enabled_event', table_name='recipes')
    op.drop_table('recipes')
