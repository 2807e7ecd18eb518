"""Security ledger, investigation cases and operator keys.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Ledger: login attempts
    op.create_table(
        'login_attempts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('device_info', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('failure_reason', sa.String(255), nullable=True),
        sa.Column('attempted_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_login_attempts_email', 'login_attempts', ['email'])
    op.create_index('ix_login_attempts_user_id', 'login_attempts', ['user_id'])
    op.create_index('ix_login_attempts_tenant_id', 'login_attempts', ['tenant_id'])
    op.create_index('ix_login_attempts_success', 'login_attempts', ['success'])
    op.create_index('ix_login_attempts_attempted_at', 'login_attempts', ['attempted_at'])
    op.create_index('ix_login_attempts_tenant_attempted', 'login_attempts', ['tenant_id', 'attempted_at'])

    # Ledger: sessions
    op.create_table(
        'user_sessions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('device_info', sa.JSON(), nullable=False),
        sa.Column('login_at', sa.DateTime(), nullable=False),
        sa.Column('logout_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])
    op.create_index('ix_user_sessions_tenant_id', 'user_sessions', ['tenant_id'])
    op.create_index('ix_user_sessions_login_at', 'user_sessions', ['login_at'])
    op.create_index('ix_user_sessions_expires_at', 'user_sessions', ['expires_at'])
    op.create_index('ix_user_sessions_is_active', 'user_sessions', ['is_active'])
    op.create_index('ix_user_sessions_user_active', 'user_sessions', ['user_id', 'is_active'])

    # Ledger: password changes
    op.create_table(
        'password_change_history',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('changed_by', sa.String(64), nullable=True),
        sa.Column('change_type', sa.String(32), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('device_info', sa.JSON(), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_password_change_history_user_id', 'password_change_history', ['user_id'])
    op.create_index('ix_password_change_history_tenant_id', 'password_change_history', ['tenant_id'])
    op.create_index('ix_password_change_history_change_type', 'password_change_history', ['change_type'])
    op.create_index('ix_password_change_history_changed_at', 'password_change_history', ['changed_at'])

    # Ledger: audit log
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=True),
        sa.Column('resource_id', sa.String(64), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('severity', sa.String(16), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('request_id', sa.String(64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_tenant_id', 'audit_logs', ['tenant_id'])
    op.create_index('ix_audit_logs_severity', 'audit_logs', ['severity'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_logs_user_created', 'audit_logs', ['user_id', 'created_at'])

    # Investigation cases
    op.create_table(
        'investigation_cases',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('case_number', sa.String(64), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('case_type', sa.String(20), nullable=False),
        sa.Column('related_user_id', sa.String(64), nullable=True),
        sa.Column('related_tenant_id', sa.String(64), nullable=True),
        sa.Column('assigned_to', sa.String(64), nullable=True),
        sa.Column('created_by', sa.String(64), nullable=False),
        sa.Column('resolved_by', sa.String(64), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('investigated_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_investigation_cases_case_number', 'investigation_cases', ['case_number'], unique=True)
    op.create_index('ix_investigation_cases_status', 'investigation_cases', ['status'])
    op.create_index('ix_investigation_cases_priority', 'investigation_cases', ['priority'])
    op.create_index('ix_investigation_cases_case_type', 'investigation_cases', ['case_type'])
    op.create_index('ix_investigation_cases_related_user_id', 'investigation_cases', ['related_user_id'])
    op.create_index('ix_investigation_cases_related_tenant_id', 'investigation_cases', ['related_tenant_id'])
    op.create_index('ix_investigation_cases_assigned_to', 'investigation_cases', ['assigned_to'])
    op.create_index('ix_investigation_cases_opened_at', 'investigation_cases', ['opened_at'])

    op.create_table(
        'investigation_case_notes',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('case_id', sa.String(36), nullable=False),
        sa.Column('note', sa.Text(), nullable=False),
        sa.Column('note_type', sa.String(20), nullable=False),
        sa.Column('created_by', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['investigation_cases.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_investigation_case_notes_case_id', 'investigation_case_notes', ['case_id'])
    op.create_index('ix_investigation_case_notes_created_at', 'investigation_case_notes', ['created_at'])

    op.create_table(
        'investigation_case_evidence',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('case_id', sa.String(36), nullable=False),
        sa.Column('evidence_type', sa.String(32), nullable=False),
        sa.Column('evidence_id', sa.String(255), nullable=False),
        sa.Column('evidence_source', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('added_by', sa.String(64), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['investigation_cases.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('case_id', 'evidence_type', 'evidence_id', name='uq_case_evidence_ref')
    )
    op.create_index('ix_investigation_case_evidence_case_id', 'investigation_case_evidence', ['case_id'])
    op.create_index('ix_investigation_case_evidence_added_at', 'investigation_case_evidence', ['added_at'])

    op.create_table(
        'case_number_sequences',
        sa.Column('name', sa.String(32), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('name')
    )
    # Seed the counter so concurrent first cases lock an existing row
    op.execute(
        "INSERT INTO case_number_sequences (name, last_value, updated_at) "
        "VALUES ('investigation_case', 0, CURRENT_TIMESTAMP)"
    )

    op.create_table(
        'evidence_files',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('sha256', sa.String(64), nullable=True),
        sa.Column('storage_ref', sa.String(512), nullable=False),
        sa.Column('uploaded_by', sa.String(64), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Operator keys
    op.create_table(
        'operator_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(8), nullable=False),
        sa.Column('digest', sa.String(64), nullable=False),
        sa.Column('label', sa.String(255), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_operator_keys_id', 'operator_keys', ['id'])
    op.create_index('ix_operator_keys_prefix', 'operator_keys', ['prefix'])
    op.create_index('ix_operator_keys_digest', 'operator_keys', ['digest'], unique=True)
    op.create_index('ix_operator_keys_user_id', 'operator_keys', ['user_id'])
    op.create_index('ix_operator_keys_tenant_id', 'operator_keys', ['tenant_id'])


def downgrade() -> None:
    op.drop_table('operator_keys')
    op.drop_table('evidence_files')
    op.drop_table('case_number_sequences')
    op.drop_table('investigation_case_evidence')
    op.drop_table('investigation_case_notes')
    op.drop_table('investigation_cases')
    op.drop_table('audit_logs')
    op.drop_table('password_change_history')
    op.drop_table('user_sessions')
    op.drop_table('login_attempts')
