"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-01-15 00:00:00.000000

Creates the CaseTrack tables: users, files, movements, deadlines, alerts
and attachments. Mirrors casetrack/models.py.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'user_role': ('Clerk', 'Advocate', 'Partner'),
    'file_status': ('Active', 'Dormant', 'Closed'),
    'movement_purpose': (
        'Drafting', 'Filing', 'Review', 'Court Mention', 'Court Hearing',
        'Client Meeting', 'Partner Review', 'Senior Review', 'Storage/Archive',
        'Return to Custodian', 'Other',
    ),
    'deadline_type': (
        'Court Mention', 'Court Hearing', 'Filing Deadline', 'Motion Response',
        'Discovery', 'Appeal Deadline', 'Limitation Period', 'Client Deadline',
        'Internal Deadline', 'Other',
    ),
    'deadline_status': ('Pending', 'Completed'),
    'alert_type': (
        'deadline_upcoming', 'deadline_overdue', 'file_overdue_at_custodian',
        'movement_unacknowledged', 'missing_digital_link', 'escalation',
        'file_location_warning', 'file_request',
    ),
    'alert_severity': ('info', 'warning', 'critical'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Create enums
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name, create_type=True).create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('user_id', sa.String(50), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('role', _enum('user_role'), nullable=False),
        sa.Column('email', sa.String(200)),
        sa.Column('department', sa.String(200)),
        sa.Column('active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'files',
        sa.Column('file_id', sa.String(20), primary_key=True),
        sa.Column('case_name', sa.String(500), nullable=False),
        sa.Column('client_name', sa.String(500), nullable=False),
        sa.Column('practice_area', sa.String(100), nullable=False, server_default='General'),
        sa.Column('court_jurisdiction', sa.String(200)),
        sa.Column('status', _enum('file_status'), nullable=False, server_default='Active'),
        sa.Column('current_custodian_id', sa.String(50),
                  sa.ForeignKey('users.user_id'), nullable=False),
        sa.Column('assigned_advocates', sa.JSON, nullable=False,
                  server_default=sa.text("'[]'::json")),
        sa.Column('notes', sa.Text),
        sa.Column('date_opened', sa.DateTime(timezone=True), nullable=False),
        sa.Column('date_closed', sa.DateTime(timezone=True)),
        sa.Column('created_by', sa.String(50)),
        *_timestamps(),
    )

    op.create_table(
        'movements',
        sa.Column('movement_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('file_id', sa.String(20), sa.ForeignKey('files.file_id'), nullable=False),
        sa.Column('from_custodian_id', sa.String(50), sa.ForeignKey('users.user_id')),
        sa.Column('to_custodian_id', sa.String(50), sa.ForeignKey('users.user_id'), nullable=False),
        sa.Column('purpose', _enum('movement_purpose'), nullable=False),
        sa.Column('notes', sa.Text, nullable=False, server_default=''),
        sa.Column('logged_by', sa.String(50)),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('acknowledged', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True)),
        sa.Column('acknowledged_by', sa.String(50)),
    )

    op.create_table(
        'deadlines',
        sa.Column('deadline_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('file_id', sa.String(20), sa.ForeignKey('files.file_id'), nullable=False),
        sa.Column('deadline_type', _enum('deadline_type'), nullable=False, server_default='Other'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('status', _enum('deadline_status'), nullable=False, server_default='Pending'),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('completed_by', sa.String(50)),
        sa.Column('created_by', sa.String(50)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
    )

    op.create_table(
        'alerts',
        sa.Column('alert_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('alert_type', _enum('alert_type'), nullable=False),
        sa.Column('severity', _enum('alert_severity'), nullable=False),
        sa.Column('file_id', sa.String(20), sa.ForeignKey('files.file_id')),
        sa.Column('deadline_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('deadlines.deadline_id')),
        sa.Column('target_user_id', sa.String(50)),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
        sa.Column('read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True)),
        sa.Column('dismissed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('dismissed_at', sa.DateTime(timezone=True)),
        sa.Column('dedup_key', sa.String(200), nullable=False),
    )

    op.create_table(
        'attachments',
        sa.Column('attachment_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('file_id', sa.String(20), sa.ForeignKey('files.file_id'), nullable=False),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=False,
                  server_default='application/octet-stream'),
        sa.Column('size_bytes', sa.Integer, nullable=False, server_default='0'),
        sa.Column('uploaded_by', sa.String(50), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
    )

    # Create indexes
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_files_status', 'files', ['status'])
    op.create_index('ix_files_current_custodian_id', 'files', ['current_custodian_id'])

    op.create_index('ix_movements_file_id', 'movements', ['file_id'])
    op.create_index('ix_movements_to_custodian_id', 'movements', ['to_custodian_id'])
    op.create_index('ix_movement_file_timestamp', 'movements', ['file_id', 'timestamp'])
    op.create_index('ix_movement_pending', 'movements', ['to_custodian_id', 'acknowledged'])

    op.create_index('ix_deadlines_file_id', 'deadlines', ['file_id'])
    op.create_index('ix_deadline_status_due', 'deadlines', ['status', 'due_date'])

    op.create_index('ix_alerts_alert_type', 'alerts', ['alert_type'])
    op.create_index('ix_alerts_file_id', 'alerts', ['file_id'])
    op.create_index('ix_alerts_target_user_id', 'alerts', ['target_user_id'])
    op.create_index('ix_alert_active_created', 'alerts', ['dismissed', 'created_at'])
    # At most one active alert per (type, file, target)
    op.create_index('uq_alert_active_dedup', 'alerts', ['dedup_key'], unique=True,
                    postgresql_where=sa.text('NOT dismissed'))

    op.create_index('ix_attachments_file_id', 'attachments', ['file_id'])


def downgrade() -> None:
    """Drop all tables and enum types."""
    for table in ('attachments', 'alerts', 'deadlines', 'movements', 'files', 'users'):
        op.drop_table(table)

    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
