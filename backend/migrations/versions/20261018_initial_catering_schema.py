"""initial catering workflow schema

Revision ID: c4t3r1n90001
Revises:
Create Date: 2026-10-18 00:00:00.000000

This migration creates the complete catering workflow schema:
- departments / users: identity mirror and request ownership
- service_requests: request lifecycle (DRAFT .. CLOSED) with version_id
- invoices / payments: billing and the payment ledger
- attachments: file metadata with exactly one owner
- notifications: in-app inbox
- document_sequences: REQ/INV/PAY numbering per year
- audit_logs: append-only mutation trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c4t3r1n90001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables from scratch.

    WHY: version_id on service_requests and invoices backs the optimistic
    locking that keeps two concurrent transitions from both succeeding.
    """

    # ============================================================================
    # departments / users
    # ============================================================================
    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('cost_centre', sa.String(length=32), nullable=True),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_departments_name'),
        sa.UniqueConstraint('code', name='uq_departments_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_departments_approver_id', 'departments', ['approver_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=30), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='REQUESTER'),
        sa.Column('department_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id', name='uq_users_external_id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_external_id', 'users', ['external_id'])
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_department_id', 'users', ['department_id'])

    with op.batch_alter_table('departments') as batch_op:
        batch_op.create_foreign_key('fk_departments_approver_id_users', 'users', ['approver_id'], ['id'])

    # ============================================================================
    # service_requests: lifecycle aggregate
    # ============================================================================
    op.create_table(
        'service_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_no', sa.String(length=32), nullable=False),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=False),
        sa.Column('event_name', sa.String(length=255), nullable=False),
        sa.Column('event_date', sa.Date(), nullable=False),
        sa.Column('venue', sa.String(length=255), nullable=False),
        sa.Column('attendees', sa.Integer(), nullable=False),
        sa.Column('service_type', sa.String(length=64), nullable=False, server_default='CATERING'),
        sa.Column('estimate_amount_cents', sa.Integer(), nullable=False),
        sa.Column('funding_source', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('contact_phone', sa.String(length=30), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='DRAFT'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('approval_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_comments', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('revision_comments', sa.Text(), nullable=True),
        sa.Column('fulfilled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['requester_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id'], ),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['fulfilled_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_no', name='uq_service_requests_request_no'),
        sa.CheckConstraint('attendees >= 1', name='ck_service_requests_attendees'),
        sa.CheckConstraint('estimate_amount_cents >= 0', name='ck_service_requests_estimate'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_service_requests_requester_id', 'service_requests', ['requester_id'])
    op.create_index('ix_service_requests_department_id', 'service_requests', ['department_id'])
    op.create_index('ix_service_requests_status', 'service_requests', ['status'])
    op.create_index('ix_service_requests_approver_id', 'service_requests', ['approver_id'])
    op.create_index('ix_service_requests_status_created', 'service_requests', ['status', 'created_at'])

    # ============================================================================
    # invoices / payments
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_no', sa.String(length=32), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('gross_amount_cents', sa.Integer(), nullable=False),
        sa.Column('tax_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount_cents', sa.Integer(), nullable=False),
        sa.Column('paid_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='SUBMITTED'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['request_id'], ['service_requests.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_no', name='uq_invoices_invoice_no'),
        sa.CheckConstraint('net_amount_cents = gross_amount_cents + tax_amount_cents', name='ck_invoices_net'),
        sa.CheckConstraint('paid_amount_cents <= net_amount_cents', name='ck_invoices_paid_le_net'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_request_id', 'invoices', ['request_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_status_created', 'invoices', ['status', 'created_at'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_no', sa.String(length=32), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PROCESSED'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_no', name='uq_payments_payment_no'),
        sa.CheckConstraint('amount_cents > 0', name='ck_payments_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    # ============================================================================
    # attachments: exactly one owner
    # ============================================================================
    op.create_table(
        'attachments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_type', sa.String(length=128), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('file_url', sa.String(length=1024), nullable=False),
        sa.Column('uploaded_by_user_id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['uploaded_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['request_id'], ['service_requests.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "(CASE WHEN request_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN invoice_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN payment_id IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name='ck_attachments_single_owner'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_attachments_request_id', 'attachments', ['request_id'])
    op.create_index('ix_attachments_invoice_id', 'attachments', ['invoice_id'])
    op.create_index('ix_attachments_payment_id', 'attachments', ['payment_id'])

    # ============================================================================
    # notifications
    # ============================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['request_id'], ['service_requests.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])

    # ============================================================================
    # document_sequences / audit_logs
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'year', name='uq_doc_sequences_type_year'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('audit_logs')
    op.drop_table('document_sequences')
    op.drop_table('notifications')
    op.drop_table('attachments')
    op.drop_table('payments')
    op.drop_table('invoices')
    op.drop_table('service_requests')
    with op.batch_alter_table('departments') as batch_op:
        batch_op.drop_constraint('fk_departments_approver_id_users', type_='foreignkey')
    op.drop_table('users')
    op.drop_table('departments')
