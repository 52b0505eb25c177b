"""Initial billing schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

WHAT: Creates the invoice, line item, payment, invoice number sequence,
delete log and audit log tables.

WHY: Invoices own their line items and payments (ON DELETE CASCADE). The
delete log has no foreign key to invoices because it outlives them.
Invoice numbers are indexed but not unique: a restored invoice reuses the
number of the deleted one.

HOW: Enums are stored as VARCHAR(32) (non-native) so new values need no
type migration. invoices.version backs optimistic locking.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, server_default='0')


def upgrade() -> None:
    """Create all billing tables."""
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'invoice_number',
            sa.String(50),
            nullable=False,
            comment='Human-readable invoice number (e.g., INV-202401-001)',
        ),
        sa.Column('status', sa.String(32), nullable=False, server_default='draft'),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('client_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('client_email', sa.String(255), nullable=False, server_default=''),
        sa.Column('client_phone', sa.String(50), nullable=True),
        sa.Column('client_address', sa.String(255), nullable=True),
        sa.Column('client_city', sa.String(100), nullable=True),
        sa.Column('client_state', sa.String(100), nullable=True),
        sa.Column('client_zip', sa.String(20), nullable=True),
        sa.Column('client_country', sa.String(100), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        _money('subtotal'),
        _money('sales_tax'),
        _money('shipping_cost'),
        _money('total'),
        _money('amount_paid'),
        _money('outstanding_balance'),
        sa.Column('tax_mode', sa.String(32), nullable=False, server_default='auto'),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        sa.Column('dispute_notes', sa.Text(), nullable=True),
        sa.Column('dispute_status', sa.String(32), nullable=True),
        sa.Column('dispute_updated_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column(
            'sent_at',
            sa.DateTime(),
            nullable=True,
            comment='First successful delivery to the client',
        ),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_due_date', 'invoices', ['due_date'])
    op.create_index('ix_invoices_created_at', 'invoices', ['created_at'])

    op.create_table(
        'invoice_line_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'invoice_id',
            sa.Integer(),
            sa.ForeignKey('invoices.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price', sa.Numeric(12, 4), nullable=False, server_default='0'),
        _money('amount'),
    )
    op.create_index('ix_invoice_line_items_invoice_id', 'invoice_line_items', ['invoice_id'])

    op.create_table(
        'invoice_payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'invoice_id',
            sa.Integer(),
            sa.ForeignKey('invoices.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('method', sa.String(32), nullable=False, server_default='Other'),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_invoice_payments_amount_positive'),
    )
    op.create_index('ix_invoice_payments_invoice_id', 'invoice_payments', ['invoice_id'])
    op.create_index('ix_invoice_payments_payment_date', 'invoice_payments', ['payment_date'])

    op.create_table(
        'invoice_number_sequences',
        sa.Column('period', sa.String(6), primary_key=True, comment='YYYYMM'),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'invoice_delete_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('deleted_by', sa.String(255), nullable=False),
        sa.Column('deleted_by_name', sa.String(255), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('restored', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('restored_at', sa.DateTime(), nullable=True),
        sa.Column('restored_invoice_id', sa.Integer(), nullable=True),
    )
    op.create_index('ix_invoice_delete_logs_id', 'invoice_delete_logs', ['id'])
    op.create_index('ix_invoice_delete_logs_invoice_id', 'invoice_delete_logs', ['invoice_id'])
    op.create_index(
        'ix_invoice_delete_logs_invoice_number', 'invoice_delete_logs', ['invoice_number']
    )
    op.create_index('ix_invoice_delete_logs_deleted_at', 'invoice_delete_logs', ['deleted_at'])
    op.create_index('ix_invoice_delete_logs_restored', 'invoice_delete_logs', ['restored'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_id', sa.String(255), nullable=True),
        sa.Column('action', sa.String(32), nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_ip_address', 'audit_logs', ['ip_address'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    """Drop all billing tables."""
    op.drop_table('audit_logs')
    op.drop_table('invoice_delete_logs')
    op.drop_table('invoice_number_sequences')
    op.drop_table('invoice_payments')
    op.drop_table('invoice_line_items')
    op.drop_table('invoices')
