"""Create users, cash sessions, movements, sales and audit tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── users ─────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('role', sa.String(30), nullable=False, server_default='seller'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── cash_sessions ─────────────────────────────────
    op.create_table(
        'cash_sessions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('display_id', sa.Integer(), nullable=False, unique=True),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column(
            'status',
            sa.Enum('aberto', 'fechado', name='cash_session_status'),
            nullable=False,
            server_default='aberto',
        ),
        sa.Column('opening_balance', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('deposits', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('withdrawals', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('transactions_value', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('cash_in_register', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('open_time', sa.DateTime(), nullable=False),
        sa.Column('close_time', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "(status = 'aberto' AND close_time IS NULL) OR (status = 'fechado' AND close_time IS NOT NULL)",
            name='ck_cash_sessions_close_time',
        ),
    )
    op.create_index('ix_cash_sessions_user_id', 'cash_sessions', ['user_id'])
    op.create_index('ix_cash_sessions_status', 'cash_sessions', ['status'])
    op.create_index('ix_cash_sessions_open_time', 'cash_sessions', ['open_time'])
    # Un único caixa aberto por operador
    op.create_index(
        'uq_cash_sessions_open_per_user',
        'cash_sessions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'aberto'"),
        sqlite_where=sa.text("status = 'aberto'"),
    )

    # ── cash_movements ────────────────────────────────
    op.create_table(
        'cash_movements',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'session_id', UUID(as_uuid=True),
            sa.ForeignKey('cash_sessions.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('type', sa.Enum('suprimento', 'sangria', name='cash_movement_type'), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_cash_movements_amount_positive'),
    )
    op.create_index('ix_cash_movements_session_id', 'cash_movements', ['session_id'])
    op.create_index('ix_cash_movements_type', 'cash_movements', ['type'])
    op.create_index('ix_cash_movements_timestamp', 'cash_movements', ['timestamp'])

    # ── sales ─────────────────────────────────────────
    op.create_table(
        'sales',
        sa.Column('id', sa.String(30), primary_key=True),
        sa.Column('sequence', sa.Integer(), nullable=False, unique=True),
        sa.Column(
            'cash_session_id', UUID(as_uuid=True),
            sa.ForeignKey('cash_sessions.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('cash_session_display_id', sa.Integer(), nullable=True),
        sa.Column('salesperson_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column(
            'status',
            sa.Enum('Finalizada', 'Pendente', 'Cancelada', 'Editada', 'Rascunho', name='sale_status'),
            nullable=False,
            server_default='Finalizada',
        ),
        sa.Column('origin', sa.Enum('PDV', 'Vendas', name='sale_origin'), nullable=False, server_default='Vendas'),
        sa.Column('total', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_sales_cash_session_id', 'sales', ['cash_session_id'])
    op.create_index('ix_sales_salesperson_id', 'sales', ['salesperson_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_date', 'sales', ['date'])

    op.create_table(
        'sale_payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('sale_id', sa.String(30), sa.ForeignKey('sales.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('method', sa.String(50), nullable=False),
        sa.Column('value', sa.Numeric(15, 2), nullable=False),
        sa.Column('fees', sa.Numeric(15, 2), nullable=True),
    )
    op.create_index('ix_sale_payments_sale_id', 'sale_payments', ['sale_id'])

    # ── cash_audit_logs ───────────────────────────────
    op.create_table(
        'cash_audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'action',
            sa.Enum(
                'cash_open', 'cash_close', 'cash_reopen', 'cash_supply', 'cash_withdrawal',
                'cash_repair', 'sale_create', 'sale_update', 'sale_cancel',
                name='cash_audit_action',
            ),
            nullable=False,
        ),
        sa.Column(
            'session_id', UUID(as_uuid=True),
            sa.ForeignKey('cash_sessions.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('sale_id', sa.String(30), sa.ForeignKey('sales.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_cash_audit_logs_action', 'cash_audit_logs', ['action'])
    op.create_index('ix_cash_audit_logs_session_id', 'cash_audit_logs', ['session_id'])
    op.create_index('ix_cash_audit_logs_sale_id', 'cash_audit_logs', ['sale_id'])
    op.create_index('ix_cash_audit_logs_created_at', 'cash_audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('cash_audit_logs')
    op.drop_table('sale_payments')
    op.drop_table('sales')
    op.drop_table('cash_movements')
    op.drop_index('uq_cash_sessions_open_per_user', table_name='cash_sessions')
    op.drop_table('cash_sessions')
    op.drop_table('users')

    # Limpiar enums (sólo PostgreSQL los crea como tipos)
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS cash_audit_action")
        op.execute("DROP TYPE IF EXISTS sale_origin")
        op.execute("DROP TYPE IF EXISTS sale_status")
        op.execute("DROP TYPE IF EXISTS cash_movement_type")
        op.execute("DROP TYPE IF EXISTS cash_session_status")
