"""WhatsApp Session Engine Tables

Revision ID: 0001_whatsapp_sessions
Revises:
Create Date: 2026-10-19

Creates tables owned by the WhatsApp session engine:
- whatsapp_accounts: Linked WhatsApp identities and their connection status
- whatsapp_conversations: One thread per account + contact/group
- whatsapp_messages: Received, sent and backfilled messages
"""

from alembic import op
import sqlalchemy as sa

revision = '0001_whatsapp_sessions'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # =========================================================================
    # WHATSAPP ACCOUNTS
    # =========================================================================

    op.create_table(
        'whatsapp_accounts',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('phone_number', sa.String(30), nullable=True),
        sa.Column('status', sa.String(20), server_default='DISCONNECTED', nullable=False),
        sa.Column('qr_code', sa.Text(), nullable=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('last_heartbeat', sa.DateTime(timezone=True), nullable=True),
        sa.Column('session_data', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_whatsapp_accounts_user_id', 'whatsapp_accounts', ['user_id'])
    op.create_index('idx_whatsapp_accounts_status', 'whatsapp_accounts', ['status'])

    # =========================================================================
    # WHATSAPP CONVERSATIONS
    # =========================================================================

    op.create_table(
        'whatsapp_conversations',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('account_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('contact_number', sa.String(100), nullable=False),
        sa.Column('contact_name', sa.String(255), nullable=True),
        sa.Column('profile_picture', sa.Text(), nullable=True),
        sa.Column('is_group', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unread_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='ACTIVE', nullable=False),
        sa.Column('assigned_user_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'contact_number', name='uq_whatsapp_conversations_account_contact'),
    )
    op.create_index(
        'idx_whatsapp_conversations_account_last_message',
        'whatsapp_conversations',
        ['account_id', 'last_message_at'],
    )

    # =========================================================================
    # WHATSAPP MESSAGES
    # =========================================================================

    op.create_table(
        'whatsapp_messages',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('account_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('conversation_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('whatsapp_id', sa.String(150), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('message_type', sa.String(20), server_default='TEXT', nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('from_number', sa.String(100), nullable=True),
        sa.Column('to_number', sa.String(100), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'whatsapp_id', name='uq_whatsapp_messages_account_provider_id'),
    )
    op.create_index('ix_whatsapp_messages_conversation_id', 'whatsapp_messages', ['conversation_id'])
    op.create_index(
        'idx_whatsapp_messages_conversation_timestamp',
        'whatsapp_messages',
        ['conversation_id', 'timestamp'],
    )


def downgrade():
    op.drop_table('whatsapp_messages')
    op.drop_table('whatsapp_conversations')
    op.drop_table('whatsapp_accounts')
