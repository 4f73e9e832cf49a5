"""Create users, chats, messages and invite code tables

Revision ID: 1f4c2a9d7e10
Revises:
Create Date: 2026-10-17 10:12:31.402118

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '1f4c2a9d7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Stored by member name, matching SQLAlchemyEnum(MessageType)
chat_message_type_enum = postgresql.ENUM(
    "TEXT", "IMAGE", "VIDEO", "AUDIO", "FILE", "SYSTEM", name="chatmessagetype", create_type=False
)


def upgrade() -> None:
    """Create the chat schema.

    Invite codes carry a partial unique index on ``code`` restricted to
    active rows, so a token can be reused once its previous holder is inactive.
    """
    chat_message_type_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('pic', sa.String(), nullable=True),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_seen', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'chats',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('chat_name', sa.String(length=100), nullable=False),
        sa.Column('is_group_chat', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('group_admin_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('max_members', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('latest_message_id', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_chats_id', 'chats', ['id'])
    op.create_index('ix_chats_expires_at', 'chats', ['expires_at'])

    op.create_table(
        'chat_members',
        sa.Column('chat_id', sa.String(), sa.ForeignKey('chats.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_chat_members_user_id', 'chat_members', ['user_id'])

    op.create_table(
        'messages',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('chat_id', sa.String(), sa.ForeignKey('chats.id'), nullable=False),
        sa.Column('sender_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('message_type', chat_message_type_enum, nullable=False, server_default='TEXT'),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('file_url', sa.String(), nullable=True),
        sa.Column('file_name', sa.String(), nullable=True),
        sa.Column('file_type', sa.String(), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_messages_chat_created', 'messages', ['chat_id', 'created_at'])

    op.create_table(
        'message_reads',
        sa.Column('message_id', sa.String(), sa.ForeignKey('messages.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'invite_codes',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('code', sa.String(length=8), nullable=False),
        sa.Column('chat_id', sa.String(), sa.ForeignKey('chats.id'), nullable=False),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_invite_codes_id', 'invite_codes', ['id'])
    op.create_index('ix_invite_codes_code', 'invite_codes', ['code'])
    op.create_index('ix_invite_codes_chat_id', 'invite_codes', ['chat_id'])
    op.create_index('ix_invite_codes_expires_at', 'invite_codes', ['expires_at'])
    op.create_index(
        'uq_invite_codes_active_code',
        'invite_codes',
        ['code'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'invite_code_redemptions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column(
            'invite_code_id',
            sa.String(),
            sa.ForeignKey('invite_codes.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_invite_code_redemptions_invite_code_id', 'invite_code_redemptions', ['invite_code_id'])


def downgrade() -> None:
    op.drop_table('invite_code_redemptions')
    op.drop_table('invite_codes')
    op.drop_table('message_reads')
    op.drop_table('messages')
    op.drop_table('chat_members')
    op.drop_table('chats')
    op.drop_table('users')
    chat_message_type_enum.drop(op.get_bind(), checkfirst=True)
