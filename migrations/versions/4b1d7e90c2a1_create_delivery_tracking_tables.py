"""create_delivery_tracking_tables

Revision ID: 4b1d7e90c2a1
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4b1d7e90c2a1'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create notification, message, timeline and preference tables."""

    # --- notifications ---
    op.create_table('notifications',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('type', sa.String(length=100), nullable=False),
        sa.Column('importance', sa.String(length=20), nullable=False,
                  server_default='normal'),
        sa.Column('status', sa.String(length=20), nullable=False,
                  server_default='draft'),
        sa.Column('direction', sa.String(length=20), nullable=False,
                  server_default='draft'),
        sa.Column('subject', sa.String(length=500), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('sender', sa.String(length=255), nullable=True),
        sa.Column('channels', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('recipients', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('context', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_status', 'notifications', ['status'])

    # --- messages ---
    op.create_table('messages',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('notification_id', sa.UUID(), nullable=True),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False,
                  server_default='pending'),
        sa.Column('direction', sa.String(length=20), nullable=False,
                  server_default='outbound'),
        sa.Column('transport_name', sa.String(length=100), nullable=True),
        sa.Column('messenger_stamp_id', sa.String(length=255), nullable=True),
        sa.Column('content_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('schedule_override', sa.Boolean(), nullable=False,
                  server_default='false'),
        sa.Column('payload', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.ForeignKeyConstraint(['notification_id'], ['notifications.id'],
                                ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('messenger_stamp_id'),
    )
    op.create_index('ix_messages_notification_id', 'messages', ['notification_id'])
    op.create_index('ix_messages_status', 'messages', ['status'])
    op.create_index('ix_messages_fingerprint_created',
                    'messages', ['content_fingerprint', 'created_at'])

    # --- message_contents ---
    op.create_table('message_contents',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('message_id', sa.UUID(), nullable=False),
        sa.Column('subject', sa.String(length=500), nullable=True),
        sa.Column('body_text', sa.Text(), nullable=True),
        sa.Column('body_html', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id'),
    )

    # --- message_recipients ---
    op.create_table('message_recipients',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('message_id', sa.UUID(), nullable=False),
        sa.Column('address', sa.String(length=320), nullable=False),
        sa.Column('recipient_type', sa.String(length=10), nullable=False,
                  server_default='to'),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False,
                  server_default='pending'),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('clicked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('bounced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('open_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('click_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_message_recipients_message_id',
                    'message_recipients', ['message_id'])

    # --- message_events (append-only timeline) ---
    op.create_table('message_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('message_id', sa.UUID(), nullable=False),
        sa.Column('recipient_id', sa.UUID(), nullable=True),
        sa.Column('event_type', sa.String(length=20), nullable=False),
        sa.Column('event_data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('previous_status', sa.String(length=20), nullable=True),
        sa.Column('resulting_status', sa.String(length=20), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['recipient_id'], ['message_recipients.id'],
                                ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_message_events_timeline',
                    'message_events', ['message_id', 'occurred_at', 'id'])

    # --- channel_preferences ---
    op.create_table('channel_preferences',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('contact_id', sa.String(length=255), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('allow_notifications', sa.Boolean(), nullable=False,
                  server_default='true'),
        sa.Column('allow_transactional', sa.Boolean(), nullable=False,
                  server_default='true'),
        sa.Column('allow_marketing', sa.Boolean(), nullable=False,
                  server_default='false'),
        sa.Column('allow_promotional', sa.Boolean(), nullable=False,
                  server_default='false'),
        sa.Column('frequency', sa.String(length=20), nullable=False,
                  server_default='immediate'),
        sa.Column('minimum_priority', sa.String(length=20), nullable=False,
                  server_default='all'),
        sa.Column('quiet_hours', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('allowed_categories', postgresql.JSONB(), nullable=False,
                  server_default='[]'),
        sa.Column('blocked_categories', postgresql.JSONB(), nullable=False,
                  server_default='[]'),
        sa.Column('allowed_senders', postgresql.JSONB(), nullable=False,
                  server_default='[]'),
        sa.Column('blocked_senders', postgresql.JSONB(), nullable=False,
                  server_default='[]'),
        sa.Column('max_per_hour', sa.Integer(), nullable=True),
        sa.Column('max_per_day', sa.Integer(), nullable=True),
        sa.Column('max_per_week', sa.Integer(), nullable=True),
        sa.Column('messages_this_hour', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('messages_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('messages_this_week', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_opt_in_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_opt_out_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('opt_out_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contact_id', 'channel'),
    )
    op.create_index('ix_channel_preferences_contact_id',
                    'channel_preferences', ['contact_id'])


def downgrade() -> None:
    """Drop delivery tracking tables."""
    op.drop_index('ix_channel_preferences_contact_id', table_name='channel_preferences')
    op.drop_table('channel_preferences')
    op.drop_index('ix_message_events_timeline', table_name='message_events')
    op.drop_table('message_events')
    op.drop_index('ix_message_recipients_message_id', table_name='message_recipients')
    op.drop_table('message_recipients')
    op.drop_table('message_contents')
    op.drop_index('ix_messages_fingerprint_created', table_name='messages')
    op.drop_index('ix_messages_status', table_name='messages')
    op.drop_index('ix_messages_notification_id', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_notifications_status', table_name='notifications')
    op.drop_table('notifications')
