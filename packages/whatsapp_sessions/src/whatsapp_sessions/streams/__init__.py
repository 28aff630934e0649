"""
WhatsApp Notification Streams

Redis Streams publishing for owner notifications.
"""

from whatsapp_sessions.streams.producer import NOTIFICATION_STREAM, WhatsAppNotifier

__all__ = ["NOTIFICATION_STREAM", "WhatsAppNotifier"]
