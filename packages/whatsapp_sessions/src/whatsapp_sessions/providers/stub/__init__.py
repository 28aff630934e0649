"""Stub session client for development and tests."""

from whatsapp_sessions.providers.stub.client import StubSessionClient

__all__ = ["StubSessionClient"]
