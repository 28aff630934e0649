"""
WhatsApp Service Layer

Handlers for inbound and outbound messages and the conversation
synchronizer. Import the modules directly; the lifecycle controller and the
outbound handler depend on each other's packages.
"""
