"""
Transport Module.

Responsibilities:
- Reconnecting websocket clients for remote moderation and transcription
- The websocket server those clients talk to
"""

from .client import ReconnectingClient, next_delay
from .remote import RemoteModerationClient, AudioTransportClient
from .server import GuardianServer, decode_blob
