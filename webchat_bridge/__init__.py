"""
Discord web chat bridge.
Mirrors one Discord channel or DM to a password-protected web chat page.
"""

from .bot_models import BridgeConfig, MessageRecord, MessageSource, PresenceState
from .bridge import MessageBridge

__all__ = ['BridgeConfig', 'MessageBridge', 'MessageRecord', 'MessageSource', 'PresenceState']
