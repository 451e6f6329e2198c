"""
chatfeed - client-side message feed reconciliation for real-time chat.
"""

__version__ = "0.1.0"
__logo__ = "💬"
