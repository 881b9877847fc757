"""
SignalDesk - Trading Signal Distribution Platform

Receives trading signals from TradingView webhooks and the admin console,
and fans them out to subscribers over email, SMS, push, Telegram and Discord
according to their subscription tier.
"""

__version__ = "1.0.0"
__author__ = "SignalDesk Team"
