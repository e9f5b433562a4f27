"""
Insight Core - rule-based extraction of actions, decisions and priority
signals from conversation messages.
"""

__version__ = "1.0.0"
