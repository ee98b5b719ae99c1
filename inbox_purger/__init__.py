"""
Inbox Purger - scheduled cleanup of old Gmail inbox threads
"""

__version__ = "0.1.0"
