"""
Twitch Channel Points Monitor

A Python-based Twitch EventSub client that watches channel points rewards
and redemptions for a single broadcaster and relays them as typed events.
"""

__version__ = "1.0.0"
__author__ = "Twitch Channel Points Monitor"
