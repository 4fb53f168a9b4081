"""fitquest - XP, streak, badge and loot reward engine for fitness tracking"""

__version__ = "0.1.0"
