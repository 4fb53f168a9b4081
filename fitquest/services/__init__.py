"""
Service layer

- GamificationService: per-user orchestration of XP, streaks, badges and loot
"""

from fitquest.services.gamification_service import GamificationService

__all__ = ["GamificationService"]
