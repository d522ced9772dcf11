"""Core module - Shared configuration."""

from cardsync.core.config import CardConfig, TargetPeriod

__all__ = [
    # Config
    "CardConfig",
    "TargetPeriod",
]
