"""Gamification engine: XP, levels, streaks, XP events, achievements, leaderboard."""
