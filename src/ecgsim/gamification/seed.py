"""Default achievement catalogue. Seeding only inserts slugs that don't exist
yet, so admin edits to existing rows survive a re-seed."""

from __future__ import annotations

import structlog

from ecgsim.gamification.repository import GamificationStore

logger = structlog.get_logger()


def _achievement(
    slug: str,
    name: str,
    description: str,
    category: str,
    rarity: str,
    xp_reward: int,
    conditions: dict,
    display_order: int,
    is_hidden: bool = False,
) -> dict:
    return {
        "slug": slug,
        "name": name,
        "description": description,
        "category": category,
        "rarity": rarity,
        "xp_reward": xp_reward,
        "unlock_conditions": conditions,
        "is_active": True,
        "is_hidden": is_hidden,
        "display_order": display_order,
    }


ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Volume
    _achievement("first_ecg", "First Trace", "Complete your first ECG", "volume", "common", 10,
                 {"type": "total_ecgs", "threshold": 1}, 1),
    _achievement("ecgs_10", "Getting Started", "Complete 10 ECGs", "volume", "common", 25,
                 {"type": "total_ecgs", "threshold": 10}, 2),
    _achievement("ecgs_100", "Century", "Complete 100 ECGs", "volume", "rare", 100,
                 {"type": "total_ecgs", "threshold": 100}, 3),
    _achievement("ecgs_500", "Tracing Machine", "Complete 500 ECGs", "volume", "epic", 250,
                 {"type": "total_ecgs", "threshold": 500}, 4),
    _achievement("daily_10", "Marathon Shift", "Complete 10 ECGs in a single day", "volume", "rare", 50,
                 {"type": "daily_ecgs", "threshold": 10}, 5),
    # Precision
    _achievement("first_perfect", "Spot On", "Score a perfect interpretation", "precision", "common", 20,
                 {"type": "perfect_scores", "threshold": 1}, 10),
    _achievement("perfect_50", "Sharp Eye", "Score 50 perfect interpretations", "precision", "epic", 200,
                 {"type": "perfect_scores", "threshold": 50}, 11),
    _achievement("perfect_streak_5", "On Fire", "Five perfect interpretations in a row", "precision", "rare", 75,
                 {"type": "perfect_streak", "threshold": 5}, 12),
    _achievement("first_perfect_hard", "Straight to the Top", "Make your first perfect score on a hard ECG",
                 "precision", "epic", 100, {"type": "first_perfect_hard"}, 13, is_hidden=True),
    _achievement("perfect_hard_10", "Hard Mode", "Score 10 perfect interpretations on hard ECGs", "precision",
                 "epic", 150, {"type": "perfect_hard", "threshold": 10}, 14),
    # Streaks
    _achievement("streak_3", "Warming Up", "Practice 3 days in a row", "streak", "common", 15,
                 {"type": "streak", "threshold": 3}, 20),
    _achievement("streak_7", "Full Week", "Practice 7 days in a row", "streak", "rare", 50,
                 {"type": "streak", "threshold": 7}, 21),
    _achievement("streak_30", "Habit Formed", "Practice 30 days in a row", "streak", "epic", 200,
                 {"type": "streak", "threshold": 30}, 22),
    _achievement("comeback_7", "Welcome Back", "Return after a week or more away", "streak", "common", 20,
                 {"type": "comeback", "days": 7}, 23, is_hidden=True),
    # Knowledge
    _achievement("arrhythmia_25", "Rhythm Reader", "Correctly interpret 25 arrhythmia ECGs", "knowledge", "rare",
                 75, {"type": "category_correct", "category": "arrhythmia", "threshold": 25}, 30),
    _achievement("ischemia_25", "Ischemia Hunter", "Correctly identify 25 ischemic patterns", "knowledge", "rare",
                 75, {"type": "finding_correct", "finding": "ischemia", "threshold": 25}, 31),
    _achievement("de_winter_1", "De Winter Spotter", "Identify de Winter T waves", "knowledge", "rare", 50,
                 {"type": "finding_correct", "finding": "de_winter", "threshold": 1}, 32),
    _achievement("blocks_20", "Block Master", "Correctly identify 20 conduction blocks", "knowledge", "rare", 75,
                 {"type": "finding_group", "group": "blocks", "threshold": 20}, 33),
    _achievement("all_categories", "Well Rounded", "Get at least one ECG right in every category", "knowledge",
                 "rare", 100, {"type": "all_categories"}, 34),
    _achievement("hard_50", "No Easy Way", "Complete 50 hard ECGs", "knowledge", "epic", 150,
                 {"type": "difficulty_correct", "difficulty": "hard", "threshold": 50}, 35),
    _achievement("all_difficulties_10", "Full Spectrum", "Complete 10 ECGs of every difficulty", "knowledge",
                 "rare", 75, {"type": "all_difficulties", "threshold": 10}, 36),
    # Progression
    _achievement("level_10", "Resident", "Reach level 10", "progression", "rare", 100,
                 {"type": "level", "threshold": 10}, 40),
    _achievement("level_50", "Attending", "Reach level 50", "progression", "legendary", 500,
                 {"type": "level", "threshold": 50}, 41),
    _achievement("xp_10000", "Ten Thousand", "Earn 10,000 XP", "progression", "epic", 200,
                 {"type": "total_xp", "threshold": 10_000}, 42),
    _achievement("collector_10", "Collector", "Unlock 10 achievements", "progression", "rare", 100,
                 {"type": "achievements_unlocked", "threshold": 10}, 43),
    # Special
    _achievement("night_owl", "Night Shift", "Complete an ECG between 22:00 and 06:00", "special", "common", 25,
                 {"type": "time_of_day", "after": "22:00", "before": "06:00"}, 50, is_hidden=True),
    _achievement("weekend_warrior", "Weekend Warrior", "Practice on a weekend", "special", "common", 15,
                 {"type": "weekend_ecgs"}, 51),
    _achievement("event_first", "Party Starter", "Practice during an XP event", "special", "common", 20,
                 {"type": "event_participation"}, 52),
    _achievement("events_5", "Event Regular", "Take part in 5 different XP events", "special", "rare", 75,
                 {"type": "events_participated", "threshold": 5}, 53),
    _achievement("emergency_50", "Emergency Room", "Complete 50 ECGs with an emergency practice profile",
                 "special", "rare", 75, {"type": "hospital_type", "hospital_type": "emergency", "threshold": 50}, 54),
]


async def seed_achievements(store: GamificationStore) -> int:
    """Insert missing default achievements. Returns how many were inserted."""
    async with store.transaction():
        inserted = await store.upsert_achievements(ACHIEVEMENT_SEED_DATA)
    logger.info("achievements_seeded", inserted=inserted, total=len(ACHIEVEMENT_SEED_DATA))
    return inserted
