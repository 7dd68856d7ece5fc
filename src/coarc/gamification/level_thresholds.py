"""Level thresholds and computation.

These values MUST match the dashboard's level bar (levels are shown with the
same titles there). Levels above 20 are sparse: 25, 30, ... 50.
"""

from __future__ import annotations

LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "title": "Newbie", "cumulative": 0},
    {"level": 2, "title": "Apprentice", "cumulative": 100},
    {"level": 3, "title": "Coder", "cumulative": 250},
    {"level": 4, "title": "Solver", "cumulative": 500},
    {"level": 5, "title": "Grinder", "cumulative": 800},
    {"level": 6, "title": "Grinder II", "cumulative": 1200},
    {"level": 7, "title": "Grinder III", "cumulative": 1700},
    {"level": 8, "title": "Warrior", "cumulative": 2300},
    {"level": 9, "title": "Warrior II", "cumulative": 2600},
    {"level": 10, "title": "Veteran", "cumulative": 3000},
    {"level": 11, "title": "Veteran II", "cumulative": 3800},
    {"level": 12, "title": "Veteran III", "cumulative": 4800},
    {"level": 13, "title": "Hunter", "cumulative": 5700},
    {"level": 14, "title": "Hunter II", "cumulative": 6500},
    {"level": 15, "title": "Elite", "cumulative": 7500},
    {"level": 16, "title": "Elite II", "cumulative": 9000},
    {"level": 17, "title": "Elite III", "cumulative": 10500},
    {"level": 18, "title": "Commander", "cumulative": 12000},
    {"level": 19, "title": "Commander II", "cumulative": 13500},
    {"level": 20, "title": "Master", "cumulative": 15000},
    {"level": 25, "title": "Grandmaster", "cumulative": 25000},
    {"level": 30, "title": "Legend", "cumulative": 40000},
    {"level": 35, "title": "Legend II", "cumulative": 60000},
    {"level": 40, "title": "Mythic", "cumulative": 80000},
    {"level": 45, "title": "Mythic II", "cumulative": 110000},
    {"level": 50, "title": "Zer0day", "cumulative": 150000},
]


def compute_level(total_xp: int) -> dict:
    """Compute level info from cumulative XP.

    Linear scan for the highest threshold at or below ``total_xp``. Negative
    XP (only reachable through corrections) clamps to level 1.
    """
    index = 0
    for i, entry in enumerate(LEVEL_THRESHOLDS):
        if total_xp >= entry["cumulative"]:
            index = i
        else:
            break

    current = LEVEL_THRESHOLDS[index]
    next_level = LEVEL_THRESHOLDS[min(index + 1, len(LEVEL_THRESHOLDS) - 1)]

    xp_into_level = max(total_xp - current["cumulative"], 0)
    # At max level, avoid division by zero in progress bars
    xp_for_level = next_level["cumulative"] - current["cumulative"] or 1

    return {
        "level": current["level"],
        "title": current["title"],
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_level,
        "next_level": next_level["level"],
        "next_title": next_level["title"],
    }
