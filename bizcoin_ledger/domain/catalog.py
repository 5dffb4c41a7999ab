"""Default award categories and teacher presets seeded for new classrooms"""

from typing import Any, Dict, List

DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    {
        "name": "Assignment Completion",
        "description": "Completing assignments on time",
        "default_amount": 10,
        "color_code": "#10B981",
        "icon_name": "BookOpen",
    },
    {
        "name": "Participation",
        "description": "Active class participation",
        "default_amount": 5,
        "color_code": "#3B82F6",
        "icon_name": "MessageSquare",
    },
    {
        "name": "Helping Others",
        "description": "Assisting classmates",
        "default_amount": 8,
        "color_code": "#8B5CF6",
        "icon_name": "Users",
    },
    {
        "name": "Extra Credit",
        "description": "Going above and beyond",
        "default_amount": 15,
        "color_code": "#F59E0B",
        "icon_name": "Star",
    },
    {
        "name": "Behavior",
        "description": "Positive classroom behavior",
        "default_amount": 3,
        "color_code": "#EF4444",
        "icon_name": "Heart",
    },
]

DEFAULT_PRESETS: List[Dict[str, Any]] = [
    {
        "preset_name": "Perfect Assignment",
        "amount": 25,
        "description_template": "Excellent work on assignment completion!",
    },
    {
        "preset_name": "Great Participation",
        "amount": 10,
        "description_template": "Outstanding class participation today!",
    },
    {
        "preset_name": "Helping Friend",
        "amount": 15,
        "description_template": "Thank you for helping a classmate!",
    },
    {
        "preset_name": "Quick Bonus",
        "amount": 5,
        "description_template": "Small bonus for good behavior!",
    },
]

PRESET_CATEGORY = "Preset Award"
STORE_CATEGORY = "store"
UNLIMITED_INVENTORY = -1
