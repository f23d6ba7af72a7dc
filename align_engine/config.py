"""Configuration for the Align scoring engine."""

import os
from pathlib import Path

# Base data directory; all runtime data is stored here
DATA_DIR = Path(os.environ.get("ALIGN_DATA_DIR", "data"))
DB_PATH = DATA_DIR / "align.db"
RUN_LOG_DIR = DATA_DIR / "logs" / "runs"

ENGINE_CONFIG = {
    # LLM
    "llm_model": os.environ.get("ALIGN_LLM_MODEL", "gpt-4o-mini"),
    "llm_temperature": 0.0,
    "llm_max_retries": 3,

    # Decay and smoothing
    "decay_factor": 0.9,
    "window_days": 7,

    # Calendar days are cut in this zone, whatever the client's clock says
    "timezone": "UTC",

    # Priority
    "core_levers": ("boost_energy", "improve_finances", "nurture_home"),
    "default_priority": "boost_energy",
}

# Default category table.
#
# Weights of top-level categories sum to 1.0. Energy inputs only reach the
# display score through the boost_energy composite, so they carry no weight.
CATEGORY_TABLE = [
    # Core levers
    {
        "id": "boost_energy",
        "label": "Boost Energy",
        "weight": 0.30,
        "derived_from": ["training", "sleep", "healthy_food", "supplements"],
        "unit": "rating 0-1",
        "recommendation": "Improve your energy through better routines and recovery.",
    },
    {
        "id": "improve_finances",
        "label": "Improve Finances",
        "target": 50.0,  # daily financial action (save / budget / pay)
        "unit": "currency",
        "weight": 0.25,
        "recommendation": "Set aside 30 minutes to review your budget and make a debt payment.",
    },
    {
        "id": "nurture_home",
        "label": "Nurture Home",
        "target": 60.0,  # minutes with partner / at home
        "unit": "minutes",
        "weight": 0.25,
        "recommendation": "Spend quality time with your partner or create a calming space at home.",
    },

    # Energy inputs
    {"id": "training", "label": "Training", "target": 30.0, "unit": "minutes"},
    {"id": "sleep", "label": "Sleep", "target": 7.0 * 60.0, "unit": "minutes"},
    {"id": "healthy_food", "label": "Healthy Food", "target": 3.0, "unit": "meals"},
    {"id": "supplements", "label": "Supplements", "target": 4.0, "unit": "intakes"},

    # Secondary nodes
    {"id": "increase_focus", "label": "Increase Focus", "weight": 0.05, "unit": "rating 0-1"},
    {"id": "execute_tasks", "label": "Execute Tasks", "weight": 0.05, "unit": "planned tasks done"},
    {"id": "generate_income", "label": "Generate Income", "target": 100.0, "weight": 0.05, "unit": "currency"},
    {"id": "mental_stability", "label": "Mental Stability", "weight": 0.05, "unit": "rating 0-1"},
]

DEFAULT_RECOMMENDATION = "Focus on improving this area."
