"""Runtime configuration read from the environment (and an optional .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./village_exam.db")
SESSION_SECRET = os.getenv("SESSION_SECRET", "CHANGE_ME_TO_A_RANDOM_SECRET")

# Answer Store: only the last selection inside this window is written.
AUTOSAVE_DEBOUNCE_SECONDS = float(os.getenv("AUTOSAVE_DEBOUNCE_SECONDS", "0.5"))
# Timer Engine: remaining_time_seconds is persisted every N elapsed seconds.
TIME_CHECKPOINT_SECONDS = int(os.getenv("TIME_CHECKPOINT_SECONDS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com")
SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "admin123")
