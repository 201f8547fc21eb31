"""Configuration management using environment variables."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Database configuration
DB_PATH = os.getenv("DB_PATH", "attribution.db")
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "30"))

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")  # unset = console only

# Half-life (days) for time-decay attribution and engagement recency
TIME_DECAY_HALF_LIFE_DAYS = float(os.getenv("TIME_DECAY_HALF_LIFE_DAYS", "14"))
ENGAGEMENT_HALF_LIFE_DAYS = float(os.getenv("ENGAGEMENT_HALF_LIFE_DAYS", "14"))

# Attribution model whose commissions become payout candidates
PAYOUT_MODEL = os.getenv("PAYOUT_MODEL", "role_based")
