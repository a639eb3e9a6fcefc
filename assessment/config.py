import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(__file__))

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'assessment.db')}")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# seeds must outlive the longest attempt, so the TTL is duration + buffer
SEED_TTL_BUFFER_SECONDS = int(os.getenv("SEED_TTL_BUFFER_SECONDS", "3600"))

# one extension may add at most a week
MAX_EXTENSION_MINUTES = int(os.getenv("MAX_EXTENSION_MINUTES", "10080"))

GRADING_WORKERS = int(os.getenv("GRADING_WORKERS", "2"))
GRADING_MAX_RETRIES = int(os.getenv("GRADING_MAX_RETRIES", "3"))
GRADING_RETRY_DELAY_SECONDS = float(os.getenv("GRADING_RETRY_DELAY_SECONDS", "1.0"))

FUZZY_MATCH_THRESHOLD = float(os.getenv("FUZZY_MATCH_THRESHOLD", "0.8"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
