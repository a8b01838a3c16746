import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

ESTIMATOR_API_KEY = os.getenv("ESTIMATOR_API_KEY")
ESTIMATOR_URL = os.getenv("ESTIMATOR_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
ESTIMATOR_MODEL = os.getenv("ESTIMATOR_MODEL", "google/gemini-2.5-flash")
ESTIMATOR_TIMEOUT = float(os.getenv("ESTIMATOR_TIMEOUT", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
