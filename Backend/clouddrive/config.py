import os

from dotenv import load_dotenv

load_dotenv()

MIB = 1024 * 1024

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clouddrive.db")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-prod")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000/blobs").rstrip("/")
BLOB_TIMEOUT_SECONDS = float(os.getenv("BLOB_TIMEOUT_SECONDS", "30"))
BLOB_DELETE_TIMEOUT_SECONDS = float(os.getenv("BLOB_DELETE_TIMEOUT_SECONDS", "5"))

MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(10 * MIB)))
STORAGE_LIMIT = int(os.getenv("STORAGE_LIMIT", str(100 * MIB)))

INVITATION_TTL_DAYS = int(os.getenv("INVITATION_TTL_DAYS", "30"))

RECENT_DAYS = int(os.getenv("RECENT_DAYS", "30"))
RECENT_LIMIT = int(os.getenv("RECENT_LIMIT", "50"))
SEARCH_LIMIT = int(os.getenv("SEARCH_LIMIT", "10"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:3000",
    ).split(",")
    if origin.strip()
]
