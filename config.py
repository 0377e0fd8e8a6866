import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "library_db")
# Transactions need a replica set; standalone servers must keep this off
MONGO_TRANSACTIONS = _flag("MONGO_TRANSACTIONS")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
ORIGINS = [o.strip() for o in os.getenv("ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join("public", "uploads"))
MAX_PROFILE_IMAGE_SIZE = int(os.getenv("MAX_PROFILE_IMAGE_SIZE", str(2 * 1024 * 1024)))
MAX_COVER_IMAGE_SIZE = int(os.getenv("MAX_COVER_IMAGE_SIZE", str(5 * 1024 * 1024)))

# Loan rules
FINE_PER_DAY = int(os.getenv("FINE_PER_DAY", "5000"))
LOAN_DURATION_DAYS = int(os.getenv("LOAN_DURATION_DAYS", "7"))
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))


def is_production() -> bool:
    return ENVIRONMENT.lower() == "production"
