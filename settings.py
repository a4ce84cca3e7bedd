import os

# JWT Config
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))  # 24 hours

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
MIN_PASSWORD_LENGTH = 6

API_PREFIX = os.getenv("API_PREFIX", "/api")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000,http://127.0.0.1:5500,http://localhost:5500")
CORS_ORIGINS = [origin.strip() for origin in FRONTEND_URL.split(",") if origin.strip()]

# Rate limiting
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 15 * 60))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", 200))

# Catalog defaults
DEFAULT_PAGE_SIZE = 12
DEFAULT_MIN_PRICE = 0
DEFAULT_MAX_PRICE = 10000

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
