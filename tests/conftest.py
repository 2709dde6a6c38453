import os

# Keep the app from touching a real cache database during tests
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("CACHE_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")
