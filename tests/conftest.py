# tests/conftest.py
import os

# Must be set before database.py is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ.pop("OPENAI_API_KEY", None)
