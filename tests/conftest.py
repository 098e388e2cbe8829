"""Pytest configuration and shared fixtures."""
import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env file from project root before running tests
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
if env_path.exists():
    load_dotenv(env_path)

# Ensure the anonymous token secret is set for all tests
# If not set in .env, generate a test key
if not os.getenv("FLOWCORE_SECRET_KEY"):
    from cryptography.fernet import Fernet

    os.environ["FLOWCORE_SECRET_KEY"] = Fernet.generate_key().decode()


@pytest.fixture(scope="session", autouse=True)
def ensure_secret_key():
    """Ensure a token secret is available for all tests."""
    if not os.getenv("FLOWCORE_SECRET_KEY"):
        from cryptography.fernet import Fernet

        os.environ["FLOWCORE_SECRET_KEY"] = Fernet.generate_key().decode()
