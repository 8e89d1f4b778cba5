"""Pytest configuration and fixtures."""

import os

import pytest

# Loggers read settings at import time, so the environment must be set before
# any nbassist module is collected.
os.environ["NBASSIST_ENV"] = "test"
os.environ["AI_SERVICE"] = "openai"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
os.environ["EMBEDDING_STORE_BACKEND"] = "file"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env(tmp_path_factory):
    """Point file persistence at a temporary directory."""
    from nbassist.core.config import get_settings

    os.environ["EMBEDDINGS_DIR"] = str(tmp_path_factory.mktemp("embeddings"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
