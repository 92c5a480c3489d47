"""
Test configuration and fixtures
"""
import logging
import sys
from pathlib import Path

# Add src to Python path
project_root = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(project_root / "src"))

import pytest

from ario.core.crypto_utils import generate_secp256k1_private_key_hex
from ario.core.models import RetryPolicy

from fakes import FakeTransport


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_retries=3, initial_delay=0.0, backoff_multiplier=1.0)


@pytest.fixture(scope="session")
def secp_key():
    return generate_secp256k1_private_key_hex()


@pytest.fixture(autouse=True)
def reset_ario_logger():
    """Undo CLI/logging setup so caplog sees library records in every test."""
    yield
    logger = logging.getLogger("ario")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
