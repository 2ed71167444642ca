"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DRY_RUN"] = "true"
os.environ["DEBUG"] = "false"
os.environ.pop("MASTER_KEY", None)
os.environ.pop("OPERATOR_PRIVATE_KEY", None)

from bridgerelay.bridge.executor import BridgeExecutor
from bridgerelay.chain.simulated import SimulatedChain
from bridgerelay.crypto import KeyCipher
from bridgerelay.ledger.database import close_db, configure_database, init_db
from bridgerelay.messaging.oft import OFTMessenger, simulated_quote_handler
from bridgerelay.registry.service import AddressRegistry
from bridgerelay.registry.store import SqlAddressStore
from bridgerelay.scanner.deposits import DepositScanner
from bridgerelay.scanner.fingerprints import InMemoryFingerprintStore

TOKEN = "0x3D40fF7Ff9D5B01Cb5413e7E5C18Aa104A6506a5"
OPERATOR_KEY = "0x" + "4c" * 32
DESTINATION_EID = 40325
GAS_FUNDING_WEI = 10**16
QUOTED_FEE_WEI = 3 * 10**15
FALLBACK_FEE_WEI = 5 * 10**15


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[str, None]:
    """Fresh SQLite file database per test."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'relayer.db'}"
    configure_database(url)
    await init_db()
    yield url
    await close_db()


@pytest_asyncio.fixture
async def registry(database) -> AddressRegistry:
    return AddressRegistry(SqlAddressStore(), KeyCipher())


@pytest.fixture
def chain() -> SimulatedChain:
    chain = SimulatedChain(token_decimals=6)
    chain.register_call_handler(TOKEN, simulated_quote_handler(QUOTED_FEE_WEI))
    return chain


@pytest.fixture
def messenger(chain) -> OFTMessenger:
    return OFTMessenger(chain, TOKEN, DESTINATION_EID)


@pytest.fixture
def fingerprints() -> InMemoryFingerprintStore:
    return InMemoryFingerprintStore()


@pytest.fixture
def scanner(registry, chain, fingerprints) -> DepositScanner:
    return DepositScanner(
        registry=registry,
        chain=chain,
        token_address=TOKEN,
        fingerprints=fingerprints,
        concurrency=3,
    )


@pytest.fixture
def executor(registry, chain, messenger) -> BridgeExecutor:
    return BridgeExecutor(
        registry=registry,
        chain=chain,
        messenger=messenger,
        operator_private_key=OPERATOR_KEY,
        gas_funding_wei=GAS_FUNDING_WEI,
        fallback_fee_wei=FALLBACK_FEE_WEI,
        confirmation_timeout=1.0,
    )
