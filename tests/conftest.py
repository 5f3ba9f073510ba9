"""
Shared pytest fixtures for the okxfeed test suite.

This module provides fixtures for:
- A scripted in-memory WebSocket and socket factory
- Test settings with fast reconnect and heartbeat timings
- Sample OKX wire frames
"""

import pytest

from fakes import FakeSocketFactory

from okxfeed.config import OKXSettings, Settings, StreamSettings

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow-running tests")
    config.addinivalue_line("markers", "live: Tests requiring live API access")


# ============================================================================
# Settings Fixtures
# ============================================================================


PUBLIC_URL = "wss://test.okx.invalid/ws/v5/public"
BUSINESS_URL = "wss://test.okx.invalid/ws/v5/business"


@pytest.fixture
def stream_settings() -> StreamSettings:
    """Fast reconnect timings; heartbeat effectively disabled."""
    return StreamSettings(
        max_reconnect_attempts=5,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.04,
        heartbeat_interval=60.0,
        heartbeat_grace=1.0,
        open_timeout=1.0,
    )


@pytest.fixture
def test_settings(stream_settings: StreamSettings) -> Settings:
    """Override settings for the test environment."""
    return Settings(
        okx=OKXSettings(
            ws_public_url=PUBLIC_URL,
            ws_business_url=BUSINESS_URL,
            rest_base_url="https://rest.okx.invalid",
            rest_timeout=5.0,
        ),
        stream=stream_settings,
    )


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()


# ============================================================================
# Sample Frames
# ============================================================================


@pytest.fixture
def candle_push() -> dict:
    """1H candle push for BTC-USDT as sent by OKX."""
    return {
        "arg": {"channel": "candles:1H", "instId": "BTC-USDT"},
        "data": [["1700000000000", "100", "110", "90", "105", "12", "1200", "1200", "0"]],
    }


@pytest.fixture
def ticker_record() -> dict:
    return {
        "instType": "SPOT",
        "instId": "BTC-USDT",
        "last": "43250.1",
        "lastSz": "0.01",
        "askPx": "43250.2",
        "askSz": "1.5",
        "bidPx": "43250.0",
        "bidSz": "2.1",
        "open24h": "42000",
        "high24h": "43500",
        "low24h": "41800",
        "volCcy24h": "512345678.9",
        "vol24h": "11890.3",
        "ts": "1700000000123",
    }
