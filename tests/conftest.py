"""
Shared test fixtures for the order-flow engine tests.

Provides a bar factory and a temporary configuration directory so that
individual test modules stay focused on the behavior under test.
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path

from orderflow_engine.data.bars import BarRecord, ImbalanceSummary


ENGINE_CONFIG_YAML = """
series:
  period: 14
  bias_smoothing: 5
  tick_size: ${ENGINE_TICK_SIZE:0.25}
  ticks_per_level: 4
  value_area_percent: 0.70
  delta_efficiency_oldest_weight: 0.05
  trigger_delta_ewm_span: 5
  bias_vwap_refresh_tolerance: 0.0001
  secondary_fast_period: 8
  secondary_slow_period: 21

ema:
  fast_period: 5
  slow_period: 9

clusters:
  lookback: 20
  bucket_size: 1.0

metrics:
  lookback: 20
  skew_extreme: 0.2

features:
  atr_floor: 0.01

imbalance:
  ratio: 3.0
  min_volume: 10

logging:
  level: ${ENGINE_LOG_LEVEL:info}
  file_output: false
"""

SESSION_START = datetime(2024, 3, 4, 9, 30)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def config_dir(tmp_path) -> Path:
    """Temporary config directory holding engine_config.yml."""
    (tmp_path / "engine_config.yml").write_text(ENGINE_CONFIG_YAML)
    return tmp_path


# =============================================================================
# Bar Fixtures
# =============================================================================

@pytest.fixture
def make_bar():
    """
    Factory for BarRecords with sensible defaults.

    Unspecified high/low wrap open and close; unspecified volume is
    buy + sell.
    """
    def _make(close=100.0, open_=None, high=None, low=None, buy=60, sell=40,
              volume=None, index=0, timestamp=None, poc=None,
              cumulative_delta=0, imbalance=None, price_volumes=None):
        open_ = close if open_ is None else open_
        high = max(open_, close) + 1.0 if high is None else high
        low = min(open_, close) - 1.0 if low is None else low
        return BarRecord(
            timestamp=timestamp or SESSION_START + timedelta(minutes=index),
            index=index,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=buy + sell if volume is None else volume,
            buy_volume=buy,
            sell_volume=sell,
            cumulative_delta=cumulative_delta,
            point_of_control=close if poc is None else poc,
            imbalance=imbalance or ImbalanceSummary(),
            price_volumes=price_volumes,
        )

    return _make
