#!/usr/bin/env python3
"""
Micro-benchmark for Stream Monitor hot paths.

Tests:
1. Envelope parse throughput
2. Dispatch throughput (parse + store update)
3. Message-rate estimator throughput
4. Performance history + sparkline generation speed

Usage:
    python -m stream_monitor.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

import orjson

from .datafeed.envelope import parse_envelope
from .engine.dispatch import Dispatcher
from .engine.history import PerformanceHistory
from .engine.rate import RateEstimator
from .engine.staleness import StalenessDetector
from .engine.store import MonitorStore
from .ui.dashboard import sparkline


def generate_mock_orderbook(seq: int, base_price: float = 100.0, levels: int = 20) -> bytes:
    """Generate a mock orderbook_update frame."""
    tick_size = 0.01

    bids = []
    asks = []

    for i in range(levels):
        bids.append([f"{base_price - (i + 1) * tick_size:.2f}", f"{random.uniform(1, 100):.4f}"])
        asks.append([f"{base_price + (i + 1) * tick_size:.2f}", f"{random.uniform(1, 100):.4f}"])

    return orjson.dumps({
        'type': 'orderbook_update',
        'timestamp': '2024-01-01T00:00:00Z',
        'data': {
            'bids': bids,
            'asks': asks,
            'mid_price': base_price,
            'spread': 2 * tick_size,
            'sequence_id': seq,
            'timestamp': '2024-01-01T00:00:00Z',
            'data_age_ms': random.uniform(0, 50),
            'is_stale': False,
            'processing_delay_ms': random.uniform(0, 5),
        },
    })


def generate_mock_heartbeat() -> bytes:
    """Generate a mock heartbeat frame."""
    return orjson.dumps({
        'type': 'heartbeat',
        'timestamp': '2024-01-01T00:00:00Z',
        'data': {
            'memory_usage_mb': random.uniform(100, 200),
            'queue_size': random.randint(0, 50),
            'processing_delay_ms': random.uniform(0, 10),
            'server_status': 'healthy',
            'active_clients': 1,
            'current_scenario': 'stable-mode',
            'uptime_seconds': 60.0,
            'total_messages_received': 1000,
        },
    })


def benchmark_parse(iterations: int = 20000) -> float:
    """Benchmark envelope parsing."""
    print("\n=== Envelope Parse Benchmark ===")

    frames = [generate_mock_orderbook(i + 1) for i in range(iterations)]

    start = time.perf_counter()
    for frame in frames:
        parse_envelope(frame)
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Frames parsed: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} frames/sec")
    print(f"  Per frame: {elapsed/iterations*1_000_000:.1f}µs")
    return rate


def benchmark_dispatch(iterations: int = 20000) -> float:
    """Benchmark parse + dispatch into the store (orderbook with a heartbeat every 10)."""
    print("\n=== Dispatch Benchmark ===")

    store = MonitorStore()
    dispatcher = Dispatcher(store, StalenessDetector(threshold_ms=1000.0))

    frames = [
        generate_mock_heartbeat() if i % 10 == 9 else generate_mock_orderbook(i + 1)
        for i in range(iterations)
    ]

    start = time.perf_counter()
    for frame in frames:
        dispatcher.dispatch(parse_envelope(frame))
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Envelopes dispatched: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} envelopes/sec")
    print(f"  Per envelope: {elapsed/iterations*1_000_000:.1f}µs")
    return rate


def benchmark_rate_estimator(iterations: int = 100000) -> float:
    """Benchmark rate estimator record + query at ~1kHz arrivals."""
    print("\n=== Rate Estimator Benchmark ===")

    fake_now = [0.0]
    estimator = RateEstimator(window_sec=5.0, clock=lambda: fake_now[0])

    start = time.perf_counter()
    for i in range(iterations):
        fake_now[0] = i * 0.001
        estimator.record()
        if i % 100 == 0:
            estimator.rate()
    elapsed = time.perf_counter() - start

    rate = iterations / elapsed
    print(f"  Arrivals recorded: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {rate:,.0f} arrivals/sec")
    print(f"  Window count: {estimator.count():,}")
    return rate


def benchmark_sparkline(iterations: int = 500) -> float:
    """Benchmark full-history sparkline generation (what the UI needs)."""
    print("\n=== Sparkline Generation Benchmark ===")

    history = PerformanceHistory()
    for _ in range(history.capacity):
        history.append(
            random.uniform(100, 200), random.randint(0, 50), random.uniform(0, 10),
            random.uniform(0, 100),
        )

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        arrays = history.as_arrays()
        sparkline(arrays['memory'], width=40)
        sparkline(arrays['processing_delay'], width=40)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000 if len(times) > 1 else 0.0

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Max FPS possible: {1000/avg_time:,.0f}")
    return avg_time


def main(scale: float = 1.0) -> None:
    """Run all benchmarks. `scale` shrinks iteration counts for quick runs."""
    print("=" * 60)
    print("Stream Monitor Performance Benchmark")
    print("=" * 60)

    benchmark_parse(max(1, int(20000 * scale)))
    benchmark_dispatch(max(1, int(20000 * scale)))
    benchmark_rate_estimator(max(1, int(100000 * scale)))
    benchmark_sparkline(max(2, int(500 * scale)))

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
