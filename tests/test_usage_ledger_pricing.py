import threading
import time

import pytest

from ctx_probe.pricing import PricingTable
from ctx_probe.probe_models import Classification
from ctx_probe.usage_ledger import UsageLedger, UsageRecord


def record(model="gpt-4o", cost=0.01, classification=Classification.SUCCESS, timestamp=None):
    kwargs = {} if timestamp is None else {"timestamp": timestamp}
    return UsageRecord(
        model=model,
        input_tokens=1000,
        output_tokens=10,
        cost=cost,
        latency_ms=250.0,
        classification=classification,
        **kwargs,
    )


def test_default_pricing_table():
    table = PricingTable()
    assert table.estimate_cost("gpt-4o", 1000, 1000) == pytest.approx(0.005 + 0.015)


def test_unknown_model_costs_zero_and_warns_once(capsys):
    table = PricingTable()
    assert table.estimate_cost("mystery-model", 5000, 100) == 0.0
    assert table.estimate_cost("mystery-model", 5000, 100) == 0.0
    assert capsys.readouterr().out.count("Modelo sin precio conocido") == 1


def test_ledger_stats_by_model():
    ledger = UsageLedger()
    ledger.record(record("gpt-4o", 0.01))
    ledger.record(record("gpt-4o", 0.02, Classification.TOKEN_LIMIT_EXCEEDED))
    ledger.record(record("gpt-4", 0.05))

    stats = ledger.stats()
    assert stats["total_calls"] == 3
    assert stats["failed_calls"] == 1
    assert stats["total_tokens"] == 3 * 1010
    assert stats["total_cost"] == pytest.approx(0.08)
    assert stats["by_model"]["gpt-4o"]["total_calls"] == 2
    assert stats["by_model"]["gpt-4"]["total_cost"] == pytest.approx(0.05)


def test_ledger_time_window():
    ledger = UsageLedger()
    ledger.record(record(timestamp=time.time() - 5 * 3600))
    ledger.record(record())
    assert ledger.stats(since_hours=1)["total_calls"] == 1
    assert ledger.stats()["total_calls"] == 2


def test_ledger_is_safe_for_concurrent_runs():
    ledger = UsageLedger()

    def worker():
        for _ in range(200):
            ledger.record(record())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(ledger) == 1600
