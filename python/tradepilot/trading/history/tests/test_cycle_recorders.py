import json

from tradepilot.trading.history import InMemoryCycleRecorder, JsonFileCycleRecorder
from tradepilot.trading.models import (
    CycleRecord,
    ExecutionResult,
    TradeDecisionAction,
    TradingDecision,
)


def _record(n: int, ts: int = 1_700_000_000_000) -> CycleRecord:
    decision = TradingDecision(action=TradeDecisionAction.WAIT, reasoning="flat market")
    return CycleRecord(
        cycle_id=f"cycle-{n}",
        trader_id="trader-1",
        cycle_number=n,
        timestamp=ts + n,
        decisions=[decision],
        execution_results=[ExecutionResult(decision=decision, success=True)],
    )


def test_in_memory_recorder_keeps_latest():
    recorder = InMemoryCycleRecorder(history_limit=3)
    for n in range(1, 6):
        recorder.record(_record(n))
    assert [r.cycle_number for r in recorder.get_records()] == [3, 4, 5]


def test_json_recorder_writes_one_file_per_cycle(tmp_path):
    recorder = JsonFileCycleRecorder(str(tmp_path), "trader-1")
    recorder.record(_record(1))
    recorder.record(_record(2))

    files = sorted(p.name for p in (tmp_path / "trader-1").iterdir())
    assert files == ["cycle_1_1700000000001.json", "cycle_2_1700000000002.json"]

    payload = json.loads((tmp_path / "trader-1" / files[0]).read_text())
    assert payload["cycle_number"] == 1
    assert payload["decisions"][0]["action"] == "wait"

    loaded = recorder.load_records()
    assert [r.cycle_id for r in loaded] == ["cycle-1", "cycle-2"]
    assert [r.cycle_id for r in recorder.get_records()] == ["cycle-1", "cycle-2"]


def test_json_recorder_survives_unwritable_directory(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory")
    recorder = JsonFileCycleRecorder(str(blocker), "trader-1")

    recorder.record(_record(1))

    assert [r.cycle_number for r in recorder.get_records()] == [1]
    assert recorder.load_records() == []
