from __future__ import annotations

import json
from pathlib import Path

import pytest
from rebalance.core.dates import MonthDate
from rebalance.core.simulation import SimInput, Vola
from rebalance.io.historic import HistoricDataProvider
from rebalance.io.sharelink import ShareLinkClient, sessionid_to_link
from rebalance.ops.logging import JsonEventLogger
from rebalance.session import BalanceSession, MonthlyPaymentState, PaymentData

WORLD = [1.0] * 5 + [2.0] * 5 + [4.0] * 5
EMERGING = [1.0] * 15


def _csv_text(values: list[float], start: str = "2000/01") -> str:
    start_date = MonthDate.from_str(start)
    rows = [f"{start_date + idx},{value}" for idx, value in enumerate(values)]
    return "Date,Price\n" + "\n".join(rows) + "\n"


def _session_with_two_charts(tmp_path: Path | None = None) -> BalanceSession:
    event_logger = JsonEventLogger(tmp_path / "events.jsonl") if tmp_path else None
    session = BalanceSession(event_logger=event_logger)
    assert session.load_csv("world", _csv_text(WORLD))
    session.persist_tmp()
    assert session.load_csv("em", _csv_text(EMERGING))
    session.persist_tmp()
    return session


def test_payment_data_parse() -> None:
    payment = PaymentData(
        initial_balance_text="10 000.50",
        monthly_payments=MonthlyPaymentState(
            pay_fields=["100", "200"],
            intervals=[("2000/01", "2000/12"), ("2001/01", "2001/12")],
        ),
        rebalance_interval_text="12",
        rebalance_deviation_text="5",
    )

    payment.parse()

    assert payment.initial_balance == pytest.approx(10000.5)
    assert payment.rebalance_interval == 12
    assert payment.rebalance_deviation == pytest.approx(0.05)
    assert payment.monthly_payments.payments.compute(MonthDate(2001, 3)) == pytest.approx(200.0)
    assert payment.trigger().is_active


def test_payment_data_ignores_invalid_trigger_text() -> None:
    payment = PaymentData(rebalance_interval_text="often", rebalance_deviation_text="-3")

    payment.parse()

    assert payment.rebalance_interval is None
    assert payment.rebalance_deviation is None
    assert not payment.trigger().is_active


def test_payment_data_rejects_invalid_initial_balance() -> None:
    with pytest.raises(ValueError, match="initial balance"):
        PaymentData(initial_balance_text="lots").parse()


def test_recompute_balance_sets_final_balance() -> None:
    session = _session_with_two_charts()
    session.payment.rebalance_interval_text = "5"

    final_balance = session.recompute_balance()

    assert final_balance is not None
    assert final_balance.final_balance == pytest.approx(22500.0)
    assert final_balance.total_payments == pytest.approx(10000.0)
    assert final_balance.yearly_return_perc == pytest.approx((2.25 ** (12 / 14) - 1) * 100)
    assert session.charts.plot_balance
    assert session.status_msg is None


def test_failed_operations_set_status_message_and_emit_events(tmp_path: Path) -> None:
    session = _session_with_two_charts(tmp_path)

    assert not session.load_csv("broken", "Date,Price\n2000/01,1\n2000/03,2\n")
    assert session.status_msg is not None
    assert "consecutive" in session.status_msg

    assert session.recompute_rebalance_stats(always=True) is None
    assert session.status_msg == "neither rebalance interval nor deviation given"

    assert not session.remove_chart(7)

    events = JsonEventLogger(tmp_path / "events.jsonl").read_events()
    error_events = [event["event"] for event in events if event["level"] == "error"]
    assert error_events == ["csv_import", "rebalance_stats", "remove_chart"]
    assert all("timestamp" in event for event in events)


def test_out_of_range_deviation_sets_status_message(tmp_path: Path) -> None:
    session = _session_with_two_charts(tmp_path)
    session.payment.rebalance_deviation_text = "150"

    assert session.recompute_rebalance_stats(always=True) is None
    assert session.status_msg is not None
    assert "deviation" in session.status_msg
    assert session.rebalance_stats is None

    assert session.recompute_balance() is None
    assert "deviation" in str(session.status_msg)

    events = JsonEventLogger(tmp_path / "events.jsonl").read_events()
    error_events = [event["event"] for event in events if event["level"] == "error"]
    assert error_events == ["rebalance_stats", "balance"]


def test_recompute_rebalance_stats_and_best_trigger() -> None:
    session = _session_with_two_charts()
    session.payment.rebalance_interval_text = "5"

    summary = session.recompute_rebalance_stats(always=True)
    best = session.find_best_rebalance_trigger()

    assert summary is not None
    assert summary.min_n_months == 10
    assert summary.max_n_months == 14
    assert session.rebalance_stats is not None
    assert len(session.rebalance_stats.per_horizon) == 5
    assert best is not None
    assert best.best.final_balance == pytest.approx(25000.0)


def test_recompute_rebalance_stats_only_when_requested() -> None:
    session = _session_with_two_charts()
    session.payment.rebalance_interval_text = "5"

    assert session.recompute_rebalance_stats(always=False) is None
    assert session.rebalance_stats_summary is None


def test_run_simulation_creates_tmp_chart() -> None:
    session = BalanceSession()
    session.sim = SimInput(vola=Vola(amount="no"), n_months="24", name="calm", seed=1)

    assert session.run_simulation()
    assert session.charts.tmp is not None
    assert session.charts.tmp.chart.name == "calm"
    assert len(session.charts.tmp.chart.values) == 25

    session.sim = SimInput(n_months="many")
    assert not session.run_simulation()
    assert session.status_msg is not None


def test_load_historic_uses_provider(tmp_path: Path) -> None:
    provider = HistoricDataProvider(cache_dir=tmp_path / "cache")
    provider._download_csv_text = lambda filename: _csv_text([1.0, 2.0, 3.0])
    session = BalanceSession()

    assert session.load_historic(provider, "msciacwi")
    assert session.charts.tmp is not None
    assert session.charts.tmp.chart.name == "MSCI ACWI"

    assert not session.load_historic(provider, "unknown")
    assert "Unknown historic preset" in str(session.status_msg)


def test_session_json_round_trip(tmp_path: Path) -> None:
    session = _session_with_two_charts()
    session.payment.rebalance_interval_text = "5"
    session.recompute_balance()
    session.recompute_rebalance_stats(always=True)
    session.find_best_rebalance_trigger()

    session_path = session.save(tmp_path / "session.json")
    restored = BalanceSession.load(session_path)

    assert restored.to_dict() == session.to_dict()
    assert restored.payment.rebalance_interval == 5
    assert restored.final_balance == session.final_balance
    payload = json.loads(session_path.read_text(encoding="utf-8"))
    assert payload["payment"]["rebalance_interval"] == "5"


def test_session_from_json_rejects_invalid_payload() -> None:
    with pytest.raises(ValueError, match="invalid session JSON"):
        BalanceSession.from_json("{")
    with pytest.raises(ValueError, match="JSON object"):
        BalanceSession.from_json("[]")


def test_share_and_load_from_link() -> None:
    stored: dict[str, object] = {}
    client = ShareLinkClient(write_url="https://storage.test/write", read_url="unused")

    def fake_send(url: str, body: bytes | None = None) -> tuple[int, str]:
        if body is not None:
            stored["state"] = json.loads(body.decode("utf-8"))["json_data"]
            json_data: object = {"session_id": "abc"}
        else:
            json_data = stored["state"]
        return 200, json.dumps({"status": 200, "message": "ok", "json_data": json_data})

    client._send = fake_send
    session = _session_with_two_charts()
    session.payment.initial_balance_text = "500"

    link = session.share(client)
    loaded = BalanceSession()

    assert link == sessionid_to_link("abc")
    assert loaded.load_from_link(client, link)
    assert [chart.name for chart in loaded.charts.persisted] == ["world", "em"]
    assert loaded.payment.initial_balance == pytest.approx(500.0)


def test_load_from_link_keeps_state_on_failure() -> None:
    client = ShareLinkClient()
    client._send = lambda url, body=None: (404, "not found")
    session = _session_with_two_charts()

    assert not session.load_from_link(client, "abc")
    assert session.status_msg == "status 404, not found"
    assert len(session.charts.persisted) == 2


def test_export_csv_and_reset(tmp_path: Path) -> None:
    session = _session_with_two_charts()

    csv_path = session.export_csv(tmp_path / "charts.csv")
    lines = csv_path.read_text(encoding="utf-8").splitlines()

    assert lines[0].startswith(",2000/01,2000/02")
    assert lines[1].startswith("world,")
    assert lines[2].startswith("em,")

    session.reset()
    assert session.charts.persisted == []
    assert session.final_balance is None
