"""Tests for the REST API."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest
from fastapi.testclient import TestClient

from impulse_app.api.websocket import ConnectionManager
from impulse_app.main import create_app
from impulse_app.services.tick_engine import TickEngine
from impulse_core.models.config import EngineConfig
from impulse_core.models.events import EngineEvent, EngineStatus
from impulse_core.models.signal import Signal, TimeframeAnalysis

PAIRS = ["XRP/USDT", "SOL/USDT"]
T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_engine(provider=None) -> TickEngine:
    market = MagicMock()
    market.fetch_candles = AsyncMock(return_value=[])
    market.get_ticker_prices = AsyncMock(return_value={})
    return TickEngine(
        EngineConfig(trading_pairs=PAIRS),
        market,
        provider,
        clock=lambda: T0,
    )


@pytest.fixture
def engine():
    provider = MagicMock()
    provider.name = "internal"
    engine = make_engine(provider)
    signal = Signal(
        pair="XRP/USDT",
        action="hold",
        confidence=0.4,
        last_price=100.0,
        meta=[TimeframeAnalysis(timeframe="5m", signal="bull", confidence=0.6)],
    )
    engine.latest_signals["XRP/USDT"] = signal
    engine.latest_prices["XRP/USDT"] = 100.0
    return engine


@pytest.fixture
def client(engine):
    app = create_app(use_lifespan=False)
    app.state.engine = engine
    with TestClient(app) as test_client:
        yield test_client


class TestMeta:
    def test_root_and_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/").json()["name"] == "Impulse Heat"

    def test_no_engine_is_503(self):
        app = create_app(use_lifespan=False)
        with TestClient(app) as client:
            response = client.get("/api/status")
        assert response.status_code == 503


class TestStatus:
    def test_status(self, client):
        data = client.get("/api/status").json()
        assert data["status"] == "stopped"
        assert data["provider"] == "internal"
        assert data["trading_pairs"] == PAIRS
        assert data["open_trades"] == 0

    def test_heat(self, client):
        data = client.get("/api/heat").json()
        assert data["prices"] == {"XRP/USDT": 100.0}
        assert data["signals"][0]["pair"] == "XRP/USDT"

    def test_pause_when_stopped(self, client):
        response = client.post("/api/engine/pause")
        assert response.status_code == 200
        assert response.json()["status"] == "stopped"

    def test_unknown_command(self, client):
        assert client.post("/api/engine/explode").status_code == 422

    def test_start_without_provider(self):
        app = create_app(use_lifespan=False)
        app.state.engine = make_engine(provider=None)
        with TestClient(app) as client:
            response = client.post("/api/engine/start")
        assert response.status_code == 400
        assert "No signal provider" in response.json()["detail"]


class TestTrades:
    def test_manual_trade_lifecycle(self, client):
        response = client.post("/api/trades", json={"pair": "XRP/USDT", "direction": "LONG"})
        assert response.status_code == 201
        trade = response.json()
        assert trade["status"] == "pending"
        assert trade["take_profit"] == pytest.approx(103.0)

        confirmed = client.post(f"/api/trades/{trade['id']}/confirm").json()
        assert confirmed["status"] == "active"

        updated = client.patch(f"/api/trades/{trade['id']}", json={"take_profit": 110.0}).json()
        assert updated["take_profit"] == 110.0

        closed = client.post(f"/api/trades/{trade['id']}/close", json={"exit_price": 105.0}).json()
        assert closed["status"] == "closed"
        assert closed["close_reason"] == "manual"
        assert closed["pnl"] == pytest.approx(5.0)

        trades = client.get("/api/trades").json()
        assert trades["open"] == []
        assert len(trades["closed"]) == 1

    def test_close_without_body_uses_live_price(self, client):
        trade = client.post("/api/trades", json={"pair": "XRP/USDT", "direction": "SHORT"}).json()
        client.post(f"/api/trades/{trade['id']}/confirm")

        closed = client.post(f"/api/trades/{trade['id']}/close").json()
        assert closed["exit_price"] == 100.0
        assert closed["pnl"] == pytest.approx(0.0)

    def test_open_without_signal_is_409(self, client):
        response = client.post("/api/trades", json={"pair": "SOL/USDT", "direction": "LONG"})
        assert response.status_code == 409

    def test_second_open_same_pair_is_409(self, client):
        client.post("/api/trades", json={"pair": "XRP/USDT", "direction": "LONG"})
        response = client.post("/api/trades", json={"pair": "XRP/USDT", "direction": "SHORT"})
        assert response.status_code == 409

    def test_unknown_trade_is_404(self, client):
        assert client.post("/api/trades/nope/confirm").status_code == 404
        assert client.patch("/api/trades/nope", json={"stop_loss": 1.0}).status_code == 404

    def test_close_pending_is_409(self, client):
        trade = client.post("/api/trades", json={"pair": "XRP/USDT", "direction": "LONG"}).json()
        response = client.post(f"/api/trades/{trade['id']}/close")
        assert response.status_code == 409

    def test_invalid_update_is_400(self, client):
        trade = client.post("/api/trades", json={"pair": "XRP/USDT", "direction": "LONG"}).json()
        response = client.patch(f"/api/trades/{trade['id']}", json={"stop_loss": -1.0})
        assert response.status_code == 400


class TestPredictions:
    def test_predictions_with_accuracy(self, client, engine):
        engine.tracker.record_signal(engine.latest_signals["XRP/USDT"], T0)
        engine.tracker.resolve({"XRP/USDT": 101.0}, T0 + timedelta(minutes=6))

        data = client.get("/api/predictions").json()
        assert len(data["records"]) == 1
        assert data["records"][0]["success"] is True
        assert data["accuracy"] == [
            {"timeframe": "5m", "total": 1, "successes": 1, "sideways": 0, "success_rate": 1.0}
        ]


class TestWebSocket:
    def test_connect_and_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_text('{"type": "ping"}')
            assert ws.receive_json()["type"] == "pong"
            ws.send_text("not json")
            assert ws.receive_json()["data"]["message"] == "Invalid JSON"

    @pytest.mark.asyncio
    async def test_broadcast_drops_failed_clients(self):
        manager = ConnectionManager()
        healthy, broken = AsyncMock(), AsyncMock()
        broken.send_text.side_effect = RuntimeError("closed")
        await manager.connect(healthy)
        await manager.connect(broken)

        await manager.send_event(EngineEvent(type="status", status=EngineStatus.RUNNING))

        sent = orjson.loads(healthy.send_text.call_args.args[0])
        assert sent["type"] == "status"
        assert sent["data"]["status"] == "running"
        assert manager.connection_count == 1
