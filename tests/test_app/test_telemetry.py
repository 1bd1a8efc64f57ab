"""Tests for /api/v1/telemetry endpoints."""


class TestTelemetryIngest:

    def test_accepts_snapshot(self, client, base_time):
        """A valid snapshot is accepted with 202."""
        r = client.post(
            "/api/v1/telemetry",
            json={"userId": "ingest_a", "timestamp": base_time.isoformat(), "cartItems": 1},
        )
        assert r.status_code == 202
        data = r.json()
        assert data["status"] == "accepted"
        assert data["user_id"] == "ingest_a"

    def test_missing_user_id_rejected(self, client):
        """A payload without userId is rejected."""
        r = client.post("/api/v1/telemetry", json={"cartItems": 1})
        assert r.status_code == 422
        assert r.json()["error"] == "Invalid Telemetry"

    def test_negative_cart_rejected(self, client):
        """Negative cart counts are rejected."""
        r = client.post("/api/v1/telemetry", json={"userId": "bad", "cartItems": -2})
        assert r.status_code == 422

    def test_non_object_body_rejected(self, client):
        """The body must be a JSON object."""
        r = client.post("/api/v1/telemetry", json=[1, 2, 3])
        assert r.status_code == 422


class TestTelemetryProcess:

    def test_quiet_snapshot(self, client, base_time):
        """An engaged shopper gets a no-signals decision."""
        r = client.post(
            "/api/v1/telemetry/process",
            json={"userId": "process_quiet", "timestamp": base_time.isoformat()},
        )
        assert r.status_code == 200
        data = r.json()
        assert data["signals"]["engagement_score"] == 100
        assert data["decision"]["should_call"] is False
        assert data["decision"]["reason_code"] == "no_signals"
        assert data["dispatch"] is None

    def test_third_removal_dispatches_call(self, client, removal_sequence):
        """The third removal dispatches the forced call."""
        responses = [
            client.post("/api/v1/telemetry/process", json=p).json()
            for p in removal_sequence("process_forced")
        ]

        assert [r["decision"]["should_call"] for r in responses] == [False, False, False, True]
        forced = responses[-1]
        assert forced["decision"]["source"] == "forced-override"
        assert forced["signals"]["cart_removal_count"] == 3
        assert forced["dispatch"]["success"] is True
        assert forced["trend"]["data_points"] == 4

    def test_invalid_timestamp_rejected(self, client):
        """Unparseable timestamps are rejected with a reason."""
        r = client.post(
            "/api/v1/telemetry/process",
            json={"userId": "bad_time", "timestamp": "yesterday"},
        )
        assert r.status_code == 422
        assert "timestamp" in r.json()["detail"]
