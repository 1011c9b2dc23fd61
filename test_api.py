"""HTTP surface of the scamscope API."""

import pytest
from fastapi.testclient import TestClient

from app import main
from scamscope import AnalyzeOptions, analyze_thread, vec_from_signals
from scamscope.models import SimIndexItem

API_KEY = "test-key"
HEADERS = {"x-api-key": API_KEY}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("API_KEY", API_KEY)
    return TestClient(main.app)


def test_health(client):
    resp = client.get("/")
    body = resp.json()

    assert resp.status_code == 200
    assert body["status"] == "online"
    assert body["version"] == main.VERSION


def test_missing_key_is_rejected(client):
    resp = client.post("/analyze", json={"threadText": "S: 안녕하세요"})
    assert resp.status_code == 401


def test_wrong_key_is_rejected(client):
    resp = client.post("/analyze", json={"threadText": "S: 안녕하세요"}, headers={"x-api-key": "nope"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid API key."


def test_rotated_keys_are_all_accepted(client, monkeypatch):
    monkeypatch.setenv("API_KEY", "old-key, new-key")
    for key in ("old-key", "new-key"):
        resp = client.post("/prefilter", json={"threadText": "S: 안녕하세요"}, headers={"x-api-key": key})
        assert resp.status_code == 200


def test_analyze(client):
    resp = client.post(
        "/analyze",
        json={"threadText": "S: KB국민은행 보안팀입니다. OTP 6자리 인증번호 알려주셔야 차단됩니다."},
        headers=HEADERS,
    )
    body = resp.json()

    assert resp.status_code == 200
    assert body["risk_level"] == "high"
    assert body["stage_peak"] == "verify"
    assert body["prefilter"]["gate_pass"] is True


def test_analyze_accepts_list_of_lines(client):
    resp = client.post(
        "/analyze",
        json={"threadText": ["S: 인증번호 6자리 보내주세요", "R: 네 알겠습니다"]},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    assert len(resp.json()["turns"]) == 2


def test_analyze_with_call_flags(client):
    resp = client.post(
        "/analyze",
        json={"threadText": "S: 안녕하세요", "callContext": {"otpAsked": True}},
        headers=HEADERS,
    )
    assert "call_otp" in {h["rule_id"] for h in resp.json()["hits"]}


def test_analyze_rejects_unknown_weights(client):
    resp = client.post(
        "/analyze",
        json={"threadText": "S: 안녕하세요", "weights": {"nope": 3}},
        headers=HEADERS,
    )
    assert resp.status_code == 400


def test_validation_errors_carry_a_message(client):
    resp = client.post("/analyze", json={"threadText": "x", "simTopK": 0}, headers=HEADERS)

    assert resp.status_code == 422
    assert resp.json()["message"] == "Invalid request payload."


def test_prefilter(client):
    resp = client.post(
        "/prefilter",
        json={"threadText": "S: 검찰입니다. 사건 관련 출석 바랍니다. 지금 2번출구로 와주세요"},
        headers=HEADERS,
    )
    body = resp.json()

    assert resp.status_code == 200
    assert body["gate_pass"] is True
    assert body["action"] == "soft"


def test_prefilter_open_url_action(client):
    resp = client.post(
        "/prefilter",
        json={"threadText": "S: https://photos.example.net/album", "explicitActions": {"openUrl": 1}},
        headers=HEADERS,
    )
    assert resp.json()["action"] == "auto"


def test_resolve_refuses_loopback(client):
    resp = client.post("/resolve", json={"url": "http://127.0.0.1/admin"}, headers=HEADERS)

    assert resp.status_code == 200
    assert resp.json()["error"] == "blocked-host"


def test_similar_with_vector(client, monkeypatch):
    monkeypatch.setattr(main, "sim_index", [SimIndexItem(id="KO-0008", expected_risk="high", vec={"otp": 1.0})])
    resp = client.post("/similar", json={"vec": {"otp": 1.0, "authority": 0.2}}, headers=HEADERS)
    body = resp.json()

    assert resp.status_code == 200
    assert [m["id"] for m in body["matches"]] == ["KO-0008"]
    assert body["matches"][0]["expected_risk"] == "high"


def test_similar_from_thread_text(client, monkeypatch):
    monkeypatch.setattr(main, "sim_index", [])
    resp = client.post("/similar", json={"threadText": "S: 인증번호 알려주세요"}, headers=HEADERS)
    body = resp.json()

    assert resp.status_code == 200
    assert body["matches"] == []
    assert body["query"]


def test_similar_from_thread_text_ranks_the_index(client, monkeypatch):
    thread = "S: KB국민은행 보안팀입니다. OTP 6자리 인증번호 알려주셔야 차단됩니다."
    query = vec_from_signals(analyze_thread(thread, options=AnalyzeOptions(prefilter_enabled=False)).signals)
    monkeypatch.setattr(main, "sim_index", [
        SimIndexItem(id="KO-0001", expected_risk="high", vec=query),
        SimIndexItem(id="KO-0999", vec={"unrelated_key": 1.0}),
    ])

    resp = client.post("/similar", json={"threadText": thread, "topK": 5}, headers=HEADERS)
    body = resp.json()

    assert resp.status_code == 200
    assert body["query"] == query
    assert [m["id"] for m in body["matches"]] == ["KO-0001"]
    assert body["matches"][0]["similarity"] == pytest.approx(1.0)
