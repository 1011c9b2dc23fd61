"""Scenario similarity: query vectors, cosine ranking, index loading."""

import json
import logging
import math

import pytest

from scamscope.models import Signal, SimIndexItem
from scamscope.similarity import (
    SimIndexError,
    cosine,
    load_sim_index,
    parse_sim_index,
    rank_similar,
    vec_from_signals,
)


def sig(rule_id, weight):
    return Signal(id=rule_id, label=rule_id, weight_sum=weight)


# ============================================================================
# Vectors
# ============================================================================

def test_vec_from_signals_is_log_scaled_to_unit_max():
    vec = vec_from_signals([sig("authority", 20), sig("otp", 66)])

    assert vec["otp"] == 1.0
    assert vec["authority"] == pytest.approx(math.log1p(20) / math.log1p(66))


def test_vec_from_signals_skips_empty_and_zero_weights():
    assert vec_from_signals([]) == {}
    assert vec_from_signals([sig("otp", 0)]) == {}
    assert "zero" not in vec_from_signals([sig("otp", 10), sig("zero", 0)])


def test_vec_from_signals_keeps_top_k():
    vec = vec_from_signals([sig(f"r{i}", i + 1) for i in range(20)], top_k=5)
    assert set(vec) == {"r15", "r16", "r17", "r18", "r19"}


def test_cosine():
    a = {"otp": 1.0, "authority": 0.5}
    assert cosine(a, a) == pytest.approx(1.0)
    assert cosine(a, {"giftcard": 1.0}) == 0.0
    assert cosine(a, {}) == 0.0
    assert cosine({"otp": 1.0}, {"otp": 1.0, "authority": 1.0}) == pytest.approx(1 / math.sqrt(2))


# ============================================================================
# Ranking
# ============================================================================

ITEMS = [
    SimIndexItem(id="KO-1", label="OTP 탈취", vec={"otp": 1.0}),
    SimIndexItem(id="KO-2", category="기관사칭", vec={"otp": 1.0, "authority": 1.0}),
    SimIndexItem(id="KO-3", label="상품권", vec={"ctx_giftcard": 1.0}),
]


def test_rank_similar_orders_and_filters():
    matches = rank_similar({"otp": 1.0}, ITEMS)

    assert [m.id for m in matches] == ["KO-1", "KO-2"]
    assert matches[0].similarity == pytest.approx(1.0)
    assert matches[0].shared_top_keys == ["otp"]


def test_rank_similar_label_falls_back_to_category():
    matches = rank_similar({"otp": 1.0}, ITEMS)
    assert matches[1].label == "기관사칭 · KO-2"


def test_rank_similar_top_k_and_min_sim():
    assert len(rank_similar({"otp": 1.0}, ITEMS, top_k=1)) == 1
    assert [m.id for m in rank_similar({"otp": 1.0}, ITEMS, min_sim=0.9)] == ["KO-1"]


def test_rank_similar_non_positive_top_k_is_empty():
    assert rank_similar({"otp": 1.0}, ITEMS, top_k=0) == []
    assert rank_similar({"otp": 1.0}, ITEMS, top_k=-2) == []


def test_rank_similar_empty_inputs():
    assert rank_similar({}, ITEMS) == []
    assert rank_similar({"otp": 1.0}, []) == []


# ============================================================================
# Index loading
# ============================================================================

def test_load_without_path():
    assert load_sim_index(None) == []


def test_load_missing_file_warns(tmp_path, caplog):
    caplog.set_level(logging.WARNING, logger="scamscope.similarity")
    assert load_sim_index(tmp_path / "nope.json") == []
    assert "not found" in caplog.text


def test_load_valid_index(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({
        "version": 2,
        "lang": "ko",
        "items": [{"id": "KO-0008", "category": "기관사칭", "expectedRisk": "high",
                   "label": "검찰 사칭", "sample": "검찰입니다", "vec": {"authority": 1.0, "otp": 0.8}}],
    }, ensure_ascii=False), encoding="utf-8")

    items = load_sim_index(path)
    assert len(items) == 1
    assert items[0].expected_risk == "high"
    assert items[0].vec == {"authority": 1.0, "otp": 0.8}


def test_load_rejects_invalid_json(tmp_path):
    path = tmp_path / "index.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(SimIndexError):
        load_sim_index(path)


def test_parse_rejects_bad_documents():
    with pytest.raises(SimIndexError):
        parse_sim_index([])
    with pytest.raises(SimIndexError):
        parse_sim_index({"items": {"id": "x"}})
    with pytest.raises(SimIndexError):
        parse_sim_index({"items": [{"id": "x", "vec": "otp"}]})
