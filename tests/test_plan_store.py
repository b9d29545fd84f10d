import json
import os
import stat

import pytest

from conftest import make_plan
from near_swap.data.store import PlanExistsError, PlanNotFoundError, PlanStore, StoreError
from near_swap.plans.schemas import PlanStatus


def test_missing_and_empty_file_mean_empty_store(tmp_path):
    assert PlanStore(tmp_path / "nope.json").count() == 0

    empty = tmp_path / "empty.json"
    empty.write_text("")
    assert PlanStore(empty).list() == []


def test_malformed_file_raises_store_error(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(StoreError):
        PlanStore(bad)


def test_create_persists_and_reloads(tmp_path):
    path = tmp_path / "plans.json"
    store = PlanStore(path)
    store.create(make_plan("a"))

    doc = json.loads(path.read_text())
    assert list(doc["plans"]) == ["a"]
    assert doc["plans"]["a"]["price_condition"] == "below"

    reopened = PlanStore(path)
    plan = reopened.get("a")
    assert plan.source_token == "BTC"
    assert plan.status == PlanStatus.active
    assert not (tmp_path / "plans.json.tmp").exists()


def test_file_is_private(tmp_path):
    path = tmp_path / "plans.json"
    PlanStore(path).create(make_plan("a"))
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_create_duplicate_fails(store):
    store.create(make_plan("a"))
    with pytest.raises(PlanExistsError, match="already exists"):
        store.create(make_plan("a"))


def test_update_and_delete_require_existing_plan(store):
    with pytest.raises(PlanNotFoundError):
        store.update(make_plan("ghost"))
    with pytest.raises(PlanNotFoundError):
        store.delete("ghost")
    with pytest.raises(PlanNotFoundError, match="plan 'ghost' not found"):
        store.get("ghost")


def test_get_returns_a_copy(store):
    store.create(make_plan("a"))
    plan = store.get("a")
    plan.total_executed = "99"
    assert store.get("a").total_executed == "0"

    store.update(plan)
    assert store.get("a").total_executed == "99"


def test_list_where_filters_by_status(store):
    store.create(make_plan("a"))
    store.create(make_plan("b", status=PlanStatus.paused))
    store.create(make_plan("c"))

    assert [p.name for p in store.list_where(PlanStatus.active)] == ["a", "c"]
    assert [p.name for p in store.list_where("paused")] == ["b"]
    assert store.exists("b")

    store.delete("b")
    assert not store.exists("b")
    assert PlanStore(store.file_path).count() == 2
