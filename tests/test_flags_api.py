import json
from unittest.mock import patch

import pytest
from sqlalchemy import text

from conftest import ENV_ID, SDK_KEY
from flagsvc.services.store import FlagStore

BASE = f"/environments/{ENV_ID}/flags"


@pytest.fixture
def flag(client):
    response = client.post(
        BASE,
        json={"key": "new_checkout", "name": "New Checkout", "enabled": True, "rollout_percentage": 0},
        headers={"X-Actor": "alice"},
    )
    assert response.status_code == 201
    return response.json()


class TestFlags:
    def test_create_and_get(self, client, flag):
        assert flag["key"] == "new_checkout"
        assert flag["name"] == "New Checkout"
        assert flag["environment_id"] == ENV_ID
        response = client.get(f"{BASE}/new_checkout")
        assert response.status_code == 200
        assert response.json()["id"] == flag["id"]

    def test_duplicate_key_conflicts(self, client, flag):
        response = client.post(BASE, json={"key": "new_checkout"})
        assert response.status_code == 409

    @pytest.mark.parametrize("key", ["New", "1abc", "has space", "a" * 65])
    def test_invalid_key_rejected(self, client, key):
        response = client.post(BASE, json={"key": key})
        assert response.status_code == 422

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_invalid_rollout_rejected(self, client, pct):
        response = client.post(BASE, json={"key": "ok", "rollout_percentage": pct})
        assert response.status_code == 422

    def test_unknown_environment(self, client):
        response = client.get("/environments/nope/flags")
        assert response.status_code == 404
        assert response.json()["detail"] == "environment not found"

    def test_missing_flag(self, client):
        assert client.get(f"{BASE}/missing").status_code == 404
        assert client.put(f"{BASE}/missing", json={"enabled": True}).status_code == 404
        assert client.delete(f"{BASE}/missing").status_code == 404

    def test_list_sorted_by_key(self, client):
        for key in ("zeta", "alpha", "mid"):
            client.post(BASE, json={"key": key})
        assert [f["key"] for f in client.get(BASE).json()] == ["alpha", "mid", "zeta"]

    def test_partial_update(self, client, flag):
        response = client.put(f"{BASE}/new_checkout", json={"rollout_percentage": 40, "enabled": None})
        assert response.status_code == 200
        body = response.json()
        assert body["rollout_percentage"] == 40
        assert body["enabled"] is True
        assert body["name"] == "New Checkout"

    def test_delete(self, client, flag):
        assert client.delete(f"{BASE}/new_checkout").status_code == 204
        assert client.get(f"{BASE}/new_checkout").status_code == 404

    def test_toggle_flips_kill_switch(self, client, flag, db):
        off = client.post(f"{BASE}/new_checkout/toggle", headers={"X-Actor": "oncall"})
        assert off.status_code == 200
        assert off.json()["enabled"] is False
        body = client.post("/sdk/v1/evaluate", json={"user_id": "u1"}, headers={"X-SDK-Key": SDK_KEY}).json()
        assert body["new_checkout"] == {"enabled": False, "reason": "disabled"}

        on = client.post(f"{BASE}/new_checkout/toggle")
        assert on.json()["enabled"] is True
        actions = [r.action for r in db.execute(text("SELECT action FROM audits ORDER BY id"))]
        assert actions == ["create", "toggle", "toggle"]

    def test_toggle_missing_flag(self, client):
        assert client.post(f"{BASE}/missing/toggle").status_code == 404

    def test_concurrent_duplicate_create_conflicts(self, client, flag):
        # the existence check passes, the unique constraint catches the duplicate
        with patch.object(FlagStore, "get_flag", return_value=None):
            response = client.post(BASE, json={"key": "new_checkout"})
        assert response.status_code == 409
        assert [f["key"] for f in client.get(BASE).json()] == ["new_checkout"]

    def test_writes_are_audited(self, client, flag, db):
        client.put(f"{BASE}/new_checkout", json={"enabled": False}, headers={"X-Actor": "bob"})
        client.delete(f"{BASE}/new_checkout")
        rows = db.execute(text("SELECT actor, action, before_state, after_state FROM audits ORDER BY id")).fetchall()
        assert [(r.actor, r.action) for r in rows] == [
            ("alice", "create"),
            ("bob", "update"),
            ("anonymous", "delete"),
        ]
        assert rows[0].before_state is None
        assert json.loads(rows[1].before_state)["enabled"] is True
        assert json.loads(rows[1].after_state)["enabled"] is False
        assert rows[2].after_state is None

    def test_changes_reach_evaluation(self, client, flag):
        headers = {"X-SDK-Key": SDK_KEY}
        before = client.post("/sdk/v1/evaluate", json={"user_id": "u9"}, headers=headers).json()
        assert before["new_checkout"]["reason"] == "rollout_excluded"
        client.put(f"{BASE}/new_checkout", json={"rollout_percentage": 100})
        after = client.post("/sdk/v1/evaluate", json={"user_id": "u9"}, headers=headers).json()
        assert after["new_checkout"] == {"enabled": True, "reason": "rollout"}


class TestRules:
    def rules_url(self, key="new_checkout"):
        return f"{BASE}/{key}/rules"

    def test_create_and_list_in_priority_order(self, client, flag):
        low = client.post(self.rules_url(), json={"rule_type": "user_id", "rule_value": "u1", "priority": 1})
        high = client.post(self.rules_url(), json={"rule_type": "email_domain", "rule_value": "@co.com", "priority": 9})
        assert low.status_code == 201
        assert high.status_code == 201
        assert low.json()["enabled"] is True
        listed = client.get(self.rules_url()).json()
        assert [r["id"] for r in listed] == [high.json()["id"], low.json()["id"]]

    @pytest.mark.parametrize(
        "payload",
        [
            {"rule_type": "country", "rule_value": "NZ"},
            {"rule_type": "email_domain", "rule_value": "co.com"},
            {"rule_type": "email_domain", "rule_value": "@c"},
            {"rule_type": "user_email", "rule_value": "not-an-email"},
            {"rule_type": "user_id", "rule_value": ""},
        ],
    )
    def test_invalid_rules_rejected(self, client, flag, payload):
        assert client.post(self.rules_url(), json=payload).status_code == 422

    def test_rules_for_missing_flag(self, client):
        assert client.get(self.rules_url("missing")).status_code == 404
        response = client.post(self.rules_url("missing"), json={"rule_type": "user_id", "rule_value": "u1"})
        assert response.status_code == 404

    def test_get_single_rule(self, client, flag):
        rule = client.post(self.rules_url(), json={"rule_type": "user_email", "rule_value": "u1@co.com"}).json()
        response = client.get(f"{self.rules_url()}/{rule['id']}")
        assert response.status_code == 200
        assert response.json() == rule
        assert client.get(f"{self.rules_url()}/nope").status_code == 404
        assert client.get(f"{self.rules_url('missing')}/{rule['id']}").status_code == 404

    def test_update_revalidates_value_against_type(self, client, flag):
        rule = client.post(self.rules_url(), json={"rule_type": "email_domain", "rule_value": "@co.com"}).json()
        bad = client.put(f"{self.rules_url()}/{rule['id']}", json={"rule_value": "co.org"})
        assert bad.status_code == 422
        good = client.put(f"{self.rules_url()}/{rule['id']}", json={"rule_value": "@co.org", "priority": 4})
        assert good.status_code == 200
        assert good.json()["rule_value"] == "@co.org"
        assert good.json()["priority"] == 4
        assert good.json()["rule_type"] == "email_domain"

    def test_disabling_rule_changes_evaluation(self, client, flag):
        rule = client.post(self.rules_url(), json={"rule_type": "user_id", "rule_value": "u1"}).json()
        headers = {"X-SDK-Key": SDK_KEY}
        on = client.post("/sdk/v1/evaluate", json={"user_id": "u1"}, headers=headers).json()
        assert on["new_checkout"]["reason"] == "rule_match"
        client.put(f"{self.rules_url()}/{rule['id']}", json={"enabled": False})
        off = client.post("/sdk/v1/evaluate", json={"user_id": "u1"}, headers=headers).json()
        assert off["new_checkout"] == {"enabled": False, "reason": "rollout_excluded"}

    def test_delete_rule(self, client, flag):
        rule = client.post(self.rules_url(), json={"rule_type": "user_id", "rule_value": "u1"}).json()
        assert client.delete(f"{self.rules_url()}/{rule['id']}").status_code == 204
        assert client.delete(f"{self.rules_url()}/{rule['id']}").status_code == 404
        assert client.get(self.rules_url()).json() == []


def test_health(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").json() == {"status": "ready"}


def test_metrics_exposed(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "flag_evaluations_total" in response.text
