"""
Direct-flow toggle tests.

With the flag on, a DRC convener "approve" completes a PhD request
without the HOD review; "forward_to_hod" is unaffected.
"""

from conftest import ADMIN, CONVENER, HOD, STUDENT, auth, create_request, open_todos

from app.models.feature_flag import DIRECT_FLOW_FLAG
from app.services import feature_flag_service

URL = "/api/v1/phd-workflow/settings/direct-flow"


def _convener(client, rid, **payload):
    return client.post(f"/api/v1/phd-requests/{rid}/drc-convener-review", json=payload, headers=auth(CONVENER))


class TestSettingsEndpoint:
    def test_default_comes_from_config(self, client, users):
        res = client.get(URL, headers=auth(STUDENT))
        assert res.status_code == 200
        assert res.get_json() == {"key": DIRECT_FLOW_FLAG, "enabled": False}

    def test_admin_toggles(self, client, users):
        res = client.put(URL, json={"enabled": True}, headers=auth(ADMIN))
        assert res.status_code == 200
        body = res.get_json()
        assert body["enabled"] is True
        assert body["updated_by"] == ADMIN
        assert feature_flag_service.is_direct_flow_enabled() is True

        res = client.put(URL, json={"enabled": "false"}, headers=auth(ADMIN))
        assert res.get_json()["enabled"] is False

    def test_non_admin_cannot_toggle(self, client, users):
        res = client.put(URL, json={"enabled": True}, headers=auth(CONVENER))
        assert res.status_code == 403
        assert feature_flag_service.is_direct_flow_enabled() is False

    def test_enabled_is_required(self, client, users):
        res = client.put(URL, json={}, headers=auth(ADMIN))
        assert res.status_code == 400

    def test_config_default_applies_until_first_write(self, app, users):
        app.config["PHD_DIRECT_FLOW"] = True
        try:
            assert feature_flag_service.is_direct_flow_enabled() is True
            feature_flag_service.set_flag(DIRECT_FLOW_FLAG, False, updated_by=ADMIN)
            assert feature_flag_service.is_direct_flow_enabled() is False
        finally:
            app.config["PHD_DIRECT_FLOW"] = False


class TestDirectFlowRouting:
    def test_approve_completes_request(self, client, users):
        feature_flag_service.set_flag(DIRECT_FLOW_FLAG, True, updated_by=ADMIN)
        rid = create_request(client).get_json()["id"]
        res = _convener(client, rid, action="approve")
        assert res.get_json()["status"] == "completed"
        assert open_todos(HOD) == []

    def test_forward_to_hod_still_goes_to_hod(self, client, users):
        feature_flag_service.set_flag(DIRECT_FLOW_FLAG, True, updated_by=ADMIN)
        rid = create_request(client).get_json()["id"]
        res = _convener(client, rid, action="forward_to_hod")
        assert res.get_json()["status"] == "hod_review"
        assert open_todos(HOD) == [f"phd-request:hod-review:{rid}"]

    def test_flag_off_approve_goes_to_hod(self, client, users):
        rid = create_request(client).get_json()["id"]
        res = _convener(client, rid, action="approve")
        assert res.get_json()["status"] == "hod_review"
