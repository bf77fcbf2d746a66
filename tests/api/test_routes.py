"""HTTP surface: routes, camelCase payloads and the error envelope."""

import io

import pytest

from quality_api import create_app
from quality_config import QualityConfig
from quality_kernel.exceptions import ConcurrencyConflictError, ObjectStorageError
from quality_kernel.services import DispositionApprovalService, InMemoryObjectStorage, MRBProjector

HEADERS = {"X-User": "qa.tester"}


class FailingStorage(InMemoryObjectStorage):

    def put(self, key, data, content_type):
        raise ObjectStorageError(key, "bucket unreachable")


@pytest.fixture
def app(session_factory, clock, notifier, storage):
    app = create_app(
        QualityConfig(),
        session_factory=session_factory,
        clock=clock,
        notifier=notifier,
        storage=storage,
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ncr(client):
    resp = client.post(
        "/ncrs",
        json={"title": "Damaged packaging", "area": "Receiving", "severity": "major"},
        headers=HEADERS,
    )
    assert resp.status_code == 201
    return resp.get_json()


def assert_error(resp, status, kind, code):
    assert resp.status_code == status
    error = resp.get_json()["error"]
    assert error["kind"] == kind
    assert error["code"] == code
    assert error["message"]


class TestRequestContext:

    def test_request_id_is_echoed(self, client):
        resp = client.get("/ncrs", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client):
        assert client.get("/ncrs").headers["X-Request-ID"]


class TestNCRRoutes:

    def test_create_returns_camel_case(self, ncr):
        assert ncr["number"] == "RCV-20250206-1405"
        assert ncr["status"] == "open"
        assert ncr["reportedBy"] == "qa.tester"
        assert ncr["linkedCapaId"] is None
        assert ncr["disposition"]["decision"] == "use_as_is"
        assert ncr["createdAt"].startswith("2025-02-06T14:05:00")

    def test_critical_ncr_links_capa(self, client):
        resp = client.post("/ncrs", json={"title": "Cracked weld", "severity": "critical"})
        capa_id = resp.get_json()["linkedCapaId"]
        assert capa_id
        capa = client.get(f"/capas/{capa_id}").get_json()
        assert capa["status"] == "open"
        assert capa["priority"] == "high"

    def test_list_and_filter(self, client, ncr):
        body = client.get("/ncrs").get_json()
        assert isinstance(body, list)
        assert [n["id"] for n in body] == [ncr["id"]]
        assert client.get("/ncrs?status=closed").get_json() == []

    def test_list_bad_status(self, client):
        assert_error(client.get("/ncrs?status=archived"), 400, "ValidationError", "INVALID_FIELD_VALUE")

    def test_missing_title(self, client):
        assert_error(client.post("/ncrs", json={"area": "Receiving"}), 400, "ValidationError", "MISSING_FIELD")

    def test_invalid_json(self, client):
        resp = client.post("/ncrs", data="{not json", content_type="application/json")
        assert_error(resp, 400, "ValidationError", "VALIDATION_ERROR")

    def test_unknown_ncr(self, client):
        assert_error(client.get("/ncrs/nope"), 404, "NotFound", "NCR_NOT_FOUND")

    def test_patch_changes_only_named_fields(self, client, ncr):
        resp = client.patch(f"/ncrs/{ncr['id']}", json={"quantityAffected": 4})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["quantityAffected"] == 4
        assert body["title"] == ncr["title"]
        assert body["version"] == ncr["version"] + 1

    def test_patch_rejects_immutable_fields(self, client, ncr):
        resp = client.put(f"/ncrs/{ncr['id']}", json={"number": "X-1"})
        assert_error(resp, 400, "ValidationError", "UNKNOWN_FIELD")

    def test_patch_to_closed_is_invalid_transition(self, client, ncr):
        resp = client.patch(f"/ncrs/{ncr['id']}", json={"status": "closed"})
        assert_error(resp, 400, "InvalidTransition", "INVALID_NCR_TRANSITION")

    def test_escalate(self, client, ncr):
        resp = client.post(f"/ncrs/{ncr['id']}/escalate")
        assert resp.status_code == 200
        mrb = resp.get_json()
        assert mrb["id"] == f"mrb-{ncr['id']}"
        assert mrb["isVirtual"] is True
        assert mrb["status"] == "pending_disposition"


class TestAttachmentRoutes:

    def test_upload_and_delete(self, client, ncr, storage):
        resp = client.post(
            f"/ncrs/{ncr['id']}/attachments",
            data={"file": (io.BytesIO(b"photo-bytes"), "crate.jpg", "image/jpeg")},
            content_type="multipart/form-data",
            headers=HEADERS,
        )
        assert resp.status_code == 201
        attachment = resp.get_json()
        assert attachment["name"] == "crate.jpg"
        assert attachment["size"] == 11
        assert attachment["uploadedBy"] == "qa.tester"
        assert len(storage.blobs) == 1

        resp = client.delete(f"/ncrs/{ncr['id']}/attachments/{attachment['id']}")
        assert resp.status_code == 200
        assert resp.get_json()["attachments"] == []
        assert storage.blobs == {}

    def test_upload_requires_file_part(self, client, ncr):
        resp = client.post(
            f"/ncrs/{ncr['id']}/attachments", data={}, content_type="multipart/form-data",
        )
        assert_error(resp, 400, "ValidationError", "MISSING_FIELD")

    def test_storage_failure_is_downstream_error(self, session_factory, clock, ncr):
        app = create_app(QualityConfig(), session_factory=session_factory, clock=clock, storage=FailingStorage())
        resp = app.test_client().post(
            f"/ncrs/{ncr['id']}/attachments",
            data={"file": (io.BytesIO(b"x"), "a.txt")},
            content_type="multipart/form-data",
        )
        assert_error(resp, 502, "DownstreamFailure", "OBJECT_STORAGE_FAILED")

    def test_delete_unknown_attachment(self, client, ncr):
        resp = client.delete(f"/ncrs/{ncr['id']}/attachments/missing")
        assert_error(resp, 404, "NotFound", "ATTACHMENT_NOT_FOUND")


class TestMRBRoutes:

    def test_virtual_mrb_approval_flow(self, client, ncr, notifier):
        client.post(f"/ncrs/{ncr['id']}/escalate")
        mrb_id = f"mrb-{ncr['id']}"

        listing = client.get("/mrb").get_json()
        assert isinstance(listing, list)
        assert [m["id"] for m in listing] == [mrb_id]

        first = client.post(
            f"/mrb/{mrb_id}/disposition/approve",
            json={"approvedBy": "mrb.engineer", "role": "Engineering"},
        )
        assert first.status_code == 200
        assert first.get_json()["status"] == "pending_disposition"

        second = client.post(
            f"/mrb/{mrb_id}/disposition/approve",
            json={"approvedBy": "mrb.quality", "approvedAt": "2025-02-06T15:00:00+00:00"},
        )
        body = second.get_json()
        assert body["status"] == "closed"
        assert [a["approver"] for a in body["disposition"]["approvals"]] == [
            "mrb.engineer",
            "mrb.quality",
        ]
        assert client.get(f"/mrb/{mrb_id}").get_json()["status"] == "closed"
        assert "disposition.closed" in notifier.events()

        third = client.post(f"/mrb/{mrb_id}/disposition/approve", json={"approvedBy": "plant.manager"})
        assert_error(third, 400, "ValidationError", "DISPOSITION_CLOSED")

    def test_duplicate_approval(self, client, ncr):
        client.post(f"/ncrs/{ncr['id']}/escalate")
        url = f"/mrb/mrb-{ncr['id']}/disposition/approve"
        client.post(url, json={"approvedBy": "mrb.engineer"})
        assert_error(
            client.post(url, json={"approvedBy": "mrb.engineer"}),
            400, "ValidationError", "DUPLICATE_APPROVAL",
        )

    def test_approve_requires_approver(self, client, ncr):
        client.post(f"/ncrs/{ncr['id']}/escalate")
        resp = client.post(f"/mrb/mrb-{ncr['id']}/disposition/approve", json={})
        assert_error(resp, 400, "ValidationError", "MISSING_FIELD")

    def test_approve_rejects_bad_timestamp(self, client, ncr):
        client.post(f"/ncrs/{ncr['id']}/escalate")
        resp = client.post(
            f"/mrb/mrb-{ncr['id']}/disposition/approve",
            json={"approvedBy": "mrb.engineer", "approvedAt": "yesterday"},
        )
        assert_error(resp, 400, "ValidationError", "INVALID_FIELD_VALUE")

    def test_approve_virtual_mrb_of_open_ncr(self, client, ncr):
        resp = client.post(f"/mrb/mrb-{ncr['id']}/disposition/approve", json={"approvedBy": "a"})
        assert_error(resp, 404, "NotFound", "MRB_NOT_FOUND")

    def test_concurrency_conflict_is_409(self, client, ncr, monkeypatch):
        def conflict(self, mrb_id, *args, **kwargs):
            raise ConcurrencyConflictError("NCR", ncr["id"], 3)

        monkeypatch.setattr(DispositionApprovalService, "approve_mrb", conflict)
        resp = client.post(f"/mrb/mrb-{ncr['id']}/disposition/approve", json={"approvedBy": "a"})
        assert_error(resp, 409, "ConcurrencyConflict", "CONCURRENCY_CONFLICT")

    def test_native_create_and_delete(self, client, ncr):
        resp = client.post(
            "/mrb",
            json={
                "title": "Supplier lot review",
                "sourceType": "NCR",
                "sourceId": ncr["id"],
                "linkedNcrs": [{"ncrId": ncr["id"], "dispositionNotes": "same lot"}],
            },
            headers=HEADERS,
        )
        assert resp.status_code == 201
        mrb = resp.get_json()
        assert mrb["number"] == "MRB-2025-0001"
        assert mrb["isVirtual"] is False
        assert mrb["linkedNcrs"] == [{"ncrId": ncr["id"], "dispositionNotes": "same lot"}]

        resp = client.delete(f"/mrb/{mrb['id']}")
        assert resp.status_code == 200
        assert resp.get_json() == {"deleted": mrb["id"]}
        assert_error(client.get(f"/mrb/{mrb['id']}"), 404, "NotFound", "MRB_NOT_FOUND")

    def test_delete_virtual_unescalates(self, client, ncr):
        client.post(f"/ncrs/{ncr['id']}/escalate")
        resp = client.delete(f"/mrb/mrb-{ncr['id']}")
        assert resp.status_code == 200
        assert resp.get_json() == {"deleted": f"mrb-{ncr['id']}"}
        assert client.get(f"/ncrs/{ncr['id']}").get_json()["status"] == "open"

    def test_unexpected_error_is_500(self, client, monkeypatch):
        def boom(self):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(MRBProjector, "list_all", boom)
        assert_error(client.get("/mrb"), 500, "Internal", "INTERNAL_ERROR")


class TestCAPARoutes:

    def test_create_transition_and_actions(self, client):
        resp = client.post("/capas", json={"title": "Fixture wear", "priority": "medium"}, headers=HEADERS)
        assert resp.status_code == 201
        capa = resp.get_json()
        assert capa["status"] == "draft"

        resp = client.put(f"/capas/{capa['id']}/status", json={"status": "open", "comment": "Approved"})
        assert resp.status_code == 200
        assert resp.get_json()["actions"][0]["description"] == "draft -> open"

        resp = client.post(
            f"/capas/{capa['id']}/actions",
            json={"type": "corrective", "description": "Replace locator pins"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["actions"][-1]["type"] == "corrective"

        listing = client.get("/capas?status=open").get_json()
        assert [c["id"] for c in listing] == [capa["id"]]

    def test_skipped_state_is_invalid_transition(self, client):
        capa = client.post("/capas", json={"title": "Fixture wear"}).get_json()
        resp = client.put(f"/capas/{capa['id']}/status", json={"status": "closed"})
        assert_error(resp, 400, "InvalidTransition", "INVALID_CAPA_TRANSITION")

    def test_status_required(self, client):
        capa = client.post("/capas", json={"title": "Fixture wear"}).get_json()
        assert_error(client.put(f"/capas/{capa['id']}/status", json={}), 400, "ValidationError", "MISSING_FIELD")

    def test_unknown_capa(self, client):
        assert_error(client.get("/capas/nope"), 404, "NotFound", "CAPA_NOT_FOUND")
