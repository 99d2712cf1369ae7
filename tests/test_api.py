"""
Test the HTTP surface end to end through FastAPI's TestClient.
"""

import inspect

import pytest
from fastapi.testclient import TestClient

from apps.api.container import ServiceContainer
from apps.api.main import create_app
from auth import admin_routes
from core.config import Settings
from storage.repository import DocumentRepository, NavigationRepository


class TestDocumentAPI:

    @pytest.fixture(autouse=True)
    def _app(self, settings, database, directory, workflow_config):
        self.directory = directory
        self.container = ServiceContainer(settings, database=database, workflow_config=workflow_config)

        with database.session_scope() as session:
            self.folder = DocumentRepository.create(session, "Contracts", ["legal"], sort_order=0)
            self.first = DocumentRepository.create(
                session, "NDA", ["legal"], parent_id=self.folder.document_id, sort_order=0, file_size=2 ** 40
            )
            self.second = DocumentRepository.create(
                session, "MSA", ["legal"], parent_id=self.folder.document_id, sort_order=1
            )
            self.ledger = DocumentRepository.create(session, "Ledger", ["finance"], sort_order=1)
            NavigationRepository.create(session, "Documents", "/documents", "file", "DOCUMENT_VIEW", 0)
            NavigationRepository.create(session, "Users", "/admin/users", "users", "USER_MANAGE", 1)
            NavigationRepository.create(session, "Help", "/help", None, None, 2)

        with TestClient(create_app(self.container)) as client:
            self.client = client
            yield

    def _headers(self, name):
        token = self.container.tokens.issue(self.directory.users[name])
        return {"Authorization": f"Bearer {token}"}

    def _get(self, path, user="viewer", **kwargs):
        return self.client.get(path, headers=self._headers(user), **kwargs)

    def _post(self, path, body=None, user="editor"):
        return self.client.post(path, json=body or {}, headers=self._headers(user))

    # ==================== AUTHENTICATION ====================

    def test_missing_token_is_401(self):
        response = self.client.get("/api/documents")
        assert response.status_code == 401
        assert response.json()["code"] == "Unauthenticated"

    def test_invalid_token_is_401(self):
        response = self.client.get("/api/documents", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_unknown_subject_is_401(self):
        token = self.container.tokens.issue("ghost")
        response = self.client.get("/api/documents", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    # ==================== READS ====================

    def test_list_is_filtered_by_group(self):
        response = self._get("/api/documents")
        assert response.status_code == 200
        titles = [d["title"] for d in response.json()["documents"]]
        assert sorted(titles) == ["Contracts", "MSA", "NDA"]

    def test_full_access_sees_everything(self):
        response = self._get("/api/documents", user="auditor")
        assert response.json()["count"] == 4

    def test_get_document(self):
        response = self._get(f"/api/documents/{self.first.document_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["fileSize"] == 2 ** 40
        assert isinstance(body["fileSize"], int)
        assert body["status"] == "DRAFT"

    def test_get_document_not_visible_is_403(self):
        response = self._get(f"/api/documents/{self.ledger.document_id}")
        assert response.status_code == 403
        assert response.json()["code"] == "Forbidden"

    def test_get_missing_document_is_404(self):
        assert self._get("/api/documents/missing").status_code == 404

    def test_hierarchy_with_parents(self):
        response = self._get(
            f"/api/documents/{self.first.document_id}/hierarchy",
            params={"maxDepth": 2, "withParents": "true"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["document"]["title"] == "NDA"
        assert [b["title"] for b in body["breadcrumb"]] == ["Contracts", "NDA"]

    def test_hierarchy_without_parents(self):
        response = self._get(f"/api/documents/{self.folder.document_id}/hierarchy")
        body = response.json()
        assert body["breadcrumb"] is None
        assert [c["title"] for c in body["document"]["children"]] == ["NDA", "MSA"]

    def test_hierarchy_negative_depth_is_400(self):
        response = self._get(f"/api/documents/{self.folder.document_id}/hierarchy", params={"maxDepth": -1})
        assert response.status_code == 400

    def test_siblings(self):
        response = self._get(f"/api/documents/{self.first.document_id}/siblings")
        assert response.json()["count"] == 1
        assert response.json()["siblings"][0]["title"] == "MSA"

    def test_transitions_for_editor(self):
        response = self._get(f"/api/documents/{self.first.document_id}/transitions", user="editor")
        body = response.json()
        assert body["currentStatus"] == "DRAFT"
        assert body["terminal"] is False
        assert {t["to"] for t in body["transitions"]} == {"IN_REVIEW", "PENDING_APPROVAL"}

    def test_navigation_is_filtered(self):
        viewer = [n["name"] for n in self._get("/api/navigation").json()["navigation"]]
        admin = [n["name"] for n in self._get("/api/navigation", user="admin").json()["navigation"]]
        assert viewer == ["Documents", "Help"]
        assert admin == ["Documents", "Users", "Help"]

    # ==================== WRITES ====================

    def test_create_document(self):
        response = self._post("/api/documents", {
            "title": "SOW", "accessGroups": ["legal"], "parentId": self.folder.document_id,
        })
        assert response.status_code == 201
        assert response.json()["sortOrder"] == 2

    def test_create_requires_capability(self):
        response = self._post("/api/documents", {"title": "SOW"}, user="viewer")
        assert response.status_code == 403

    def test_reorder(self):
        response = self._post("/api/documents/reorder", {
            "parentId": self.folder.document_id,
            "documentOrders": [
                {"id": self.first.document_id, "sortOrder": 1},
                {"id": self.second.document_id, "sortOrder": 0},
            ],
        })
        assert response.status_code == 200
        assert response.json()["count"] == 2

        children = self._get(f"/api/documents/{self.folder.document_id}/hierarchy").json()["document"]["children"]
        assert [c["title"] for c in children] == ["MSA", "NDA"]

    def test_reorder_requires_edit_capability(self):
        response = self._post("/api/documents/reorder", {
            "parentId": self.folder.document_id,
            "documentOrders": [{"id": self.first.document_id, "sortOrder": 1}],
        }, user="viewer")
        assert response.status_code == 403

    def test_reorder_duplicate_orders_is_400(self):
        response = self._post("/api/documents/reorder", {
            "parentId": self.folder.document_id,
            "documentOrders": [
                {"id": self.first.document_id, "sortOrder": 1},
                {"id": self.second.document_id, "sortOrder": 1},
            ],
        })
        assert response.status_code == 400
        assert response.json()["code"] == "ValidationError"

    def test_reorder_malformed_body_is_400(self):
        response = self._post("/api/documents/reorder", {"parentId": self.folder.document_id})
        assert response.status_code == 400

    def test_reorder_conflict_is_500(self):
        response = self._post("/api/documents/reorder", {
            "parentId": self.folder.document_id,
            "documentOrders": [
                {"id": self.first.document_id, "sortOrder": 1, "version": 99},
                {"id": self.second.document_id, "sortOrder": 0},
            ],
        })
        assert response.status_code == 500
        assert response.json()["code"] == "ConflictOnReorder"

    def test_move_into_descendant_is_400(self):
        response = self._post(
            f"/api/documents/{self.folder.document_id}/move", {"parentId": self.first.document_id}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "CycleDetected"

    def test_move_to_root(self):
        response = self._post(f"/api/documents/{self.second.document_id}/move", {"parentId": None})
        assert response.status_code == 200
        assert response.json()["parentId"] is None

    def test_status_workflow(self):
        doc_id = self.first.document_id
        assert self._post(f"/api/documents/{doc_id}/status", {"status": "IN_REVIEW"}).status_code == 200
        assert self._post(f"/api/documents/{doc_id}/status", {"status": "PENDING_APPROVAL"}).status_code == 200

        denied = self._post(f"/api/documents/{doc_id}/status", {"status": "APPROVED"})
        assert denied.status_code == 403
        assert denied.json()["code"] == "TransitionDenied"

        approved = self._post(f"/api/documents/{doc_id}/status", {"status": "APPROVED"}, user="admin")
        assert approved.status_code == 200
        assert approved.json()["document"]["status"] == "APPROVED"
        assert approved.json()["previousStatus"] == "PENDING_APPROVAL"

    def test_invalid_transition_is_400(self):
        response = self._post(f"/api/documents/{self.first.document_id}/status", {"status": "PUBLISHED"})
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidTransition"

    # ==================== ADMIN ====================

    def test_assign_capabilities_takes_effect_immediately(self):
        doc_id = self.first.document_id
        for status in ("IN_REVIEW", "PENDING_APPROVAL"):
            self._post(f"/api/documents/{doc_id}/status", {"status": status})
        assert self._post(f"/api/documents/{doc_id}/status", {"status": "APPROVED"}).status_code == 403

        caps = self.directory.capabilities
        response = self._post("/api/admin/capabilities/assign", {
            "roleId": self.directory.roles["editor"],
            "capabilityIds": [caps["DOCUMENT_VIEW"], caps["DOCUMENT_EDIT"], caps["DOCUMENT_APPROVE"]],
        }, user="admin")
        assert response.status_code == 200
        assert response.json()["count"] == 3

        assert self._post(f"/api/documents/{doc_id}/status", {"status": "APPROVED"}).status_code == 200

    def test_assign_capabilities_requires_role_manage(self):
        response = self._post("/api/admin/capabilities/assign", {
            "roleId": self.directory.roles["editor"], "capabilityIds": [],
        })
        assert response.status_code == 403

    def test_assign_unknown_capability_is_400(self):
        response = self._post("/api/admin/capabilities/assign", {
            "roleId": self.directory.roles["editor"], "capabilityIds": ["nope"],
        }, user="admin")
        assert response.status_code == 400

    def test_assign_to_missing_role_is_404(self):
        response = self._post("/api/admin/capabilities/assign", {
            "roleId": "missing", "capabilityIds": [],
        }, user="admin")
        assert response.status_code == 404

    def test_deactivating_user_role_revokes_access(self):
        reorder = {
            "parentId": self.folder.document_id,
            "documentOrders": [{"id": self.first.document_id, "sortOrder": 0}],
        }
        assert self._post("/api/documents/reorder", reorder).status_code == 200

        response = self._post(
            f"/api/admin/users/{self.directory.users['editor']}/roles",
            {"roleId": self.directory.roles["editor"], "isActive": False},
            user="admin",
        )
        assert response.status_code == 200
        assert response.json()["isActive"] is False

        assert self._post("/api/documents/reorder", reorder).status_code == 403

    def test_user_capabilities(self):
        response = self._get(f"/api/admin/users/{self.directory.users['editor']}/capabilities", user="admin")
        assert response.status_code == 200
        body = response.json()
        assert [r["name"] for r in body["roles"]] == ["editor"]
        assert body["capabilities"] == {"DOCUMENT_CREATE": False, "DOCUMENT_EDIT": False, "DOCUMENT_VIEW": False}
        assert body["isSuper"] is False

    def test_blocking_admin_routes_run_in_threadpool(self):
        # The role lookup is a blocking query and must stay off the event loop
        assert not inspect.iscoroutinefunction(admin_routes.get_user_capabilities)
        assert not inspect.iscoroutinefunction(admin_routes.get_role_capabilities)

    def test_role_capabilities(self):
        response = self._get(f"/api/admin/roles/{self.directory.roles['viewer']}/capabilities", user="admin")
        body = response.json()
        assert [c["name"] for c in body["capabilities"]] == ["DOCUMENT_VIEW"]
        assert sorted(body["userIds"]) == sorted([self.directory.users["viewer"], self.directory.users["finance"]])

    def test_role_capabilities_requires_role_manage(self):
        response = self._get(f"/api/admin/roles/{self.directory.roles['viewer']}/capabilities", user="editor")
        assert response.status_code == 403

    def test_clear_workflow_cache(self):
        assert self._post("/api/admin/clear-workflow-cache", user="admin").status_code == 200
        assert self._post("/api/admin/clear-workflow-cache", user="editor").status_code == 403

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] is True
        assert "X-Content-Type-Options" in response.headers

    def test_cache_stats_reflect_resolver_cache(self):
        self._get("/api/documents", user="viewer")
        stats = self._get("/api/admin/cache/stats", user="admin").json()
        # Both the viewer and the admin were resolved through the shared cache
        assert stats["entries"] == 2
        assert stats["ttl_seconds"] == 300


class TestServiceContainer:

    def test_resolver_uses_configured_cache(self, database):
        settings = Settings(database_url="sqlite://", jwt_secret="test-secret", capability_cache_ttl=5)
        container = ServiceContainer(settings, database=database, workflow_config={})
        try:
            assert container.resolver.cache is container.cache
            assert container.cache.stats()["ttl_seconds"] == 5
        finally:
            container.resolver.close()
