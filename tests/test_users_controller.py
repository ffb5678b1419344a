from __future__ import annotations

from pathlib import Path

from clinic.users.controller import UserController
from clinic.users.models import User, UserType
from clinic.web.request import Request
from clinic.web.response import Response
from tests.support import AuthHarness, create_user, make_auth

NEW_USER = {
    "name": "Diego Fuentes",
    "national_id": "22333444-5",
    "email": "diego.fuentes@clinic.cl",
    "password": "Secret123",
    "user_type": "student",
}


def _setup(tmp_path: Path) -> tuple[AuthHarness, UserController, User]:
    harness = make_auth(tmp_path)
    admin = create_user(
        harness.users,
        email="admin@clinic.cl",
        national_id="1-9",
        name="Admin",
        user_type=UserType.ADMIN,
    )
    return harness, UserController(harness.users, harness.audit, harness.config.auth), admin


def _request(
    admin: User,
    method: str,
    uri: str,
    *,
    body: dict | None = None,
    params: dict | None = None,
) -> Request:
    request = Request(method, uri, body_params=body, client_ip="10.0.0.2")
    request.set_params(params or {})
    request.user = admin
    return request


def test_store_creates_user_and_audits(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    response = Response()

    result = controller.store(_request(admin, "POST", "/api/v1/users", body=NEW_USER), response)

    assert response.status_code == 201
    assert result["message"] == "User created"
    assert result["data"]["email"] == "diego.fuentes@clinic.cl"
    assert "password_hash" not in result["data"]
    entry = harness.audit.list_for_user(admin.id)[0]
    assert entry["action"] == "user_created"
    assert entry["affected_record_id"] == result["data"]["id"]
    assert "password_hash" not in entry["new_data"]


def test_store_reports_field_errors(tmp_path: Path) -> None:
    _, controller, admin = _setup(tmp_path)

    result = controller.store(
        _request(admin, "POST", "/api/v1/users", body={**NEW_USER, "email": "nope", "user_type": "guest"}),
        Response(),
    )

    assert result["code"] == 400
    assert result["error_code"] == "VALIDATION_ERROR"
    assert set(result["errors"]) == {"email", "user_type"}


def test_store_enforces_password_length(tmp_path: Path) -> None:
    _, controller, admin = _setup(tmp_path)

    result = controller.store(
        _request(admin, "POST", "/api/v1/users", body={**NEW_USER, "password": "abc"}), Response()
    )

    assert result["errors"] == {"password": "Password must be at least 8 characters"}


def test_store_rejects_duplicates(tmp_path: Path) -> None:
    _, controller, admin = _setup(tmp_path)

    result = controller.store(
        _request(admin, "POST", "/api/v1/users", body={**NEW_USER, "email": "admin@clinic.cl"}),
        Response(),
    )

    assert result["code"] == 400
    assert result["error_code"] == "CONFLICT"
    assert result["errors"] == {"email": "email is already registered"}


def test_index_paginates(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    create_user(harness.users)
    create_user(harness.users, email="b@clinic.cl", national_id="2-7", name="Bruno")

    result = controller.index(
        Request("GET", "/api/v1/users?user_type=student&per_page=1&page=2"), Response()
    )

    assert result["message"] == "Users retrieved"
    assert [user["name"] for user in result["data"]] == ["Bruno"]
    assert result["pagination"] == {"page": 2, "per_page": 1, "total": 2, "pages": 2}


def test_index_rejects_bad_query(tmp_path: Path) -> None:
    _, controller, _ = _setup(tmp_path)

    result = controller.index(Request("GET", "/api/v1/users?page=abc"), Response())

    assert result["code"] == 400


def test_show_and_missing_user(tmp_path: Path) -> None:
    _, controller, admin = _setup(tmp_path)

    found = controller.show(_request(admin, "GET", "/", params={"id": str(admin.id)}), Response())
    missing = controller.show(_request(admin, "GET", "/", params={"id": "999"}), Response())
    bogus = controller.show(_request(admin, "GET", "/", params={"id": "abc"}), Response())

    assert found["data"]["id"] == admin.id
    assert missing["code"] == 404
    assert missing["message"] == "User not found"
    assert bogus["code"] == 404


def test_update_audits_old_and_new(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    user = create_user(harness.users)

    result = controller.update(
        _request(admin, "PUT", "/", body={"phone": "+56933333333"}, params={"id": str(user.id)}),
        Response(),
    )

    assert result["data"]["phone"] == "+56933333333"
    entry = harness.audit.list_for_user(admin.id)[0]
    assert entry["action"] == "user_updated"
    assert entry["old_data"]["phone"] is None
    assert entry["new_data"]["phone"] == "+56933333333"


def test_update_rejects_duplicate_national_id(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    user = create_user(harness.users)

    result = controller.update(
        _request(admin, "PUT", "/", body={"national_id": "1-9"}, params={"id": str(user.id)}),
        Response(),
    )

    assert result["errors"] == {"national_id": "national_id is already registered"}


def test_activate_and_deactivate(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    user = create_user(harness.users)
    params = {"id": str(user.id)}

    off = controller.deactivate(_request(admin, "PATCH", "/", params=params), Response())
    assert off["message"] == "User deactivated"
    assert not harness.users.get_by_id(user.id).active

    on = controller.activate(_request(admin, "PATCH", "/", params=params), Response())
    assert on["message"] == "User activated"
    assert harness.users.get_by_id(user.id).active


def test_admin_cannot_deactivate_or_delete_self(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    params = {"id": str(admin.id)}

    deactivate = controller.deactivate(_request(admin, "PATCH", "/", params=params), Response())
    destroy = controller.destroy(_request(admin, "DELETE", "/", params=params), Response())

    assert deactivate["message"] == "You cannot deactivate your own account"
    assert destroy["message"] == "You cannot delete your own account"
    assert harness.users.get_by_id(admin.id).active


def test_admin_cannot_demote_or_deactivate_self_through_update(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    params = {"id": str(admin.id)}

    deactivate = controller.update(
        _request(admin, "PUT", "/", body={"active": False}, params=params), Response()
    )
    demote = controller.update(
        _request(admin, "PUT", "/", body={"user_type": "student"}, params=params), Response()
    )
    rename = controller.update(
        _request(admin, "PUT", "/", body={"name": "Admin Two", "user_type": "admin"}, params=params),
        Response(),
    )

    assert deactivate["message"] == "You cannot deactivate your own account"
    assert deactivate["code"] == 400
    assert demote["message"] == "You cannot change your own role"
    assert rename["data"]["name"] == "Admin Two"
    stored = harness.users.get_by_id(admin.id)
    assert stored.active
    assert stored.user_type == UserType.ADMIN


def test_destroy_deletes_and_audits(tmp_path: Path) -> None:
    harness, controller, admin = _setup(tmp_path)
    user = create_user(harness.users)

    result = controller.destroy(_request(admin, "DELETE", "/", params={"id": str(user.id)}), Response())

    assert result["message"] == "User deleted"
    assert harness.users.get_by_id(user.id) is None
    assert harness.audit.list_for_user(admin.id)[0]["action"] == "user_deleted"
