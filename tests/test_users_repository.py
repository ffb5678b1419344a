from __future__ import annotations

from pathlib import Path

import pytest

from clinic.users.models import UserCreate, UserType
from clinic.users.repository import DuplicateUserError, UserRepository
from tests.support import START_TS, FakeClock, create_user, make_database


def _repo(tmp_path: Path, clock: FakeClock | None = None) -> UserRepository:
    return UserRepository(make_database(tmp_path), clock or FakeClock())


def _seed(users: UserRepository) -> None:
    create_user(users, email="ana.rojas@clinic.cl", national_id="1-9", name="Ana Rojas")
    create_user(users, email="bruno.diaz@clinic.cl", national_id="2-7", name="Bruno Díaz", active=False)
    create_user(
        users,
        email="carla.soto@clinic.cl",
        national_id="3-5",
        name="Carla Soto",
        user_type=UserType.COORDINATOR,
    )
    create_user(
        users,
        email="admin@clinic.cl",
        national_id="4-3",
        name="Admin",
        user_type=UserType.ADMIN,
    )


def test_create_normalizes_and_stamps(tmp_path: Path) -> None:
    users = _repo(tmp_path)

    user = users.create(
        UserCreate(
            name="  Ana Rojas ",
            national_id=" 12345678-9 ",
            email="Ana.Rojas@Clinic.cl",
            password="Secret123",
            user_type=UserType.STUDENT,
        ),
        "hash",
    )

    assert user.name == "Ana Rojas"
    assert user.national_id == "12345678-9"
    assert user.email == "ana.rojas@clinic.cl"
    assert user.created_at == START_TS
    assert user.active
    assert users.get_by_email("ANA.ROJAS@clinic.cl").id == user.id
    assert users.get_by_national_id("12345678-9").id == user.id


def test_create_rejects_duplicate_email_and_national_id(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    create_user(users)

    with pytest.raises(DuplicateUserError) as email_exc:
        create_user(users, national_id="99-9")
    with pytest.raises(DuplicateUserError) as national_exc:
        create_user(users, email="otra@clinic.cl")

    assert email_exc.value.field == "email"
    assert national_exc.value.field == "national_id"


def test_availability_checks_exclude_given_id(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    user = create_user(users)

    assert not users.is_email_available("ana.rojas@clinic.cl")
    assert users.is_email_available("ana.rojas@clinic.cl", exclude_id=user.id)
    assert not users.is_national_id_available("12345678-9")
    assert users.is_national_id_available("12345678-9", exclude_id=user.id)


def test_list_filters_and_paginates(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    _seed(users)

    everyone, total = users.list()
    students, student_total = users.list({"user_type": "student"})
    inactive, _ = users.list({"active": False})
    found, _ = users.list({"search": "carla"})
    page_two, paged_total = users.list({}, page=2, per_page=3)

    assert total == 4
    assert [user.name for user in everyone] == ["Admin", "Ana Rojas", "Bruno Díaz", "Carla Soto"]
    assert student_total == 2
    assert {user.name for user in students} == {"Ana Rojas", "Bruno Díaz"}
    assert [user.name for user in inactive] == ["Bruno Díaz"]
    assert [user.name for user in found] == ["Carla Soto"]
    assert paged_total == 4
    assert [user.name for user in page_two] == ["Carla Soto"]


def test_update_applies_partial_changes(tmp_path: Path) -> None:
    clock = FakeClock()
    users = _repo(tmp_path, clock)
    user = create_user(users)
    clock.advance(60)

    updated = users.update(user.id, {"phone": "+56922222222", "name": None})

    assert updated.phone == "+56922222222"
    assert updated.name == "Ana Rojas"
    assert updated.updated_at == START_TS + 60


def test_update_rejects_taken_email(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    _seed(users)
    ana = users.get_by_email("ana.rojas@clinic.cl")

    with pytest.raises(DuplicateUserError):
        users.update(ana.id, {"email": "carla.soto@clinic.cl"})
    assert users.update(ana.id, {"email": "ANA.ROJAS@clinic.cl"}).email == "ana.rojas@clinic.cl"


def test_update_missing_user_returns_none(tmp_path: Path) -> None:
    assert _repo(tmp_path).update(404, {"name": "Nadie"}) is None


def test_password_update_clears_reset_token(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    user = create_user(users)
    users.save_reset_token(user.id, "tok", START_TS + 10)

    assert users.get_by_reset_token("tok").id == user.id

    users.update_password(user.id, "new-hash")
    refreshed = users.get_by_id(user.id)

    assert refreshed.password_hash == "new-hash"
    assert refreshed.reset_token is None
    assert users.get_by_reset_token("tok") is None


def test_reset_token_lookup_ignores_inactive_users(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    user = create_user(users, active=False)
    users.save_reset_token(user.id, "tok", START_TS + 10)

    assert users.get_by_reset_token("tok") is None
    assert users.get_by_reset_token("") is None


def test_activate_deactivate_and_delete(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    user = create_user(users)

    assert users.deactivate(user.id)
    assert not users.get_by_id(user.id).active
    assert users.activate(user.id)
    assert users.get_by_id(user.id).active
    assert users.delete(user.id)
    assert users.get_by_id(user.id) is None
    assert not users.delete(user.id)


def test_type_queries_and_counts(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    _seed(users)

    assert [user.name for user in users.get_by_type("student")] == ["Ana Rojas"]
    assert len(users.get_by_type("student", active_only=False)) == 2
    assert users.count_by_type() == {"admin": 1, "coordinator": 1, "student": 1}
    assert users.count_by_type(active_only=False)["student"] == 2


def test_search_honours_limit_and_filters(tmp_path: Path) -> None:
    users = _repo(tmp_path)
    _seed(users)

    assert len(users.search("clinic.cl", limit=2)) == 2
    assert [user.name for user in users.search("clinic.cl", {"user_type": "admin"})] == ["Admin"]
