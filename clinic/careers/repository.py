"""SQLite repository for careers and coordinator assignments."""

from __future__ import annotations

from pydantic import BaseModel

from clinic.core.database import Database


class Career(BaseModel):
    """Academic career (degree programme)."""

    id: int
    name: str
    code: str
    color: str | None = None
    active: bool = True


class CareerRepository:
    """Careers plus the coordinators assigned to them."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def create(self, name: str, code: str, color: str | None = None) -> Career:
        career_id = self._db.insert(
            "INSERT INTO careers (name, code, color) VALUES (:name, :code, :color)",
            {"name": name.strip(), "code": code.strip().upper(), "color": color},
        )
        row = self._db.query_one("SELECT * FROM careers WHERE id = :id", {"id": career_id})
        return Career.model_validate(row)

    def list_active(self) -> list[Career]:
        rows = self._db.query("SELECT * FROM careers WHERE active = 1 ORDER BY name ASC")
        return [Career.model_validate(row) for row in rows]

    def assign_coordinator(self, coordinator_id: int, career_id: int) -> None:
        """Assign (or re-activate) a coordinator on a career."""
        self._db.run(
            """
            INSERT INTO coordinator_careers (coordinator_id, career_id, active)
            VALUES (:coordinator_id, :career_id, 1)
            ON CONFLICT(coordinator_id, career_id) DO UPDATE SET active = 1
            """,
            {"coordinator_id": coordinator_id, "career_id": career_id},
        )

    def assigned_to_coordinator(self, coordinator_id: int) -> list[Career]:
        """Active careers with an active assignment for the coordinator."""
        rows = self._db.query(
            """
            SELECT c.id, c.name, c.code, c.color, c.active
            FROM coordinator_careers cc
            JOIN careers c ON c.id = cc.career_id
            WHERE cc.coordinator_id = :coordinator_id
              AND cc.active = 1
              AND c.active = 1
            ORDER BY c.name ASC
            """,
            {"coordinator_id": coordinator_id},
        )
        return [Career.model_validate(row) for row in rows]
