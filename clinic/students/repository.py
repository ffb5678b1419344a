"""SQLite repository for student profiles."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from clinic.core.clock import Clock, now_ts, system_clock
from clinic.core.database import Database


class StudentProfile(BaseModel):
    """Academic data attached to a student account."""

    id: int | None = None
    user_id: int
    career_id: int | None = None
    enrollment_code: str | None = Field(default=None, max_length=30)
    cohort_year: int | None = None
    emergency_phone: str | None = Field(default=None, max_length=20)
    notes: str | None = None
    created_at: int = 0
    updated_at: int | None = None


class StudentProfileRepository:
    """Read and upsert ``student_profiles`` rows."""

    def __init__(self, database: Database, clock: Clock = system_clock) -> None:
        self._db = database
        self._clock = clock

    def get_by_user_id(self, user_id: int) -> StudentProfile | None:
        row = self._db.query_one(
            "SELECT * FROM student_profiles WHERE user_id = :user_id", {"user_id": user_id}
        )
        return StudentProfile.model_validate(row) if row else None

    def save(self, profile: StudentProfile) -> StudentProfile:
        """Insert or update the profile for ``profile.user_id``."""
        now = now_ts(self._clock)
        params: dict[str, Any] = profile.model_dump(
            include={"user_id", "career_id", "enrollment_code", "cohort_year", "emergency_phone", "notes"}
        )
        params["now"] = now
        self._db.run(
            """
            INSERT INTO student_profiles (
                user_id, career_id, enrollment_code, cohort_year,
                emergency_phone, notes, created_at
            ) VALUES (
                :user_id, :career_id, :enrollment_code, :cohort_year,
                :emergency_phone, :notes, :now
            )
            ON CONFLICT(user_id) DO UPDATE SET
                career_id = excluded.career_id,
                enrollment_code = excluded.enrollment_code,
                cohort_year = excluded.cohort_year,
                emergency_phone = excluded.emergency_phone,
                notes = excluded.notes,
                updated_at = :now
            """,
            params,
        )
        saved = self.get_by_user_id(profile.user_id)
        assert saved is not None
        return saved
