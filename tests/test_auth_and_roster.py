"""
Tests for student/proctor login and roster management.
"""

import pytest

from exam_proctor.services import identity


class TestIdentityService:
    def test_student_login_opens_pending_session(self, db_session):
        result = identity.login(db_session, "STU001", "password123")

        assert result is not None
        student, exam_session = result
        assert student.name == "John Smith"
        assert exam_session.student_id == "STU001"
        assert exam_session.status == "pending"
        assert exam_session.session_id.startswith("session_")

    def test_each_login_gets_a_new_session(self, db_session):
        _, first = identity.login(db_session, "STU002", "password123")
        _, second = identity.login(db_session, "STU002", "password123")
        assert first.session_id != second.session_id

    @pytest.mark.parametrize("student_id,password", [("STU001", "wrong"), ("STU999", "password123"), ("admin", "admin123")])
    def test_bad_student_credentials(self, db_session, student_id, password):
        assert identity.login(db_session, student_id, password) is None

    def test_admin_login(self, db_session):
        assert identity.admin_login(db_session, "admin", "admin123").role == "admin"
        assert identity.admin_login(db_session, "admin", "nope") is None
        assert identity.admin_login(db_session, "STU001", "password123") is None

    def test_add_and_remove_student(self, db_session):
        profile = identity.add_student(db_session, "STU004", "Ada Lovelace", "Ada@Uni.edu", "secret1")
        assert profile.email == "ada@uni.edu"
        assert "STU004" in [s.student_id for s in identity.list_students(db_session)]
        assert identity.login(db_session, "STU004", "secret1") is not None

        assert identity.remove_student(db_session, "STU004") is True
        assert identity.remove_student(db_session, "STU004") is False

    def test_add_duplicate_student_raises(self, db_session):
        with pytest.raises(ValueError):
            identity.add_student(db_session, "STU001", "Dup", "dup@uni.edu", "x")

    def test_seeding_is_idempotent(self, db_session):
        identity.seed_default_users(db_session)
        assert len(identity.list_students(db_session)) == 3


class TestAuthRoutes:
    def test_student_login_sets_cookie_session(self, client):
        # Given / When
        response = client.post("/auth/login", json={"username": "STU001", "password": "password123"})
        # Then
        assert response.status_code == 200
        body = response.json()
        assert body["student"]["student_id"] == "STU001"
        me = client.get("/auth/me").json()
        assert me["role"] == "student"
        assert me["exam_session_id"] == body["session"]["session_id"]

    def test_bad_login_is_401(self, client):
        response = client.post("/auth/login", json={"username": "STU001", "password": "nope"})
        assert response.status_code == 401

    def test_missing_fields_are_422(self, client):
        response = client.post("/auth/login", json={"username": "STU001"})
        assert response.status_code == 422
        assert response.json()["detail"]

    def test_logout_clears_session(self, client):
        client.post("/auth/login", json={"username": "STU001", "password": "password123"})
        client.post("/auth/logout")
        assert client.get("/auth/me").status_code == 401

    def test_roster_requires_admin(self, client):
        assert client.get("/auth/students").status_code == 401
        client.post("/auth/login", json={"username": "STU001", "password": "password123"})
        assert client.get("/auth/students").status_code == 403

    def test_admin_manages_roster(self, admin_client):
        students = admin_client.get("/auth/students").json()
        assert [s["student_id"] for s in students] == ["STU001", "STU002", "STU003"]

        created = admin_client.post(
            "/auth/students",
            json={"student_id": "STU010", "name": "New", "email": "new@uni.edu", "password": "pw"},
        )
        assert created.status_code == 201

        duplicate = admin_client.post(
            "/auth/students",
            json={"student_id": "STU010", "name": "New", "email": "new@uni.edu", "password": "pw"},
        )
        assert duplicate.status_code == 400

        assert admin_client.delete("/auth/students/STU010").status_code == 200
        assert admin_client.delete("/auth/students/STU010").status_code == 404
