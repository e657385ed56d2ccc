"""
Tests for registration and login
"""

from dmreply.models.user import MembershipType, User


class TestRegister:

    def test_register_creates_free_user(self, client, db_session):
        response = client.post("/api/auth/register", json={"email": "New@Example.com", "password": "longenough"})

        assert response.status_code == 201
        body = response.json()["user"]
        assert body["email"] == "new@example.com"
        assert body["membershipType"] == "FREE"

        user = db_session.query(User).filter(User.email == "new@example.com").one()
        assert user.hashed_password != "longenough"
        assert user.membership_type == MembershipType.FREE

    def test_duplicate_email_is_rejected(self, client, db_session):
        """Second registration with the same email fails and no row is added"""
        payload = {"email": "dup@example.com", "password": "longenough"}
        assert client.post("/api/auth/register", json=payload).status_code == 201

        response = client.post("/api/auth/register", json={"email": "DUP@example.com", "password": "another-one"})

        assert response.status_code == 400
        assert response.json() == {"error": "Email already registered"}
        assert db_session.query(User).filter(User.email == "dup@example.com").count() == 1

    def test_short_password(self, client):
        response = client.post("/api/auth/register", json={"email": "a@example.com", "password": "short"})
        assert response.status_code == 400

    def test_missing_fields(self, client):
        response = client.post("/api/auth/register", json={"email": "a@example.com"})
        assert response.status_code == 422


class TestLogin:

    def test_login_returns_custom_token(self, client, mock_firebase_auth):
        mock_firebase_auth.create_custom_token.return_value = b"custom-token"
        client.post("/api/auth/register", json={"email": "login@example.com", "password": "correct-horse"})

        response = client.post("/api/auth/login", json={"email": "login@example.com", "password": "correct-horse"})

        assert response.status_code == 200
        assert response.json() == {"token": "custom-token"}
        user_id = mock_firebase_auth.create_custom_token.call_args[0][0]
        assert user_id

    def test_wrong_password(self, client, mock_firebase_auth):
        client.post("/api/auth/register", json={"email": "login@example.com", "password": "correct-horse"})

        response = client.post("/api/auth/login", json={"email": "login@example.com", "password": "wrong-horse"})

        assert response.status_code == 401
        mock_firebase_auth.create_custom_token.assert_not_called()

    def test_oauth_only_user_cannot_password_login(self, client, make_user):
        user = make_user(email="oauth@example.com")

        response = client.post("/api/auth/login", json={"email": user.email, "password": "anything-at-all"})

        assert response.status_code == 401
