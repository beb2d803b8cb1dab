def test_signup_returns_role(signup, db):
    res = signup(role="admin")
    assert res.status_code == 200
    assert res.json() == {"success": True, "role": "admin"}
    user = db["user"].find_one({"email": "ana@example.com"})
    assert user["isFirstLogin"] is True
    assert user["wishlist"] == []
    assert user["password"] != "secret1"


def test_signup_defaults_to_user_role(client):
    res = client.post("/signup", json={
        "name": "Bo", "email": "bo@example.com", "password": "pw", "confirm": "pw",
    })
    assert res.status_code == 200
    assert res.json()["role"] == "user"


def test_signup_password_mismatch_creates_nothing(client, db):
    res = client.post("/signup", json={
        "name": "Ana", "email": "ana@example.com", "password": "a", "confirm": "b", "role": "user",
    })
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Passwords do not match"}
    assert db["user"].count_documents({}) == 0


def test_signup_duplicate_email_conflicts(signup, db):
    assert signup().status_code == 200
    res = signup(email="ANA@example.com", name="Other")
    assert res.status_code == 409
    assert res.json()["success"] is False
    assert db["user"].count_documents({}) == 1


def test_signup_rejects_unknown_role(signup):
    res = signup(role="superuser")
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_signup_missing_field_is_400(client):
    res = client.post("/signup", json={"email": "ana@example.com", "password": "x", "confirm": "x"})
    assert res.status_code == 400
    assert "name" in res.json()["message"]


def test_login_unknown_user(client):
    res = client.post("/login", json={"email": "nobody@example.com", "password": "x", "role": "user"})
    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "User not found"}


def test_login_wrong_password(signup, client):
    signup()
    res = client.post("/login", json={"email": "ana@example.com", "password": "wrong", "role": "user"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid password"


def test_login_wrong_role_names_stored_role(signup, client):
    signup(role="admin")
    res = client.post("/login", json={"email": "ana@example.com", "password": "secret1", "role": "user"})
    assert res.status_code == 403
    assert res.json()["message"] == "Incorrect role. Registered as admin"


def test_login_wrong_role_does_not_consume_first_login(signup, client, db):
    signup()
    client.post("/login", json={"email": "ana@example.com", "password": "secret1", "role": "admin"})
    assert db["user"].find_one({"email": "ana@example.com"})["isFirstLogin"] is True


def test_first_login_reported_once(signup, client, db):
    signup()
    body = {"email": "ana@example.com", "password": "secret1", "role": "user"}

    first = client.post("/login", json=body)
    assert first.status_code == 200
    assert first.json() == {"success": True, "role": "user", "isNewUser": True}
    assert db["user"].find_one({"email": "ana@example.com"})["isFirstLogin"] is False

    second = client.post("/login", json=body)
    assert second.json()["isNewUser"] is False


def test_login_email_is_case_insensitive(signup, client):
    signup()
    res = client.post("/login", json={"email": "Ana@Example.com", "password": "secret1", "role": "user"})
    assert res.status_code == 200


def test_password_never_returned(signup, client, db, make_product):
    signup()
    product = make_product()
    client.post("/wishlist", json={"email": "ana@example.com", "productId": product["_id"]})
    client.post("/orders", json={
        "email": "ana@example.com",
        "products": [{"productId": product["_id"], "quantity": 1}],
        "totalAmount": 499,
    })
    orders = client.get("/orders").json()
    assert "password" not in orders[0]["userId"]


def test_signup_race_on_same_email_conflicts(client, db, monkeypatch):
    import main

    def hash_while_other_signup_lands(password):
        # another request inserts the same email between the check and the insert
        db["user"].insert_one({"name": "Bob", "email": "bob@example.com", "password": "x", "role": "user"})
        return "hashed"

    monkeypatch.setattr(main, "hash_password", hash_while_other_signup_lands)
    res = client.post("/signup", json={
        "name": "Bob", "email": "bob@example.com", "password": "pw", "confirm": "pw", "role": "user",
    })
    assert res.status_code == 409
    assert res.json() == {"success": False, "message": "Email already exists"}
    assert db["user"].count_documents({"email": "bob@example.com"}) == 1


def test_signup_existing_stored_user_conflicts(signup, db, client):
    db["user"].insert_one({"name": "Bob", "email": "bob@example.com", "password": "x", "role": "user"})
    res = signup(email="bob@example.com", name="Bob")
    assert res.status_code == 409


def test_login_with_unvalidated_email_is_not_found(client):
    res = client.post("/login", json={"email": "a@b", "password": "x", "role": "user"})
    assert res.status_code == 404
    assert res.json()["message"] == "User not found"


def test_login_against_legacy_account(client, db):
    import main

    db["user"].insert_one({
        "name": "Old",
        "email": "old@localhost",
        "password": main.hash_password("pw"),
        "role": "user",
    })
    res = client.post("/login", json={"email": "old@localhost", "password": "pw", "role": "user"})
    assert res.status_code == 200
    assert res.json()["isNewUser"] is True
