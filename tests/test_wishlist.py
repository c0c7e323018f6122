from bson import ObjectId


def test_add_then_duplicate_conflicts(client, db, buyer, make_property):
    property_id = make_property()
    body = {"userEmail": "buyer@example.com", "propertyId": property_id}

    first = client.post("/wishlist", json=body, headers=buyer)
    assert first.status_code == 200
    second = client.post("/wishlist", json=body, headers=buyer)
    assert second.status_code == 409
    assert db["wishlist"].count_documents({"userEmail": "buyer@example.com", "propertyId": property_id}) == 1


def test_property_id_is_normalized_to_string(client, db, buyer):
    client.post("/wishlist", json={"userEmail": "buyer@example.com", "propertyId": 42}, headers=buyer)
    assert db["wishlist"].find_one({"userEmail": "buyer@example.com"})["propertyId"] == "42"
    res = client.get("/wishlist/exists", params={"email": "buyer@example.com", "propertyId": "42"}, headers=buyer)
    assert res.json() == {"exists": True}


def test_exists_list_get_remove(client, buyer, make_property):
    kept, other = make_property(), make_property(title="Other")
    added = client.post("/wishlist", json={"userEmail": "buyer@example.com", "propertyId": kept}, headers=buyer)
    item_id = added.json()["insertedId"]

    exists = client.get("/wishlist/exists", params={"email": "buyer@example.com", "propertyId": kept}, headers=buyer)
    assert exists.json() == {"exists": True}
    missing = client.get("/wishlist/exists", params={"email": "buyer@example.com", "propertyId": other}, headers=buyer)
    assert missing.json() == {"exists": False}

    items = client.get("/wishlist", params={"email": "buyer@example.com"}, headers=buyer).json()
    assert [i["propertyId"] for i in items] == [kept]

    assert client.get(f"/wishlist/{item_id}", headers=buyer).json()["propertyId"] == kept
    assert client.delete(f"/wishlist/{item_id}", headers=buyer).json() == {"deletedCount": 1}
    assert client.get(f"/wishlist/{item_id}", headers=buyer).status_code == 404


def test_missing_fields(client, buyer):
    assert client.post("/wishlist", json={"userEmail": "buyer@example.com"}, headers=buyer).status_code == 400


def test_wishlist_is_private(client, db, buyer, make_user, auth):
    make_user("other@example.com")
    item_id = str(db["wishlist"].insert_one({"userEmail": "other@example.com", "propertyId": "p1"}).inserted_id)

    assert client.post("/wishlist", json={"userEmail": "other@example.com", "propertyId": "p2"}, headers=buyer).status_code == 403
    assert client.get("/wishlist", params={"email": "other@example.com"}, headers=buyer).status_code == 403
    assert client.delete(f"/wishlist/{item_id}", headers=buyer).status_code == 403
    assert client.get(f"/wishlist/{ObjectId()}", headers=buyer).status_code == 404
