from decimal import Decimal


def test_list_cars_only_shows_available(client, make_user, make_car):
    seller = make_user()
    make_car(seller, make="Toyota")
    make_car(seller, make="Honda", status="sold")
    make_car(seller, make="Ford", status="pending")

    r = client.get("/api/cars")
    assert r.status_code == 200
    body = r.json()
    assert [c["make"] for c in body["cars"]] == ["Toyota"]
    assert body["pagination"]["total"] == 1


def test_pagination(client, make_user, make_car):
    seller = make_user()
    for i in range(5):
        make_car(seller, model=f"Model{i}")

    r = client.get("/api/cars", params={"page": 1, "limit": 2})
    assert r.status_code == 200
    body = r.json()
    assert len(body["cars"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}

    r = client.get("/api/cars", params={"page": 3, "limit": 2})
    assert len(r.json()["cars"]) == 1

    r = client.get("/api/cars", params={"page": 4, "limit": 2})
    assert r.json()["cars"] == []


def test_pagination_rejects_bad_limits(client):
    assert client.get("/api/cars", params={"limit": 101}).status_code == 400
    assert client.get("/api/cars", params={"page": 0}).status_code == 400


def test_filter_by_make_is_case_insensitive_substring(client, make_user, make_car):
    seller = make_user()
    make_car(seller, make="Toyota")
    make_car(seller, make="Honda")

    r = client.get("/api/cars", params={"make": "toy"})
    assert [c["make"] for c in r.json()["cars"]] == ["Toyota"]


def test_filter_by_price_and_year_range(client, make_user, make_car):
    seller = make_user()
    make_car(seller, model="Cheap", price=Decimal("5000"), year=2010)
    make_car(seller, model="Mid", price=Decimal("25000"), year=2018)
    make_car(seller, model="Pricey", price=Decimal("90000"), year=2023)

    r = client.get("/api/cars", params={"minPrice": 20000, "maxPrice": 30000})
    assert [c["model"] for c in r.json()["cars"]] == ["Mid"]

    r = client.get("/api/cars", params={"minYear": 2015})
    assert {c["model"] for c in r.json()["cars"]} == {"Mid", "Pricey"}

    # An exact year takes precedence over the range
    r = client.get("/api/cars", params={"year": 2010, "minYear": 2015})
    assert [c["model"] for c in r.json()["cars"]] == ["Cheap"]


def test_filter_by_mileage(client, make_user, make_car):
    seller = make_user()
    make_car(seller, model="Low", mileage=5000)
    make_car(seller, model="High", mileage=150000)

    r = client.get("/api/cars", params={"maxMileage": 10000})
    assert [c["model"] for c in r.json()["cars"]] == ["Low"]


def test_search_matches_make_model_and_description(client, make_user, make_car):
    seller = make_user()
    make_car(seller, make="Toyota", model="Camry", description="Family sedan")
    make_car(seller, make="Ford", model="Mustang", description="Fast and loud")

    r = client.get("/api/cars", params={"search": "mustang"})
    assert [c["make"] for c in r.json()["cars"]] == ["Ford"]

    r = client.get("/api/cars", params={"search": "family"})
    assert [c["make"] for c in r.json()["cars"]] == ["Toyota"]


def test_search_treats_wildcards_literally(client, make_user, make_car):
    seller = make_user()
    make_car(seller, make="Toyota")

    r = client.get("/api/cars", params={"search": "%"})
    assert r.json()["cars"] == []


def test_sort_by_price(client, make_user, make_car):
    seller = make_user()
    make_car(seller, model="B", price=Decimal("20000"))
    make_car(seller, model="A", price=Decimal("10000"))
    make_car(seller, model="C", price=Decimal("30000"))

    r = client.get("/api/cars", params={"sortBy": "price", "sortOrder": "asc"})
    assert [c["model"] for c in r.json()["cars"]] == ["A", "B", "C"]

    r = client.get("/api/cars", params={"sortBy": "price", "sortOrder": "desc"})
    assert [c["model"] for c in r.json()["cars"]] == ["C", "B", "A"]


def test_sort_by_unknown_field_is_rejected(client):
    r = client.get("/api/cars", params={"sortBy": "password"})
    assert r.status_code == 400


def test_get_car(client, make_user, make_car):
    seller = make_user(name="Sam Seller")
    car = make_car(seller)

    r = client.get(f"/api/cars/{car.id}")
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == car.id
    assert body["seller"]["name"] == "Sam Seller"
    assert Decimal(str(body["price"])) == Decimal("25000")
    assert body["averageRating"] == 0
    assert body["reviewCount"] == 0


def test_get_car_not_found_and_malformed_id(client):
    r = client.get("/api/cars/9999")
    assert r.status_code == 404
    assert r.json()["error"] == "Car not found"

    r = client.get("/api/cars/not-an-id")
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"


def test_out_of_range_ids_are_rejected(client, make_user, headers):
    user = make_user()
    too_big = 10**23

    for path in (f"/api/cars/{too_big}", "/api/cars/0", "/api/cars/-1"):
        r = client.get(path)
        assert r.status_code == 400, path
        assert r.json()["error"] == "Validation failed"

    r = client.get(f"/api/orders/{too_big}", headers=headers(user))
    assert r.status_code == 400
    r = client.post("/api/favorites", json={"carId": too_big}, headers=headers(user))
    assert r.status_code == 400
    r = client.post("/api/orders", json={"carId": too_big}, headers=headers(user))
    assert r.status_code == 400
    r = client.post("/api/chat", json={"participantId": too_big}, headers=headers(user))
    assert r.status_code == 400


def test_update_car_rejects_blank_make(client, make_user, make_car, headers):
    seller = make_user()
    car = make_car(seller)
    r = client.put(f"/api/cars/{car.id}", json={"make": "   "}, headers=headers(seller))
    assert r.status_code == 400
    assert client.get(f"/api/cars/{car.id}").json()["make"] == "Toyota"


def test_create_car_requires_auth(client):
    r = client.post("/api/cars", json={"make": "Toyota", "model": "Camry", "year": 2020, "price": 1000})
    assert r.status_code == 401


def test_create_car(client, make_user, headers):
    seller = make_user()
    payload = {
        "make": "  Toyota ",
        "model": "Camry",
        "year": 2020,
        "price": "25000.499",
        "mileage": 12000,
        "color": "Blue",
        "description": "One owner",
        "images": ["https://example.com/camry.jpg"],
        "averageRating": 5,
        "reviewCount": 100,
    }
    r = client.post("/api/cars", json=payload, headers=headers(seller))
    assert r.status_code == 201
    body = r.json()
    assert body["make"] == "Toyota"
    assert body["status"] == "available"
    assert body["seller"]["id"] == seller.id
    assert Decimal(str(body["price"])) == Decimal("25000.50")
    # Aggregates are derived, never taken from input
    assert body["averageRating"] == 0
    assert body["reviewCount"] == 0


def test_create_car_strips_markup(client, make_user, headers):
    seller = make_user()
    payload = {
        "make": "Toyota",
        "model": "Camry",
        "year": 2020,
        "price": 1000,
        "description": "<script>alert(1)</script>Nice car",
    }
    r = client.post("/api/cars", json=payload, headers=headers(seller))
    assert r.status_code == 201
    assert "<script>" not in r.json()["description"]
    assert "Nice car" in r.json()["description"]


def test_create_car_validation(client, make_user, headers):
    seller = make_user()
    base = {"make": "Toyota", "model": "Camry", "year": 2020, "price": 1000}

    bad_inputs = (
        {"year": 1800},
        {"price": -1},
        {"mileage": -5},
        {"make": ""},
        {"make": "   "},
        {"model": "<b></b>"},
        {"images": ["not a url"]},
    )
    for bad in bad_inputs:
        r = client.post("/api/cars", json={**base, **bad}, headers=headers(seller))
        assert r.status_code == 400, bad
        assert r.json()["error"] == "Validation failed"
        assert r.json()["details"]


def test_update_car_owner_admin_and_stranger(client, make_user, make_car, headers):
    seller = make_user()
    stranger = make_user()
    admin = make_user(role="admin")
    car = make_car(seller)

    r = client.put(f"/api/cars/{car.id}", json={"price": 21000}, headers=headers(seller))
    assert r.status_code == 200
    assert Decimal(str(r.json()["price"])) == Decimal("21000")
    assert r.json()["make"] == "Toyota"

    r = client.put(f"/api/cars/{car.id}", json={"price": 1}, headers=headers(stranger))
    assert r.status_code == 403
    assert r.json()["error"] == "Not authorized"

    r = client.put(f"/api/cars/{car.id}", json={"status": "sold"}, headers=headers(admin))
    assert r.status_code == 200
    assert r.json()["status"] == "sold"


def test_update_car_rejects_unknown_status(client, make_user, make_car, headers):
    seller = make_user()
    car = make_car(seller)
    r = client.put(f"/api/cars/{car.id}", json={"status": "stolen"}, headers=headers(seller))
    assert r.status_code == 400


def test_update_missing_car(client, make_user, headers):
    user = make_user()
    r = client.put("/api/cars/9999", json={"price": 1}, headers=headers(user))
    assert r.status_code == 404


def test_delete_car(client, make_user, make_car, headers):
    seller = make_user()
    stranger = make_user()
    car = make_car(seller)
    car_id = car.id

    r = client.delete(f"/api/cars/{car_id}", headers=headers(stranger))
    assert r.status_code == 403

    r = client.delete(f"/api/cars/{car_id}", headers=headers(seller))
    assert r.status_code == 200
    assert r.json()["message"] == "Car deleted successfully"

    assert client.get(f"/api/cars/{car_id}").status_code == 404


def test_admin_can_delete_any_car(client, make_user, make_car, headers):
    seller = make_user()
    admin = make_user(role="admin")
    car = make_car(seller)
    r = client.delete(f"/api/cars/{car.id}", headers=headers(admin))
    assert r.status_code == 200


def test_delete_car_removes_its_reviews_and_favorites(client, db_session, make_user, make_car, make_review, headers):
    from drwheels import models

    seller = make_user()
    fan = make_user()
    car = make_car(seller)
    car_id = car.id
    make_review(fan, car)
    client.post("/api/favorites", json={"carId": car_id}, headers=headers(fan))

    r = client.delete(f"/api/cars/{car_id}", headers=headers(seller))
    assert r.status_code == 200

    db_session.expire_all()
    assert db_session.query(models.Review).filter_by(car_id=car_id).count() == 0
    assert db_session.query(models.Favorite).filter_by(car_id=car_id).count() == 0


def test_my_cars_includes_every_status(client, make_user, make_car, headers):
    seller = make_user()
    other = make_user()
    make_car(seller, model="Listed")
    make_car(seller, model="Gone", status="sold")
    make_car(other, model="NotMine")

    r = client.get("/api/cars/my-cars", headers=headers(seller))
    assert r.status_code == 200
    assert {c["model"] for c in r.json()} == {"Listed", "Gone"}

    assert client.get("/api/cars/my-cars").status_code == 401
