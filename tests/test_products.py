"""
Tests for the product catalogue: public reads, search and admin-only writes.
"""
from bson import ObjectId

NEW_PRODUCT = {
    "name": "Wool Coat",
    "description": "Double-breasted coat in merino wool",
    "price": 249.5,
    "imageUrl": "https://cdn.shop.com/coat.jpg",
    "category": "Outerwear",
    "size": "M",
    "color": "Navy",
    "stock": 4,
}


class TestPublicReads:

    def test_list_products(self, test_client, make_product):
        make_product(name="Linen Shirt")
        make_product(name="Denim Jacket")

        response = test_client.get("/products")

        assert response.status_code == 200
        names = {p["name"] for p in response.json()}
        assert names == {"Linen Shirt", "Denim Jacket"}
        assert all("id" in p and "_id" not in p for p in response.json())

    def test_get_product(self, test_client, make_product):
        product_id = make_product(stock=5)

        response = test_client.get(f"/products/{product_id}")

        assert response.status_code == 200
        assert response.json()["id"] == product_id
        assert response.json()["stock"] == 5

    def test_unknown_and_malformed_ids_are_not_found(self, test_client):
        assert test_client.get(f"/products/{ObjectId()}").status_code == 404
        assert test_client.get("/products/not-an-id").status_code == 404


class TestSearch:

    def test_search_matches_fields_case_insensitively(self, test_client, make_product):
        make_product(name="Linen Shirt", category="Tops", color="White")
        make_product(name="Summer Dress", description="Light dress made of LINEN", category="Dresses")
        make_product(name="Rain Boots", category="Shoes", color="Yellow")

        response = test_client.get("/products/search/linen")

        assert response.status_code == 200
        assert {p["name"] for p in response.json()} == {"Linen Shirt", "Summer Dress"}

    def test_search_by_color_and_category(self, test_client, make_product):
        make_product(name="Rain Boots", category="Shoes", color="Yellow")
        make_product(name="Linen Shirt", category="Tops", color="White")

        assert [p["name"] for p in test_client.get("/products/search/YELLOW").json()] == ["Rain Boots"]
        assert [p["name"] for p in test_client.get("/products/search/tops").json()] == ["Linen Shirt"]

    def test_search_term_is_literal(self, test_client, make_product):
        make_product(name="Linen Shirt")

        response = test_client.get("/products/search/.*")

        assert response.status_code == 200
        assert response.json() == []


class TestAdminWrites:

    def test_create_requires_token(self, test_client):
        response = test_client.post("/products", json=NEW_PRODUCT)

        assert response.status_code == 403

    def test_visitor_cannot_create(self, test_client, make_user, auth_headers):
        alice = make_user()

        response = test_client.post("/products", json=NEW_PRODUCT, headers=auth_headers(alice))

        assert response.status_code == 403

    def test_admin_creates_product(self, test_client, db, admin_headers):
        response = test_client.post("/products", json=NEW_PRODUCT, headers=admin_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Wool Coat"
        assert data["image_url"] == "https://cdn.shop.com/coat.jpg"
        assert data["stock"] == 4
        assert db["product"].count_documents({}) == 1

    def test_stock_defaults_to_zero(self, test_client, admin_headers):
        response = test_client.post("/products", json={"name": "Scarf", "price": 19.9}, headers=admin_headers)

        assert response.status_code == 201
        assert response.json()["stock"] == 0

    def test_invalid_product_lists_every_error(self, test_client, db, admin_headers):
        payload = {**NEW_PRODUCT, "name": "ab", "price": -1, "stock": -2, "imageUrl": "not a url"}

        response = test_client.post("/products", json=payload, headers=admin_headers)

        assert response.status_code == 400
        fields = {e["field"] for e in response.json()["errors"]}
        assert {"body.name", "body.price", "body.stock"} <= fields
        assert len(fields) == 4
        assert db["product"].count_documents({}) == 0

    def test_partial_update(self, test_client, make_product, admin_headers):
        product_id = make_product(name="Linen Shirt", price=89.9, stock=5)

        response = test_client.put(f"/products/{product_id}", json={"stock": 12}, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["stock"] == 12
        assert data["price"] == 89.9
        assert data["name"] == "Linen Shirt"

    def test_update_rejects_null_required_field(self, test_client, make_product, admin_headers):
        product_id = make_product()

        response = test_client.put(f"/products/{product_id}", json={"price": None}, headers=admin_headers)

        assert response.status_code == 400

    def test_update_unknown_product(self, test_client, admin_headers):
        response = test_client.put(f"/products/{ObjectId()}", json={"stock": 1}, headers=admin_headers)

        assert response.status_code == 404

    def test_delete_product(self, test_client, db, make_product, admin_headers):
        product_id = make_product(name="Linen Shirt")

        response = test_client.delete(f"/products/{product_id}", headers=admin_headers)

        assert response.status_code == 200
        assert "Linen Shirt" in response.json()["message"]
        assert db["product"].count_documents({}) == 0

    def test_delete_product_in_a_cart_conflicts(self, test_client, db, make_user, make_product, auth_headers, admin_headers):
        alice = make_user()
        product_id = make_product(stock=5)
        test_client.post("/cart/add", json={"productId": product_id, "quantity": 1}, headers=auth_headers(alice))

        response = test_client.delete(f"/products/{product_id}", headers=admin_headers)

        assert response.status_code == 409
        assert db["product"].count_documents({}) == 1
