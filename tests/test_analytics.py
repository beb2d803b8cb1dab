def test_analytics_empty(client):
    res = client.get("/analytics")
    assert res.status_code == 200
    assert res.json() == {
        "totalUsers": 0,
        "totalAdmins": 0,
        "totalProducts": 0,
        "totalOrders": 0,
        "totalRevenue": 0,
    }


def test_analytics_counts_and_revenue(signup, client, make_product):
    signup()
    signup(email="boss@example.com", role="admin", name="Boss")
    tee = make_product(price=499)
    make_product(name="Cap", price=150, category="kids")
    for total in (499, 998.5):
        client.post("/orders", json={
            "email": "ana@example.com",
            "products": [{"productId": tee["_id"], "quantity": 1}],
            "totalAmount": total,
        })

    assert client.get("/analytics").json() == {
        "totalUsers": 2,
        "totalAdmins": 1,
        "totalProducts": 2,
        "totalOrders": 2,
        "totalRevenue": 1497.5,
    }
