from locust import HttpUser, task, between
import random

PASSWORD = "Locust123"


class BuyerUser(HttpUser):
    """Buyers hammering the same few products to exercise the cart stock bound."""

    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Register a buyer for this simulated client
        uname = f"user_{random.randint(1, 1_000_000)}"
        r = self.client.post(
            "/api/register",
            json={"fullname": f"Load {uname}", "username": uname, "email": f"{uname}@example.com", "password": PASSWORD},
        )
        self.headers = {"Authorization": f"Bearer {r.json()['token']}"} if r.status_code == 200 else None
        self.product_ids = []

    @task(1)
    def list_products(self):
        if not self.headers:
            return
        r = self.client.get("/api/products", headers=self.headers)
        if r.status_code == 200:
            self.product_ids = [p["id"] for p in r.json()]

    @task(3)
    def add_to_cart(self):
        if not self.headers or not self.product_ids:
            return
        product_id = random.choice(self.product_ids[:3])
        with self.client.post(
            "/api/cart",
            json={"product_id": product_id, "quantity": 1},
            headers=self.headers,
            catch_response=True,
        ) as r:
            # running out of stock is an expected outcome here
            if r.status_code in (200, 400):
                r.success()

    @task(1)
    def clear_cart(self):
        if not self.headers:
            return
        self.client.delete("/api/cart", headers=self.headers)
