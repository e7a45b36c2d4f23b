from locust import HttpUser, task, between
import random

PASSWORD = "LoadTest1!"


class MarketplaceUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Register a user and list one car for this simulated client
        email = f"user_{random.randint(1, 1_000_000)}@example.com"
        r = self.client.post("/api/auth/register", json={"email": email, "password": PASSWORD, "name": "Load User"})
        if r.status_code != 201:
            self.headers = None
            return
        self.headers = {"Authorization": f"Bearer {r.json()['token']}"}
        self.client.post(
            "/api/cars",
            json={"make": "Toyota", "model": "Corolla", "year": 2018, "price": str(random.randint(5000, 40000))},
            headers=self.headers,
        )

    @task(5)
    def browse(self):
        params = {"page": random.randint(1, 3), "limit": 12, "sortBy": random.choice(["price", "year", "createdAt"])}
        self.client.get("/api/cars", params=params, name="/api/cars")

    @task(2)
    def favorite(self):
        if not self.headers:
            return
        cars = self.client.get("/api/cars", params={"limit": 5}, name="/api/cars").json().get("cars", [])
        if cars:
            car = random.choice(cars)
            self.client.post("/api/favorites", json={"carId": car["id"]}, headers=self.headers)

    @task(1)
    def order(self):
        if not self.headers:
            return
        cars = self.client.get("/api/cars", params={"limit": 5}, name="/api/cars").json().get("cars", [])
        if cars:
            car = random.choice(cars)
            self.client.post("/api/orders", json={"carId": car["id"]}, headers=self.headers)
