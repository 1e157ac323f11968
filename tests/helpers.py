# tests/helpers.py
import unittest

from fastapi.testclient import TestClient

import auth, main, models
from database import SessionLocal, engine
from ratelimit import RateLimiter
from stats import StatsAggregator

ADMIN_EMAIL = "admin@example.com"

SAMPLE_HTML = (
    "<!DOCTYPE html><html><head><meta charset='utf-8'><title>CV</title></head><body>"
    + "<section><h2>Experience</h2><p>Shipped things at Acme — 5 years.</p></section>" * 12
    + "</body></html>"
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeGenerator:
    def __init__(self, html=SAMPLE_HTML, error=None):
        self.html = html
        self.error = error
        self.calls = []

    def generate(self, form_data, template, industry):
        self.calls.append((form_data, template, industry))
        if self.error:
            raise self.error
        return self.html


class APITestCase(unittest.TestCase):
    """Fresh schema, app state and client per test."""

    def setUp(self):
        models.Base.metadata.drop_all(bind=engine)
        models.Base.metadata.create_all(bind=engine)
        self.clock = FakeClock()
        self.generator = FakeGenerator()
        self.aggregator = StatsAggregator(ttl_seconds=300, clock=self.clock)
        self.limiter = RateLimiter(max_requests=5, window_seconds=3600)
        self.app = main.create_app(generator=self.generator, aggregator=self.aggregator, upgrade_limiter=self.limiter)
        self.client = TestClient(self.app)
        self.db = SessionLocal()

    def tearDown(self):
        self.db.close()
        self.client.close()

    def headers_for(self, user_id, email=None, name=None):
        token = auth.create_access_token({
            "sub": user_id,
            "email": email or f"{user_id}@example.com",
            "name": name or user_id.title(),
        })
        return {"Authorization": f"Bearer {token}"}

    def sign_in(self, user_id, email=None):
        headers = self.headers_for(user_id, email)
        response = self.client.post("/users/sync", headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        return headers

    def fetch_user(self, user_id):
        with SessionLocal() as db:
            return db.get(models.User, user_id)

    def set_user(self, user_id, **values):
        with SessionLocal() as db:
            db.query(models.User).filter(models.User.id == user_id).update(values)
            db.commit()

    def save_cv(self, headers, **body):
        payload = {"htmlContent": SAMPLE_HTML, "title": "Backend CV"}
        payload.update(body)
        return self.client.post("/cv", json=payload, headers=headers)

    def submit_upgrade(self, headers, transaction_id="TXN12345678", **body):
        payload = {
            "userEmail": "someone@example.com",
            "userName": "Someone",
            "transactionId": transaction_id,
            "paymentMethod": "bikash",
            "paymentNumber": "01700000000",
            "amount": 50,
        }
        payload.update(body)
        return self.client.post("/upgrade-requests", json=payload, headers=headers)
