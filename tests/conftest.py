from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

import cars
from errors import ExternalServiceFailure
from main import create_app
from processor import MockProcessor
from settings import Settings

AGENT = "agent-a"
CUSTOMER = "customer-c"


class FakeProcessor(MockProcessor):
    """MockProcessor whose intents can be steered by a test."""

    def __init__(self):
        super().__init__()
        self.next_status = "succeeded"
        self.fail_create = False
        self.created = []

    def create_intent(self, amount, currency, metadata):
        if self.fail_create:
            raise ExternalServiceFailure("Payment processor timed out")
        intent = super().create_intent(amount, currency, metadata)
        intent = intent.model_copy(update={"status": self.next_status})
        self.intents[intent.id] = intent
        self.created.append(intent)
        return intent

    def set_status(self, intent_id, status):
        self.intents[intent_id] = self.intents[intent_id].model_copy(update={"status": status})


@pytest.fixture
def db():
    return mongomock.MongoClient()["car_rental_test"]


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def client(db, processor):
    app = create_app(settings=Settings(), db=db, processor=processor)
    return TestClient(app)


@pytest.fixture
def car_payload():
    return {
        "agent_id": AGENT,
        "name": "Corolla",
        "model": "Altis",
        "year": 2022,
        "license_no": "LEA-1234",
        "color": "white",
        "seats": 5,
        "category": "sedan",
        "transmission": "automatic",
        "fuel_type": "petrol",
        "daily_rate": 60,
        "weekly_rate": 380,
        "features": {"ac": True, "gps": False},
        "cover_image": "https://img.example.com/corolla.jpg",
    }


@pytest.fixture
def make_car(db, car_payload):
    def _make(**overrides):
        return cars.create_car(db, {**car_payload, **overrides})
    return _make


@pytest.fixture
def booking_args():
    def _args(car, customer=CUSTOMER, **overrides):
        args = {
            "car_id": str(car["_id"]),
            "customer_id": customer,
            "agent_id": car["agent_id"],
            "date_from": datetime(2026, 11, 1, 10, 0),
            "date_to": datetime(2026, 11, 5, 10, 0),
            "location": "Lahore",
            "price": 240.0,
            "payment_method": "stripe",
        }
        args.update(overrides)
        return args
    return _args
