from fastapi.testclient import TestClient

from main import create_app
from settings import Settings

CAR_BODY = {
    "agentId": "agent-a",
    "name": "Civic",
    "model": "Oriel",
    "year": 2021,
    "licenseNo": "LEC-77",
    "color": "grey",
    "seats": 5,
    "category": "sedan",
    "transmission": "manual",
    "fuelType": "petrol",
    "dailyRate": 55,
    "weeklyRate": 350,
    "features": {"ac": True},
    "coverImage": "https://img.example.com/civic.jpg",
}


def add_car(client):
    r = client.post("/api/cars", json=CAR_BODY)
    assert r.status_code == 201
    return r.json()["data"]


def book(client, car, customer="customer-c"):
    return client.post("/api/bookings", json={
        "car": car["id"],
        "customer": customer,
        "agent": car["agent_id"],
        "dateFrom": "2026-12-01T09:00:00",
        "dateTo": "2026-12-03T09:00:00",
        "location": "Karachi",
        "price": 110,
        "paymentMethod": "stripe",
        "paymentNumber": "",
    })


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Car Rental API is running"}
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"
    assert body["payments"] == "Mock"
    assert client.get("/api/hello").status_code == 404


def test_missing_database_is_500():
    client = TestClient(create_app(settings=Settings()))
    r = client.get("/api/cars")
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "Database not configured"}


def test_car_crud(client):
    car = add_car(client)
    assert car["status"] == "available"

    listed = client.get("/api/cars", params={"agentId": "agent-a"}).json()
    assert listed["success"] is True
    assert listed["count"] == 1

    r = client.put(f"/api/cars/{car['id']}", json={"color": "red", "image1": "side.jpg"})
    assert r.json()["data"]["color"] == "red"
    assert r.json()["data"]["cover_image"] == CAR_BODY["coverImage"]

    r = client.delete(f"/api/cars/{car['id']}")
    assert r.json()["data"]["removedMedia"] == [CAR_BODY["coverImage"], "side.jpg"]
    r = client.get(f"/api/cars/{car['id']}")
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "Car not found"}


def test_car_without_agent_is_400(client):
    body = {k: v for k, v in CAR_BODY.items() if k != "agentId"}
    r = client.post("/api/cars", json=body)
    assert r.status_code == 400
    assert r.json()["message"] == "Agent ID is required"


def test_booking_lifecycle_over_http(client):
    car = add_car(client)
    r = book(client, car)
    assert r.status_code == 201
    booking = r.json()["data"]
    assert booking["status"] == "pending"

    assert book(client, car, customer="customer-d").status_code == 400

    r = client.patch(f"/api/bookings/{booking['id']}/approve")
    assert r.json()["data"]["status"] == "approved"
    assert client.get(f"/api/cars/{car['id']}").json()["data"]["status"] == "rented"

    rows = client.get(f"/api/bookings/agent/{car['agent_id']}").json()["data"]
    assert rows[0]["car"]["id"] == car["id"]
    assert len(client.get("/api/bookings/customer/customer-c").json()["data"]) == 1
    assert len(client.get("/api/bookings").json()["data"]) == 1

    r = client.patch(f"/api/bookings/{booking['id']}/payment-status", json={"paymentStatus": "paid"})
    assert r.json()["data"]["payment_status"] == "paid"

    r = client.delete(f"/api/bookings/{booking['id']}")
    assert r.json() == {"success": True, "message": "Booking deleted successfully"}
    assert client.get(f"/api/cars/{car['id']}").json()["data"]["status"] == "available"


def test_reject_over_http(client):
    car = add_car(client)
    booking = book(client, car).json()["data"]
    r = client.patch(f"/api/bookings/{booking['id']}/reject")
    assert r.json()["data"]["status"] == "rejected"
    assert client.get(f"/api/cars/{car['id']}").json()["data"]["status"] == "available"


def test_booking_missing_fields_is_400(client):
    r = client.post("/api/bookings", json={"car": "x"})
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_unknown_booking_is_404(client):
    r = client.patch("/api/bookings/5f2b6c1e9d3a4b0012345678/approve")
    assert r.status_code == 404


def test_payment_flow_over_http(client):
    car = add_car(client)
    booking = book(client, car).json()["data"]
    client.patch(f"/api/bookings/{booking['id']}/approve")

    r = client.post("/api/payments/create-payment-intent",
                    json={"bookingId": booking["id"], "amount": 110, "currency": "usd"})
    intent = r.json()["data"]
    assert set(intent) == {"clientSecret", "paymentIntentId", "paymentId"}

    r = client.post("/api/payments/confirm-payment",
                    json={"paymentIntentId": intent["paymentIntentId"], "paymentId": intent["paymentId"]})
    assert r.json() == {"success": True, "message": "Payment confirmed successfully"}

    r = client.post(f"/api/payments/booking/{booking['id']}/approve-with-bank-details", json={
        "agentName": "Ali", "bankName": "HBL", "accountNumber": "0001",
        "accountTitle": "Ali Cars", "branchCode": "042",
    })
    assert r.json()["message"] == "Booking approved with bank details"

    r = client.post("/api/payments/create-admin-payment-intent",
                    json={"paymentId": intent["paymentId"], "amount": 100, "agentId": "agent-a"})
    payout = r.json()["data"]
    r = client.post(f"/api/payments/{intent['paymentId']}/admin-pay-agent-stripe",
                    json={"paymentIntentId": payout["paymentIntentId"]})
    assert r.json()["success"] is True

    all_payments = client.get("/api/payments/admin/all").json()["data"]
    assert all_payments[0]["booking"]["payment_status"] == "paid"
    detail = client.get(f"/api/payments/{intent['paymentId']}").json()["data"]
    assert detail["agent_bank_details"]["bank_name"] == "HBL"
    assert detail["admin_payment_details"]["payment_method"] == "Stripe"

    chats = client.get("/api/chats", params={"agentId": "agent-a", "role": "agent"}).json()["data"]
    assert len(chats) == 1
    assert chats[0]["participants"] == ["customer-c", "agent-a"]


def test_confirm_unpaid_intent_is_400(client, processor):
    car = add_car(client)
    booking = book(client, car).json()["data"]
    processor.next_status = "requires_action"
    intent = client.post("/api/payments/create-payment-intent",
                         json={"bookingId": booking["id"], "amount": 110}).json()["data"]
    r = client.post("/api/payments/confirm-payment",
                    json={"paymentIntentId": intent["paymentIntentId"], "paymentId": intent["paymentId"]})
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Payment not completed"}


def test_processor_outage_is_502(client, processor):
    car = add_car(client)
    booking = book(client, car).json()["data"]
    processor.fail_create = True
    r = client.post("/api/payments/create-payment-intent", json={"bookingId": booking["id"], "amount": 110})
    assert r.status_code == 502
    assert r.json()["success"] is False


def test_manual_payout_and_delete(client):
    car = add_car(client)
    booking = book(client, car).json()["data"]
    intent = client.post("/api/payments/create-payment-intent",
                         json={"bookingId": booking["id"], "amount": 110}).json()["data"]
    r = client.post(f"/api/payments/{intent['paymentId']}/admin-pay-agent",
                    json={"paymentMethod": "cash", "transactionId": "R-1", "notes": "at office"})
    assert r.json()["message"] == "Payment to agent recorded successfully"
    assert client.delete(f"/api/payments/{intent['paymentId']}").json()["success"] is True
    assert client.get(f"/api/payments/{intent['paymentId']}").status_code == 404


def test_chat_endpoints(client):
    chat = client.post("/api/chats", json={"userId": "customer-c", "agentId": "agent-a"}).json()["data"]
    again = client.post("/api/chats", json={"userId": "customer-c", "agentId": "agent-a"}).json()["data"]
    assert again["id"] == chat["id"]

    r = client.post("/api/chats/messages", json={
        "chatId": chat["id"], "senderId": "customer-c", "senderRole": "customer", "text": "Hi",
    })
    assert r.status_code == 201
    message = r.json()["data"]

    r = client.get(f"/api/chats/{chat['id']}/messages", params={"userId": "intruder", "role": "customer"})
    assert r.status_code == 403
    assert r.json() == {"success": False, "message": "Access denied"}

    r = client.patch(f"/api/chats/messages/{message['id']}",
                     params={"userId": "customer-c", "role": "customer"}, json={"text": "Hello"})
    assert r.json()["data"]["text"] == "Hello"

    r = client.delete(f"/api/chats/{chat['id']}/messages", params={"userId": "customer-c", "role": "customer"})
    assert r.json()["message"] == "Chat cleared for this user only"
    mine = client.get(f"/api/chats/{chat['id']}/messages", params={"userId": "customer-c", "role": "customer"})
    theirs = client.get(f"/api/chats/{chat['id']}/messages", params={"userId": "agent-a", "role": "agent"})
    assert mine.json()["data"] == []
    assert [m["text"] for m in theirs.json()["data"]] == ["Hello"]

    r = client.delete(f"/api/chats/messages/{message['id']}", params={"userId": "agent-a", "role": "agent"})
    assert r.json()["message"] == "Message deleted"

    r = client.delete(f"/api/chats/{chat['id']}", params={"userId": "admin-1", "role": "admin"})
    assert r.json()["message"] == "Chat and all messages deleted"
    assert client.get("/api/chats", params={"role": "admin"}).json()["data"] == []


def test_list_chats_requires_identity(client):
    r = client.get("/api/chats")
    assert r.status_code == 400


def test_booking_with_mixed_timezone_dates(client):
    car = add_car(client)
    r = client.post("/api/bookings", json={
        "car": car["id"], "customer": "customer-c", "agent": car["agent_id"],
        "dateFrom": "2026-12-01T09:00:00Z", "dateTo": "2026-12-03T09:00:00",
        "location": "Karachi", "price": 110,
    })
    assert r.status_code == 201
