import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import ADMIN, ALICE, BOB, CAROL, OWNER, auth
from main import create_app


def post_gig(client, owner=OWNER, title="Build a landing page", budget=500, admins=None):
    response = client.post(
        "/api/v1/gigs",
        json={"title": title, "description": "Marketing site", "budget": budget, "admins": admins or []},
        headers=auth(owner),
    )
    assert response.status_code == 201, response.text
    return response.json()


def post_bid(client, gig_id, user_id, price, message="I can do it"):
    return client.post(
        "/api/v1/bids",
        json={"gigId": gig_id, "message": message, "price": price},
        headers=auth(user_id),
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requires_authentication(client):
    assert client.post("/api/v1/gigs", json={}).status_code == 401
    assert client.get("/api/v1/bids/mine", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_auth_service_outage_is_bad_gateway(client, identity):
    identity.available = False
    assert client.get("/api/v1/gigs/mine", headers=auth(OWNER)).status_code == 502


def test_create_gig_validation(client):
    response = client.post(
        "/api/v1/gigs",
        json={"title": "Cheap", "description": "Free work", "budget": 0},
        headers=auth(OWNER),
    )
    assert response.status_code == 422
    assert response.json()["kind"] == "validation"


def test_hire_scenario(client):
    gig = post_gig(client, admins=[ADMIN])
    assert gig["status"] == "open"
    assert gig["owner_id"] == OWNER
    assert gig["admin_ids"] == [ADMIN]

    alice_bid = post_bid(client, gig["id"], ALICE, 400).json()
    bob_bid = post_bid(client, gig["id"], BOB, 450).json()
    assert alice_bid["status"] == "pending"

    response = client.patch(f"/api/v1/bids/{alice_bid['id']}/hire", headers=auth(OWNER))
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["gig"]["status"] == "assigned"
    assert body["bid"]["status"] == "hired"

    bids = client.get(f"/api/v1/bids/gig/{gig['id']}", headers=auth(ADMIN)).json()
    assert {b["id"]: b["status"] for b in bids} == {alice_bid["id"]: "hired", bob_bid["id"]: "rejected"}

    notifications = client.get("/api/v1/notifications", headers=auth(ALICE)).json()
    assert len(notifications) == 1
    assert notifications[0]["type"] == "hired"
    assert notifications[0]["data"] == {"gigId": gig["id"], "bidId": alice_bid["id"]}
    assert client.get("/api/v1/notifications", headers=auth(BOB)).json() == []

    again = client.patch(f"/api/v1/bids/{bob_bid['id']}/hire", headers=auth(OWNER))
    assert again.status_code == 409
    assert again.json()["kind"] == "conflict"


def test_bid_errors_map_to_kinds(client):
    gig = post_gig(client, admins=[ADMIN])

    assert post_bid(client, gig["id"], OWNER, 100).json()["kind"] == "forbidden"
    assert post_bid(client, gig["id"], ADMIN, 100).status_code == 403
    assert post_bid(client, 999, ALICE, 100).status_code == 404
    assert post_bid(client, gig["id"], ALICE, -1).status_code == 422

    assert post_bid(client, gig["id"], ALICE, 100).status_code == 201
    duplicate = post_bid(client, gig["id"], ALICE, 90)
    assert duplicate.status_code == 409
    assert duplicate.json()["kind"] == "duplicate_bid"


def test_bid_visibility_gate(client):
    gig = post_gig(client, admins=[ADMIN])
    post_bid(client, gig["id"], ALICE, 100)

    assert client.get(f"/api/v1/bids/gig/{gig['id']}", headers=auth(OWNER)).status_code == 200
    assert client.get(f"/api/v1/bids/gig/{gig['id']}", headers=auth(ADMIN)).status_code == 200
    denied = client.get(f"/api/v1/bids/gig/{gig['id']}", headers=auth(BOB))
    assert denied.status_code == 403
    assert denied.json()["kind"] == "forbidden"


def test_my_bids_and_my_gigs(client):
    gig = post_gig(client, admins=[ADMIN])
    post_bid(client, gig["id"], ALICE, 100)

    my_bids = client.get("/api/v1/bids/mine", headers=auth(ALICE)).json()
    assert len(my_bids) == 1
    assert my_bids[0]["gig"]["title"] == "Build a landing page"

    assert [g["id"] for g in client.get("/api/v1/gigs/mine", headers=auth(ADMIN)).json()] == [gig["id"]]
    assert client.get("/api/v1/gigs/mine", headers=auth(ALICE)).json() == []


def test_list_open_gigs_pagination(client):
    for index in range(3):
        post_gig(client, title=f"Gig {index}")

    page = client.get("/api/v1/gigs", params={"limit": 2, "page": 2}).json()

    assert page["total"] == 3
    assert page["totalPages"] == 2
    assert page["currentPage"] == 2
    assert page["count"] == 1
    assert client.get("/api/v1/gigs", params={"search": "gig 1"}).json()["total"] == 1


def test_get_gig_is_public(client):
    gig = post_gig(client)
    assert client.get(f"/api/v1/gigs/{gig['id']}").json()["title"] == "Build a landing page"
    assert client.get("/api/v1/gigs/999").status_code == 404


def test_admin_management_routes(client):
    gig = post_gig(client)

    added = client.post(f"/api/v1/gigs/{gig['id']}/admins", json={"email": "carol@example.com"}, headers=auth(OWNER))
    assert added.status_code == 200
    assert added.json()["admin_ids"] == [CAROL]

    by_admin = client.post(f"/api/v1/gigs/{gig['id']}/admins", json={"email": "bob@example.com"}, headers=auth(CAROL))
    assert by_admin.status_code == 403
    assert client.delete(f"/api/v1/gigs/{gig['id']}/admins/{CAROL}", headers=auth(CAROL)).status_code == 403

    notifications = client.get("/api/v1/notifications", headers=auth(CAROL)).json()
    assert [n["type"] for n in notifications] == ["adminAssigned"]

    removed = client.delete(f"/api/v1/gigs/{gig['id']}/admins/{CAROL}", headers=auth(OWNER))
    assert removed.json()["admin_ids"] == []
    assert client.delete(f"/api/v1/gigs/{gig['id']}/admins/{CAROL}", headers=auth(OWNER)).status_code == 404
    assert client.post(
        f"/api/v1/gigs/{gig['id']}/admins", json={"email": "ghost@example.com"}, headers=auth(OWNER)
    ).status_code == 404


def test_notification_read_routes(client):
    gig = post_gig(client)
    bid = post_bid(client, gig["id"], ALICE, 100).json()
    client.patch(f"/api/v1/bids/{bid['id']}/hire", headers=auth(OWNER))
    notification = client.get("/api/v1/notifications", headers=auth(ALICE)).json()[0]

    assert client.patch(f"/api/v1/notifications/{notification['id']}/read", headers=auth(BOB)).status_code == 404
    marked = client.patch(f"/api/v1/notifications/{notification['id']}/read", headers=auth(ALICE))
    assert marked.json()["read"] is True
    assert client.post("/api/v1/notifications/read-all", headers=auth(ALICE)).json() == {"updated": 0}


def test_hired_freelancer_gets_pushed_event(client):
    gig = post_gig(client)
    bid = post_bid(client, gig["id"], ALICE, 400).json()

    with client.websocket_connect(f"/ws/notifications?token=token-{ALICE}") as ws:
        ws.send_json({"type": "join", "userId": ALICE})
        assert ws.receive_json() == {"event": "joined", "data": {"userId": ALICE}}

        response = client.patch(f"/api/v1/bids/{bid['id']}/hire", headers=auth(OWNER))
        assert response.status_code == 200

        pushed = ws.receive_json()

    assert pushed["event"] == "hired"
    assert pushed["data"]["gigId"] == gig["id"]
    assert pushed["data"]["bidId"] == bid["id"]
    assert pushed["data"]["message"] == "You have been hired for Build a landing page!"
    assert pushed["data"]["id"] is not None


def test_admin_assignment_is_pushed(client):
    gig = post_gig(client)

    with client.websocket_connect(f"/ws/notifications?token=token-{CAROL}") as ws:
        ws.send_json({"type": "join", "userId": CAROL})
        ws.receive_json()
        client.post(f"/api/v1/gigs/{gig['id']}/admins", json={"email": "carol@example.com"}, headers=auth(OWNER))
        pushed = ws.receive_json()

    assert pushed["event"] == "adminAssigned"
    assert pushed["data"]["gigId"] == gig["id"]


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/notifications?token=bogus") as ws:
            ws.receive_json()


def test_websocket_rejects_joining_as_someone_else(client, dispatcher):
    with client.websocket_connect(f"/ws/notifications?token=token-{ALICE}") as ws:
        ws.send_json({"type": "join", "userId": BOB})
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()
    assert dispatcher.session_count(BOB) == 0
    assert dispatcher.session_count(ALICE) == 0


def test_websocket_ignores_binary_frames(client, dispatcher):
    with client.websocket_connect(f"/ws/notifications?token=token-{ALICE}") as ws:
        ws.send_bytes(b"\x00\x01")
        ws.send_text("not json")
        ws.send_json({"type": "join", "userId": ALICE})
        assert ws.receive_json() == {"event": "joined", "data": {"userId": ALICE}}
        assert dispatcher.session_count(ALICE) == 1
    assert dispatcher.session_count(ALICE) == 0


def test_app_starts_and_stops_with_unreachable_redis(identity):
    app = create_app(identity=identity, redis_url="redis://127.0.0.1:1/0", init_database=False)

    with TestClient(app) as test_client:
        assert test_client.get("/health").status_code == 200
        assert app.state.dispatcher.relay is not None

    assert app.state.relay_task.done()
