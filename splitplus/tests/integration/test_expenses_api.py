"""
tests/integration/test_expenses_api.py — Integration tests for expense endpoints.

Endpoints covered:
  POST   /groups/:id/expenses    → 201 / 400 / 403 / 404 / 422
  GET    /groups/:id/expenses    → 200 / 403
  POST   /friends/:id/expenses   → 201 / 403 / 404
  GET    /friends/:id/expenses   → 200
  GET    /expenses/:id           → 200 / 404
  PUT    /expenses/:id           → 200 / 422
  DELETE /expenses/:id           → 200 (idempotent)
  GET    /groups/:id/expenses/search → 200 / 400 / 403

Invariants verified end to end:
  - Σpayments == amount and Σsplits == amount, or nothing is written
  - Equal-split remainder cents go to the lowest participant ids
  - Every participant must belong to the scope
  - Amounts are strings on the wire, never floats
"""

from __future__ import annotations

from splitplus.app.models.membership import FriendshipStatus

from .conftest import (
    auth_headers,
    equal_expense,
    error_code,
    post_expense,
    seed_friendship,
    seed_category,
    seed_group,
    seed_pending_user,
    seed_user,
    set_friendship_status,
)


# ═══════════════════════════════════════════════════════════════════════════
# Setup helpers
# ═══════════════════════════════════════════════════════════════════════════

def _setup(app):
    """Alice (owner) + Bob + Carol in one USD group; Dave is an outsider."""
    alice = seed_user(app, "alice")
    bob = seed_user(app, "bob")
    carol = seed_user(app, "carol")
    dave = seed_user(app, "dave")
    group_id = seed_group(app, alice, (bob, carol))
    return alice, bob, carol, dave, group_id


def _list(client, user_id, group_id):
    resp = client.get(f"/api/v1/groups/{group_id}/expenses", headers=auth_headers(user_id))
    assert resp.status_code == 200
    return resp.get_json()["data"]


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/expenses: happy path
# ═══════════════════════════════════════════════════════════════════════════

def test_create_equal_expense_assigns_remainder_by_id(client, app):
    alice, bob, carol, _, group_id = _setup(app)

    resp = post_expense(client, alice, group_id, equal_expense(alice, "100.01", [carol, bob, alice]))

    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body["warnings"] == []
    data = body["data"]
    assert data["group_id"] == group_id
    assert data["friendship_id"] is None
    assert data["amount"] == "100.01"
    assert data["currency_code"] == "USD"
    assert data["created_by"] == alice
    assert data["deleted_at"] is None

    owed = {s["user_id"]: s["amount"] for s in data["splits"]}
    assert owed == {alice: "33.34", bob: "33.34", carol: "33.33"}
    assert all(s["split_type"] == "equal" for s in data["splits"])
    assert data["payments"] == [{"user_id": alice, "amount": "100.01", "payment_method": None}]


def test_create_expense_with_several_payers_and_exact_splits(client, app):
    alice, bob, carol, _, group_id = _setup(app)
    lodging = seed_category(app, group_id, "Lodging", created_by=alice)
    body = {
        "title": "Cabin",
        "amount": "300.00",
        "category_id": lodging,
        "date": "2024-06-01",
        "payments": [
            {"user_id": alice, "amount": "200.00", "payment_method": "card"},
            {"user_id": bob, "amount": "100.00"},
        ],
        "splits": [
            {"user_id": alice, "amount": "100.00"},
            {"user_id": bob, "amount": "100.00"},
            {"user_id": carol, "amount": "100.00"},
        ],
    }

    resp = post_expense(client, bob, group_id, body)

    assert resp.status_code == 201, resp.get_json()
    data = resp.get_json()["data"]
    assert data["category_id"] == lodging
    assert data["date"] == "2024-06-01"
    assert [p["amount"] for p in data["payments"]] == ["200.00", "100.00"]
    assert data["payments"][0]["payment_method"] == "card"


def test_create_percentage_and_shares_expenses(client, app):
    alice, bob, _, _, group_id = _setup(app)

    pct = post_expense(client, alice, group_id, {
        "title": "Fuel",
        "amount": "10.00",
        "payments": [{"user_id": alice, "amount": "10.00"}],
        "splits": [
            {"user_id": alice, "split_type": "percentage", "percentage": "70"},
            {"user_id": bob, "split_type": "percentage", "percentage": "30"},
        ],
    })
    assert pct.status_code == 201, pct.get_json()
    assert [s["amount"] for s in pct.get_json()["data"]["splits"]] == ["7.00", "3.00"]

    shares = post_expense(client, alice, group_id, {
        "title": "Rent",
        "amount": "90.00",
        "payments": [{"user_id": bob, "amount": "90.00"}],
        "splits": [
            {"user_id": alice, "split_type": "shares", "shares": 2},
            {"user_id": bob, "split_type": "shares", "shares": 1},
        ],
    })
    assert shares.status_code == 201, shares.get_json()
    splits = shares.get_json()["data"]["splits"]
    assert [s["amount"] for s in splits] == ["60.00", "30.00"]
    assert [s["share_value"] for s in splits] == ["2.0000", "1.0000"]


def test_pending_member_can_owe(client, app):
    alice, bob, _, _, group_id = _setup(app)
    pending = seed_pending_user(app, group_id, "Erin", invited_by=alice)

    resp = post_expense(
        client, alice, group_id, equal_expense(alice, "30.00", [alice, bob], pending_ids=[pending]),
    )

    assert resp.status_code == 201, resp.get_json()
    pending_split = resp.get_json()["data"]["splits"][-1]
    assert pending_split == {
        "pending_user_id": pending,
        "amount": "10.00",
        "split_type": "equal",
        "share_value": None,
    }


def test_list_returns_active_expenses_newest_first(client, app):
    alice, bob, _, _, group_id = _setup(app)
    post_expense(client, alice, group_id, equal_expense(alice, "10.00", [alice, bob], title="Old", date="2024-01-01"))
    post_expense(client, alice, group_id, equal_expense(alice, "20.00", [alice, bob], title="New", date="2024-02-01"))

    data = _list(client, bob, group_id)

    assert [e["title"] for e in data] == ["New", "Old"]


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/expenses: failure paths
# ═══════════════════════════════════════════════════════════════════════════

def test_payment_total_mismatch_writes_nothing(client, app):
    alice, bob, _, _, group_id = _setup(app)
    body = equal_expense(alice, "50.00", [alice, bob])
    body["payments"][0]["amount"] = "49.99"

    resp = post_expense(client, alice, group_id, body)

    assert resp.status_code == 422
    assert error_code(resp) == "PAYMENT_TOTAL_MISMATCH"
    assert resp.get_json()["error"]["field"] == "payments"
    assert _list(client, alice, group_id) == []


def test_split_total_mismatch(client, app):
    alice, bob, _, _, group_id = _setup(app)
    body = {
        "title": "Lunch",
        "amount": "20.00",
        "payments": [{"user_id": alice, "amount": "20.00"}],
        "splits": [{"user_id": alice, "amount": "10.00"}, {"user_id": bob, "amount": "9.00"}],
    }

    resp = post_expense(client, alice, group_id, body)

    assert resp.status_code == 422
    assert error_code(resp) == "SPLIT_TOTAL_MISMATCH"


def test_zero_amount_is_invalid_amount(client, app):
    alice, bob, _, _, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "0.00", [alice, bob]))
    assert resp.status_code == 422
    assert error_code(resp) == "INVALID_AMOUNT"


def test_currency_mismatch_is_invalid_amount(client, app):
    alice, bob, _, _, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "5.00", [alice, bob], currency_code="EUR"))
    assert resp.status_code == 422
    assert error_code(resp) == "INVALID_AMOUNT"


def test_three_decimal_places_is_rejected(client, app):
    alice, bob, _, _, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "10.005", [alice, bob]))

    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["code"] == "INVALID_AMOUNT_PRECISION"
    assert error["field"] == "amount"


def test_missing_title_is_missing_field(client, app):
    alice, bob, _, _, group_id = _setup(app)
    body = equal_expense(alice, "10.00", [alice, bob])
    del body["title"]

    resp = post_expense(client, alice, group_id, body)

    assert resp.status_code == 400
    assert error_code(resp) == "MISSING_FIELD"
    assert resp.get_json()["error"]["field"] == "title"


def test_unknown_category_id_is_not_found(client, app):
    alice, bob, _, _, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "10.00", [alice, bob], category_id=424242))
    assert resp.status_code == 404
    assert error_code(resp) == "CATEGORY_NOT_FOUND"
    assert resp.get_json()["error"]["field"] == "category_id"


def test_category_of_another_group_is_rejected(client, app):
    alice, bob, _, _, group_id = _setup(app)
    other_group = seed_group(app, alice, name="Other")
    foreign = seed_category(app, other_group, "Fuel", created_by=alice)

    resp = post_expense(client, alice, group_id, equal_expense(alice, "10.00", [alice, bob], category_id=foreign))

    assert resp.status_code == 422
    assert error_code(resp) == "CATEGORY_NOT_IN_GROUP"
    assert _list(client, alice, group_id) == []


def test_category_name_instead_of_id_is_invalid_field(client, app):
    alice, bob, _, _, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "10.00", [alice, bob], category="food"))
    assert resp.status_code == 400
    assert error_code(resp) == "INVALID_FIELD"


def test_mixed_split_types(client, app):
    alice, bob, _, _, group_id = _setup(app)
    body = {
        "title": "Mixed",
        "amount": "10.00",
        "payments": [{"user_id": alice, "amount": "10.00"}],
        "splits": [
            {"user_id": alice, "split_type": "equal"},
            {"user_id": bob, "split_type": "exact", "amount": "5.00"},
        ],
    }
    resp = post_expense(client, alice, group_id, body)
    assert resp.status_code == 422
    assert error_code(resp) == "MIXED_SPLIT_TYPES"


def test_participant_with_both_references(client, app):
    alice, bob, _, _, group_id = _setup(app)
    pending = seed_pending_user(app, group_id, "Erin", invited_by=alice)
    body = {
        "title": "Both",
        "amount": "10.00",
        "payments": [{"user_id": alice, "amount": "10.00"}],
        "splits": [{"user_id": bob, "pending_user_id": pending, "amount": "10.00"}],
    }
    resp = post_expense(client, alice, group_id, body)
    assert resp.status_code == 422
    assert error_code(resp) == "INVALID_PARTICIPANT"


def test_non_member_caller_is_forbidden(client, app):
    alice, bob, _, dave, group_id = _setup(app)
    resp = post_expense(client, dave, group_id, equal_expense(alice, "10.00", [alice, bob]))
    assert resp.status_code == 403
    assert error_code(resp) == "NOT_GROUP_MEMBER"


def test_non_member_participant_is_forbidden(client, app):
    alice, _, _, dave, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "10.00", [alice, dave]))

    assert resp.status_code == 403
    assert error_code(resp) == "NOT_GROUP_MEMBER"
    assert _list(client, alice, group_id) == []


def test_pending_user_of_other_group_is_forbidden(client, app):
    alice, bob, _, _, group_id = _setup(app)
    other_group = seed_group(app, bob, name="Other")
    outsider = seed_pending_user(app, other_group, "Finn", invited_by=bob)

    resp = post_expense(client, alice, group_id, equal_expense(alice, "10.00", [alice], pending_ids=[outsider]))

    assert resp.status_code == 403
    assert error_code(resp) == "NOT_GROUP_MEMBER"


def test_unknown_group_is_not_found(client, app):
    alice, bob, _, _, _ = _setup(app)
    resp = post_expense(client, alice, 99999, equal_expense(alice, "10.00", [alice, bob]))
    assert resp.status_code == 404
    assert error_code(resp) == "GROUP_NOT_FOUND"


def test_list_by_non_member_is_forbidden(client, app):
    _, _, _, dave, group_id = _setup(app)
    resp = client.get(f"/api/v1/groups/{group_id}/expenses", headers=auth_headers(dave))
    assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# /expenses/:id: get, replace, delete
# ═══════════════════════════════════════════════════════════════════════════

def _create(client, app):
    alice, bob, carol, dave, group_id = _setup(app)
    resp = post_expense(client, alice, group_id, equal_expense(alice, "60.00", [alice, bob, carol]))
    assert resp.status_code == 201, resp.get_json()
    return alice, bob, carol, dave, group_id, resp.get_json()["data"]["id"]


def test_get_expense(client, app):
    _, bob, _, _, _, expense_id = _create(client, app)

    resp = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(bob))

    assert resp.status_code == 200
    assert resp.get_json()["data"]["id"] == expense_id
    assert len(resp.get_json()["data"]["splits"]) == 3


def test_get_expense_by_outsider_is_forbidden(client, app):
    _, _, _, dave, _, expense_id = _create(client, app)
    resp = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(dave))
    assert resp.status_code == 403


def test_get_unknown_expense(client, app):
    alice, *_ = _setup(app)
    resp = client.get("/api/v1/expenses/424242", headers=auth_headers(alice))
    assert resp.status_code == 404
    assert error_code(resp) == "EXPENSE_NOT_FOUND"


def test_replace_expense_swaps_line_items(client, app):
    alice, bob, carol, _, _, expense_id = _create(client, app)
    body = {
        "title": "Dinner (fixed)",
        "amount": "45.00",
        "payments": [{"user_id": bob, "amount": "45.00"}],
        "splits": [{"user_id": alice, "amount": "20.00"}, {"user_id": carol, "amount": "25.00"}],
    }

    resp = client.put(f"/api/v1/expenses/{expense_id}", json=body, headers=auth_headers(carol))

    assert resp.status_code == 200, resp.get_json()
    data = resp.get_json()["data"]
    assert data["title"] == "Dinner (fixed)"
    assert data["amount"] == "45.00"
    assert data["payments"] == [{"user_id": bob, "amount": "45.00", "payment_method": None}]
    assert {s["user_id"]: s["amount"] for s in data["splits"]} == {alice: "20.00", carol: "25.00"}
    assert data["updated_at"] is not None


def test_replace_with_invalid_body_keeps_old_expense(client, app):
    alice, bob, _, _, _, expense_id = _create(client, app)
    body = equal_expense(alice, "45.00", [alice, bob])
    body["payments"][0]["amount"] = "40.00"

    resp = client.put(f"/api/v1/expenses/{expense_id}", json=body, headers=auth_headers(alice))
    assert resp.status_code == 422

    stored = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice)).get_json()["data"]
    assert stored["amount"] == "60.00"
    assert len(stored["splits"]) == 3


def test_delete_is_soft_and_idempotent(client, app):
    alice, _, _, _, group_id, expense_id = _create(client, app)

    first = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice))
    assert first.status_code == 200
    assert first.get_json()["data"] == {"deleted": True, "expense_id": expense_id}

    assert _list(client, alice, group_id) == []

    detail = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice)).get_json()["data"]
    assert detail["deleted_at"] is not None

    second = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice))
    assert second.status_code == 200
    again = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice)).get_json()["data"]
    assert again["deleted_at"] == detail["deleted_at"]


def test_replace_deleted_expense_is_rejected(client, app):
    alice, bob, _, _, _, expense_id = _create(client, app)
    client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice))

    resp = client.put(
        f"/api/v1/expenses/{expense_id}",
        json=equal_expense(alice, "10.00", [alice, bob]),
        headers=auth_headers(alice),
    )

    assert resp.status_code == 422
    assert error_code(resp) == "EXPENSE_DELETED"


# ═══════════════════════════════════════════════════════════════════════════
# /friends/:id/expenses
# ═══════════════════════════════════════════════════════════════════════════

def test_friend_expense_round_trip(client, app):
    alice = seed_user(app, "alice")
    bob = seed_user(app, "bob")
    friendship_id = seed_friendship(app, alice, bob)

    resp = client.post(
        f"/api/v1/friends/{bob}/expenses",
        json=equal_expense(alice, "30.00", [alice, bob], title="Taxi"),
        headers=auth_headers(alice),
    )
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()["data"]["friendship_id"] == friendship_id
    assert resp.get_json()["data"]["group_id"] is None

    listed = client.get(f"/api/v1/friends/{alice}/expenses", headers=auth_headers(bob))
    assert listed.status_code == 200
    assert [e["title"] for e in listed.get_json()["data"]] == ["Taxi"]


def test_friend_expense_requires_friendship(client, app):
    alice = seed_user(app, "alice")
    bob = seed_user(app, "bob")

    resp = client.post(
        f"/api/v1/friends/{bob}/expenses",
        json=equal_expense(alice, "30.00", [alice, bob]),
        headers=auth_headers(alice),
    )
    assert resp.status_code == 404
    assert error_code(resp) == "FRIEND_NOT_FOUND"


def test_friend_expense_with_third_party_is_forbidden(client, app):
    alice = seed_user(app, "alice")
    bob = seed_user(app, "bob")
    carol = seed_user(app, "carol")
    seed_friendship(app, alice, bob)

    resp = client.post(
        f"/api/v1/friends/{bob}/expenses",
        json=equal_expense(alice, "30.00", [alice, bob, carol]),
        headers=auth_headers(alice),
    )
    assert resp.status_code == 403
    assert error_code(resp) == "INVALID_FRIEND_ACTION"


def test_friend_expense_with_self_is_forbidden(client, app):
    alice = seed_user(app, "alice")
    resp = client.post(
        f"/api/v1/friends/{alice}/expenses",
        json=equal_expense(alice, "30.00", [alice]),
        headers=auth_headers(alice),
    )
    assert resp.status_code == 403
    assert error_code(resp) == "INVALID_FRIEND_ACTION"


def test_blocked_friendship_freezes_its_expenses(client, app):
    alice = seed_user(app, "alice")
    bob = seed_user(app, "bob")
    friendship_id = seed_friendship(app, alice, bob)
    created = client.post(
        f"/api/v1/friends/{bob}/expenses",
        json=equal_expense(alice, "30.00", [alice, bob], title="Taxi"),
        headers=auth_headers(alice),
    )
    expense_id = created.get_json()["data"]["id"]
    set_friendship_status(app, friendship_id, FriendshipStatus.BLOCKED)

    replaced = client.put(
        f"/api/v1/expenses/{expense_id}",
        json=equal_expense(alice, "90.00", [alice, bob], title="Taxi"),
        headers=auth_headers(alice),
    )
    fetched = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(bob))
    deleted = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice))

    for resp in (replaced, fetched, deleted):
        assert resp.status_code == 404
        assert error_code(resp) == "FRIEND_NOT_FOUND"

    set_friendship_status(app, friendship_id, FriendshipStatus.ACCEPTED)
    expense = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice)).get_json()["data"]
    assert expense["amount"] == "30.00"
    assert expense["deleted_at"] is None


# ═══════════════════════════════════════════════════════════════════════════
# GET /groups/:id/expenses/search
# ═══════════════════════════════════════════════════════════════════════════

def _search(client, user_id, group_id, **params):
    return client.get(
        f"/api/v1/groups/{group_id}/expenses/search",
        query_string=params,
        headers=auth_headers(user_id),
    )


def _searchable_group(client, app):
    """Four expenses in March: alice pays two, bob pays two, carol owes on one."""
    alice, bob, carol, dave, group_id = _setup(app)
    fuel = seed_category(app, group_id, "Fuel", created_by=alice)
    bodies = [
        (alice, equal_expense(alice, "12.00", [alice, bob], title="Taxi to airport", date="2024-03-01")),
        (alice, equal_expense(alice, "80.00", [alice, bob], title="Groceries", date="2024-03-05",
                              notes="taxi receipts inside")),
        (bob, equal_expense(bob, "45.00", [alice, bob, carol], title="Dinner", date="2024-03-10")),
        (bob, equal_expense(bob, "60.00", [alice, bob], title="Petrol", date="2024-03-20",
                            category_id=fuel)),
    ]
    for author, body in bodies:
        resp = post_expense(client, author, group_id, body)
        assert resp.status_code == 201, resp.get_json()
    return alice, bob, carol, dave, group_id, fuel


def _titles(resp):
    assert resp.status_code == 200, resp.get_json()
    return [e["title"] for e in resp.get_json()["data"]]


def test_search_without_filters_lists_everything_newest_first(client, app):
    alice, _, _, _, group_id, _ = _searchable_group(client, app)

    assert _titles(_search(client, alice, group_id)) == ["Petrol", "Dinner", "Groceries", "Taxi to airport"]


def test_search_text_matches_title_and_notes_case_insensitively(client, app):
    alice, _, _, _, group_id, _ = _searchable_group(client, app)

    assert _titles(_search(client, alice, group_id, q="TAXI")) == ["Groceries", "Taxi to airport"]


def test_search_by_date_and_amount_range(client, app):
    alice, _, _, _, group_id, _ = _searchable_group(client, app)

    dated = _search(client, alice, group_id, start_date="2024-03-02", end_date="2024-03-10")
    priced = _search(client, alice, group_id, min_amount="45.00", max_amount="60.00")

    assert _titles(dated) == ["Dinner", "Groceries"]
    assert _titles(priced) == ["Petrol", "Dinner"]


def test_search_by_payer_ower_author_and_category(client, app):
    alice, bob, carol, _, group_id, fuel = _searchable_group(client, app)

    assert _titles(_search(client, alice, group_id, payer_id=alice)) == ["Groceries", "Taxi to airport"]
    assert _titles(_search(client, alice, group_id, ower_id=carol)) == ["Dinner"]
    assert _titles(_search(client, alice, group_id, created_by=bob)) == ["Petrol", "Dinner"]
    assert _titles(_search(client, alice, group_id, category_id=fuel)) == ["Petrol"]


def test_search_skips_deleted_expenses(client, app):
    alice, _, _, _, group_id, _ = _searchable_group(client, app)
    petrol = _search(client, alice, group_id, q="Petrol").get_json()["data"][0]["id"]
    client.delete(f"/api/v1/expenses/{petrol}", headers=auth_headers(alice))

    assert "Petrol" not in _titles(_search(client, alice, group_id))


def test_search_pages_with_limit_and_offset(client, app):
    alice, _, _, _, group_id, _ = _searchable_group(client, app)

    assert _titles(_search(client, alice, group_id, limit=2, offset=1)) == ["Dinner", "Groceries"]
    assert len(_titles(_search(client, alice, group_id, limit=0))) == 4
    assert len(_titles(_search(client, alice, group_id, limit=1000))) == 4


def test_search_rejects_malformed_filter(client, app):
    alice, _, _, _, group_id, _ = _searchable_group(client, app)

    resp = _search(client, alice, group_id, start_date="March 1st")

    assert resp.status_code == 400
    assert error_code(resp) == "INVALID_FIELD"
    assert resp.get_json()["error"]["field"] == "start_date"


def test_search_by_non_member_is_forbidden(client, app):
    _, _, _, dave, group_id, _ = _searchable_group(client, app)

    resp = _search(client, dave, group_id, q="taxi")

    assert resp.status_code == 403
    assert error_code(resp) == "NOT_GROUP_MEMBER"
