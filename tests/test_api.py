def _customer(client, **overrides):
    body = {"name": "Pescadería Don Luis", "phone": "04241112233", **overrides}
    resp = client.post("/customers", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _tx(client, customer_id, **body):
    payload = {
        "kind": "purchase",
        "date": "2026-10-01",
        "description": "pedido",
        "currency_type": "bcv_usd",
        **body,
    }
    return client.post(f"/customers/{customer_id}/transactions", json=payload)


def test_health_and_request_id(client):
    resp = client.get("/health", headers={"x-request-id": "abc-123"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["x-request-id"] == "abc-123"


def test_customer_lifecycle(client):
    created = _customer(client, rate_type="bcv_usd", custom_rate=99)
    assert created["custom_rate"] is None
    assert created["balance_bcv"] == 0
    cid = created["id"]

    patched = client.patch(f"/customers/{cid}", json={"rate_type": "manual", "custom_rate": 41.5})
    assert patched.status_code == 200
    assert patched.json()["custom_rate"] == 41.5

    cleared = client.patch(f"/customers/{cid}", json={"rate_type": None})
    assert cleared.status_code == 422
    assert cleared.json()["error"] == "validation_error"
    assert client.get(f"/customers/{cid}").json()["rate_type"] == "manual"

    listed = client.get("/customers", params={"search": "don luis"}).json()
    assert [c["id"] for c in listed] == [cid]

    assert client.delete(f"/customers/{cid}").status_code == 204
    assert client.get("/customers").json() == []
    assert client.get("/customers", params={"include_inactive": True}).json()[0]["is_active"] is False


def test_ledger_flow_and_views(client):
    cid = _customer(client)["id"]
    a = _tx(client, cid, amount_primary=100)
    assert a.status_code == 201, a.text
    assert a.json()["locked_rate"] == 40.0
    assert a.json()["amount_bs"] == 4000.0

    b = _tx(client, cid, amount_primary=50, amount_secondary=40).json()
    assert b["is_dual"] is True
    _tx(client, cid, kind="payment", amount_primary=30, payment_method="pago_movil")

    bcv = client.get(f"/customers/{cid}/balances").json()
    assert bcv == {
        "view": "bcv",
        "has_dual": True,
        "balance_divisas": 0.0,
        "balance_bcv": 120.0,
        "balance_euro": 0.0,
    }
    divisas = client.get(f"/customers/{cid}/balances", params={"view": "divisas"}).json()
    assert divisas["balance_bcv"] == 70.0
    assert divisas["balance_divisas"] == 40.0

    rows = client.get(f"/customers/{cid}/transactions", params={"view": "divisas"}).json()
    assert [r["display_amount"] for r in rows if r["is_dual"]] == [40.0]

    settled = client.post(
        f"/customers/{cid}/transactions/{a.json()['id']}/settle", json={"method": "efectivo"}
    )
    assert settled.status_code == 200
    assert client.get(f"/customers/{cid}").json()["balance_bcv"] == 20.0

    again = client.post(f"/customers/{cid}/transactions/{a.json()['id']}/settle")
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_state"


def test_edit_and_delete_transaction(client):
    cid = _customer(client)["id"]
    tx = _tx(client, cid, amount_primary=25).json()

    resp = client.patch(
        f"/customers/{cid}/transactions/{tx['id']}", json={"currency_type": "divisas"}
    )
    assert resp.status_code == 200
    assert client.get(f"/customers/{cid}").json()["balance_divisas"] == 25.0

    bad = client.patch(
        f"/customers/{cid}/transactions/{tx['id']}", json={"amount_secondary": 10}
    )
    assert bad.status_code == 422
    assert bad.json()["error"] == "validation_error"

    empty = client.patch(f"/customers/{cid}/transactions/{tx['id']}", json={})
    assert empty.status_code == 422

    assert client.delete(f"/customers/{cid}/transactions/{tx['id']}").status_code == 204
    assert client.get(f"/customers/{cid}").json()["balance_divisas"] == 0.0


def test_request_and_domain_errors(client):
    missing = client.get("/customers/999")
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"

    cid = _customer(client)["id"]
    bad_kind = _tx(client, cid, kind="refund", amount_primary=1)
    assert bad_kind.status_code == 422
    assert bad_kind.json()["error"] == "validation_error"

    zero = _tx(client, cid, currency_type="divisas", amount_primary=0)
    assert zero.status_code == 422

    bad_view = client.get(f"/customers/{cid}/balances", params={"view": "euros"})
    assert bad_view.status_code == 422

    no_route = client.get("/nowhere")
    assert no_route.status_code == 404
    assert "No route" in no_route.json()["detail"]


def test_quote_endpoints_and_purchase_link(client):
    created = client.post(
        "/quotes",
        json={
            "items": [
                {"name": "Camarón jumbo", "quantity": 2, "unit_price_primary": 12.5, "unit_price_secondary": 10},
            ],
            "pricing_mode": "dual",
            "delivery_fee": 2,
        },
    )
    assert created.status_code == 201, created.text
    quote = created.json()
    assert quote["total_primary"] == 27.0
    assert quote["total_secondary"] == 22.0
    assert quote["total_bs"] == 1080.0
    assert quote["items"][0]["quantity"] == 2.0
    assert len(quote["id"]) == 5

    cid = _customer(client)["id"]
    linked = client.post(f"/customers/{cid}/quotes/{quote['id']}/purchase")
    assert linked.status_code == 201
    assert linked.json()["is_dual"] is True

    edited = client.put(
        f"/quotes/{quote['id']}",
        json={"items": [{"name": "Camarón jumbo", "quantity": 1, "unit_price_primary": 12.5}]},
    )
    assert edited.status_code == 200
    assert edited.json()["total_primary"] == 14.5
    assert client.get(f"/customers/{cid}").json()["balance_bcv"] == 14.5

    link = client.put(f"/quotes/{quote['id']}/external-link", json={"external_link": True})
    assert link.json()["external_link"] is True
    blocked = client.delete(
        f"/customers/{cid}/transactions/{linked.json()['id']}"
    )
    assert blocked.status_code == 409
    assert client.delete(f"/quotes/{quote['id']}").status_code == 409

    status = client.put(f"/quotes/{quote['id']}/status", json={"status": "settled"})
    assert status.json()["status"] == "settled"
    stats = client.get("/quotes/stats").json()
    assert stats["total"] == 1 and stats["pending"] == 0

    assert client.get("/quotes", params={"status": "bogus"}).status_code == 422
    assert client.get("/quotes/00000").status_code == 404


def test_empty_quote_is_rejected(client):
    resp = client.post("/quotes", json={"items": []})
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


def test_rate_endpoints(client):
    current = client.get("/rates").json()
    assert current == {"usd": 40.0, "eur": 43.5, "manual": False, "source": "static"}

    pinned = client.put("/rates/override", json={"usd_rate": 42.1})
    assert pinned.json()["manual"] is True
    assert pinned.json()["usd"] == 42.1

    cid = _customer(client)["id"]
    tx = _tx(client, cid, amount_primary=10).json()
    assert tx["locked_rate"] == 42.1

    assert client.delete("/rates/override").status_code == 204
    assert client.delete("/rates/override").status_code == 404
    assert client.get("/rates").json()["usd"] == 40.0

    history = client.get("/rates/history", params={"date": "2001-01-01"}).json()
    assert history["found"] is False


def test_public_account_via_share_token(client):
    cid = _customer(client, name="Restaurant El Faro")["id"]
    _tx(client, cid, amount_primary=50, amount_secondary=45)
    issued = client.post(f"/customers/{cid}/share-token")
    assert issued.status_code == 201
    token = issued.json()["token"]
    assert issued.json()["url"] == f"/cuenta/{token}"

    public = client.get(f"/cuenta/{token}", params={"view": "divisas"}).json()
    assert public["customer"]["name"] == "Restaurant El Faro"
    assert public["customer"]["balance_divisas"] == 45.0
    assert public["customer"]["balance_bcv"] == 0.0
    assert public["has_dual"] is True
    assert len(public["transactions"]) == 1

    other = client.post(
        "/quotes", json={"items": [{"name": "Pulpo", "quantity": 1, "unit_price_primary": 9}]}
    ).json()
    assert client.get(f"/cuenta/{token}/quotes/{other['id']}").status_code == 404

    assert client.delete(f"/customers/{cid}/share-token").status_code == 204
    gone = client.get(f"/cuenta/{token}")
    assert gone.status_code == 404
    assert gone.json() == client.get("/cuenta/" + "f" * 32).json()


def test_rate_settings_endpoints(client, settings):
    current = client.get("/rates/settings").json()
    assert current == {"provider": "static", "cache_ttl_seconds": settings.rates_cache_ttl_seconds}

    updated = client.put("/rates/settings", json={"cache_ttl_seconds": 120})
    assert updated.status_code == 200
    assert updated.json() == {"provider": "static", "cache_ttl_seconds": 120}

    unknown = client.put("/rates/settings", json={"provider": "carrier-pigeon"})
    assert unknown.status_code == 422
    assert unknown.json()["error"] == "validation_error"
    assert client.put("/rates/settings", json={}).status_code == 422
    assert client.put("/rates/settings", json={"cache_ttl_seconds": 5}).status_code == 422
    assert client.get("/rates/settings").json()["cache_ttl_seconds"] == 120


def test_receivables_endpoints(client):
    cid = _customer(client)["id"]
    other = _customer(client, name="Abasto Central")["id"]
    first = _tx(client, cid, amount_primary=40, date="2026-09-01").json()
    _tx(client, cid, amount_primary=10, date="2026-09-11")
    _tx(client, cid, kind="payment", amount_primary=5, date="2026-09-05")
    client.post(
        f"/customers/{cid}/transactions/{first['id']}/settle", json={"date": "2026-09-06"}
    )

    summary = client.get("/customers/summary")
    assert summary.status_code == 200
    assert [row["id"] for row in summary.json()] == [other, cid]
    row = summary.json()[1]
    assert row["total_purchases"] == 2
    assert row["last_purchase_date"] == "2026-09-11"
    assert row["last_payment_date"] == "2026-09-05"
    assert row["balance_bcv"] == 5.0
    assert [r["id"] for r in client.get("/customers/summary", params={"search": "abasto"}).json()] == [other]

    pattern = client.get(f"/customers/{cid}/payment-pattern").json()
    assert pattern["customer_id"] == cid
    assert pattern["avg_days_to_pay"] == 5
    assert pattern["avg_days_between_purchases"] == 10
    assert pattern["unpaid_purchases"] == 1
    assert pattern["total_unpaid"] == 10.0
    assert client.get("/customers/999/payment-pattern").status_code == 404

    client.post("/quotes", json={"items": [{"name": "Merluza", "quantity": 1, "unit_price_primary": 7}]})
    overdue = client.get("/quotes/overdue")
    assert overdue.status_code == 200
    assert overdue.json() == []
    assert client.get("/quotes/overdue", params={"days": -1}).status_code == 422
