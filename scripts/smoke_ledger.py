"""Smoke script for the dual-currency ledger over HTTP.

Creates a throwaway customer, books a plain and a dual purchase plus a
payment, then prints both balance views and the result of settling.
"""

from pprint import pprint

from fastapi.testclient import TestClient

from cuentas.main import create_app


def run():
    client = TestClient(create_app())
    output = {}

    cid = client.post("/customers", json={"name": "Smoke Test Bodegón"}).json()["id"]
    base = {"date": "2026-10-01", "description": "smoke", "currency_type": "bcv_usd"}
    plain = client.post(
        f"/customers/{cid}/transactions",
        json={**base, "kind": "purchase", "amount_primary": 100},
    ).json()
    client.post(
        f"/customers/{cid}/transactions",
        json={**base, "kind": "purchase", "amount_primary": 50, "amount_secondary": 40},
    )
    client.post(
        f"/customers/{cid}/transactions",
        json={**base, "kind": "payment", "amount_primary": 30, "payment_method": "efectivo"},
    )

    output["bcv"] = client.get(f"/customers/{cid}/balances").json()
    output["divisas"] = client.get(f"/customers/{cid}/balances?view=divisas").json()

    client.post(f"/customers/{cid}/transactions/{plain['id']}/settle")
    output["after_settle"] = client.get(f"/customers/{cid}/balances").json()
    output["verify"] = client.post(f"/customers/{cid}/recompute").json()

    # leave the smoke customer out of normal listings
    client.delete(f"/customers/{cid}")
    pprint(output)


if __name__ == "__main__":
    run()
