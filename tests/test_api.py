import unittest
from dataclasses import replace

from fastapi.testclient import TestClient

from dailydraw.api import create_app, status_for
from dailydraw.config import Settings
from dailydraw.errors import (
    ConfigurationError,
    InvalidRequest,
    NoDrawToday,
    NothingToCancel,
    NothingToRollback,
    OpsFrozen,
    Unauthorized,
)

from tests.support import DatabaseTestCase

ADMIN = {"x-admin-token": "admin-secret"}
CRON = {"x-draw-cron-key": "cron-secret"}


class StatusMappingTestCase(unittest.TestCase):
    def test_status_codes(self):
        self.assertEqual(status_for(Unauthorized()), 401)
        self.assertEqual(status_for(ConfigurationError()), 500)
        self.assertEqual(status_for(OpsFrozen()), 423)
        self.assertEqual(status_for(NoDrawToday()), 404)
        self.assertEqual(status_for(NothingToRollback()), 404)
        self.assertEqual(status_for(NothingToCancel()), 400)
        self.assertEqual(status_for(InvalidRequest(code="INVALID_AMOUNT")), 400)


class ApiTestCase(DatabaseTestCase):
    def client(self, settings: Settings = None) -> TestClient:
        app = create_app(settings=settings or self.settings, session_factory=self.Session)
        return TestClient(app)

    def test_cycle_requires_cron_key(self):
        client = self.client()
        self.assertEqual(client.post("/internal/cycle").status_code, 401)
        wrong = client.post("/internal/cycle", headers={"x-draw-cron-key": "nope"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.json(), {"ok": False, "error": "UNAUTHORIZED", "message": wrong.json()["message"]})
        # The admin token is not a cron credential.
        self.assertEqual(
            client.post("/internal/cycle", headers={"x-draw-cron-key": "admin-secret"}).status_code,
            401,
        )

    def test_cycle_runs_with_cron_key(self):
        for method in ("get", "post"):
            with self.subTest(method=method):
                response = getattr(self.client(), method)("/internal/cycle", headers=CRON)
                self.assertEqual(response.status_code, 200)
                body = response.json()
                self.assertTrue(body["ok"])
                self.assertEqual(body["summary"]["mode"], "MANUAL")
                self.assertEqual(body["summary"]["bonus"]["found"], 0)

    def test_missing_secret_is_a_configuration_error(self):
        client = self.client(Settings())
        response = client.post("/internal/cycle", headers=CRON)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "CONFIG_MISSING")
        self.assertEqual(client.get("/admin/ops-mode", headers=ADMIN).status_code, 500)

    def test_admin_accepts_header_or_bearer(self):
        client = self.client()
        self.assertEqual(client.get("/admin/ops-mode").status_code, 401)
        self.assertEqual(client.get("/admin/ops-mode", headers=ADMIN).status_code, 200)
        bearer = client.get("/admin/ops-mode", headers={"Authorization": "Bearer admin-secret"})
        self.assertEqual(bearer.status_code, 200)
        self.assertEqual(bearer.json()["effectiveMode"], "MANUAL")

    def test_frozen_blocks_admin_actions(self):
        client = self.client(replace(self.settings, ops_frozen=True))
        response = client.post("/admin/panic/close-today", headers=ADMIN)
        self.assertEqual(response.status_code, 423)
        self.assertEqual(response.json()["error"], "OPS_FROZEN")
        # Authentication is still checked first.
        self.assertEqual(client.post("/admin/panic/close-today").status_code, 401)

    def test_panic_without_draw(self):
        client = self.client()
        for path in (
            "/admin/panic/close-today",
            "/admin/panic/cancel-bonuses",
            "/admin/panic/rollback-last-bonus",
        ):
            with self.subTest(path=path):
                response = client.post(path, headers=ADMIN)
                self.assertEqual(response.status_code, 404)
                self.assertEqual(response.json()["error"], "NO_DRAW")

    def test_ticket_bonus_and_panic_flow(self):
        client = self.client()
        ticket = client.post("/tickets", json={"wallet_address": "wallet-1"})
        self.assertEqual(ticket.status_code, 200)
        self.assertTrue(ticket.json()["ticket"]["code"].startswith("DRW-"))

        today = client.get("/draw/today").json()["draw"]
        self.assertTrue(today["exists"])
        self.assertEqual(today["ticketCount"], 1)

        bad = client.post("/admin/bonus", headers=ADMIN, json={"amount": 10, "delay_minutes": 7})
        self.assertEqual(bad.status_code, 400)

        scheduled = client.post(
            "/admin/bonus", headers=ADMIN, json={"amount": 10, "delay_minutes": 30, "label": "Tea"}
        )
        self.assertEqual(scheduled.status_code, 200)
        self.assertEqual(scheduled.json()["bonus"]["label"], "Tea")

        upcoming = client.get("/bonus/upcoming").json()
        self.assertEqual(len(upcoming["upcoming"]), 1)

        cancelled = client.post("/admin/panic/cancel-bonuses", headers=ADMIN)
        self.assertEqual(cancelled.json()["cancelled"], 1)
        again = client.post("/admin/panic/cancel-bonuses", headers=ADMIN)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()["error"], "NOTHING_TO_CANCEL")

        rolled = client.post("/admin/panic/rollback-last-bonus", headers=ADMIN)
        self.assertEqual(rolled.status_code, 200)
        empty = client.post("/admin/panic/rollback-last-bonus", headers=ADMIN)
        self.assertEqual(empty.status_code, 404)
        self.assertEqual(empty.json()["error"], "NO_BONUS")

    def test_resolve_and_mark_paid(self):
        client = self.client()
        client.post("/tickets", json={"wallet_address": "wallet-1"})
        client.post("/tickets", json={"wallet_address": "wallet-2"})

        resolved = client.post("/admin/draw/resolve", headers=ADMIN)
        self.assertEqual(resolved.status_code, 200)
        winner = resolved.json()["winner"]
        self.assertTrue(resolved.json()["created"])

        repeat = client.post("/admin/draw/resolve", headers=ADMIN).json()
        self.assertFalse(repeat["created"])
        self.assertEqual(repeat["winner"]["id"], winner["id"])

        paid = client.post(
            f"/admin/rewards/{winner['id']}/mark-paid",
            headers=ADMIN,
            json={"settlement_ref": "sig-123"},
        )
        self.assertEqual(paid.status_code, 200)
        self.assertTrue(paid.json()["reward"]["isPaidOut"])

        missing = client.post("/admin/rewards/999/mark-paid", headers=ADMIN)
        self.assertEqual(missing.status_code, 404)

        recent = client.get("/rewards/recent").json()["rewards"]
        self.assertEqual(recent[0]["id"], winner["id"])

    def test_bonus_amount_errors_use_the_error_envelope(self):
        client = self.client()
        for amount in ("abc", 0.4, None):
            with self.subTest(amount=amount):
                response = client.post(
                    "/admin/bonus", headers=ADMIN, json={"amount": amount, "delay_minutes": 5}
                )
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["error"], "INVALID_AMOUNT")

        malformed = client.post(
            "/admin/bonus", headers=ADMIN, json={"amount": 5, "delay_minutes": "soon"}
        )
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(malformed.json()["error"], "INVALID_REQUEST")
        self.assertFalse(malformed.json()["ok"])

    def test_operator_ticket_and_bonus_reads(self):
        client = self.client()
        client.post("/tickets", json={"wallet_address": "wallet-1"})
        client.post("/tickets", json={"wallet_address": "wallet-2"})

        self.assertEqual(client.get("/admin/draw/today/tickets").status_code, 401)
        listing = client.get("/admin/draw/today/tickets", headers=ADMIN).json()
        self.assertEqual(len(listing["tickets"]), 2)
        self.assertEqual(
            {t["walletAddress"] for t in listing["tickets"]}, {"wallet-1", "wallet-2"}
        )

        history = client.get("/tickets/history", params={"walletAddress": "wallet-1"}).json()
        self.assertEqual([t["walletAddress"] for t in history["tickets"]], ["wallet-1"])
        missing = client.get("/tickets/history")
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()["error"], "INVALID_WALLET")

        client.post("/admin/bonus", headers=ADMIN, json={"amount": 10, "delay_minutes": 15})
        live = client.get("/bonus/live").json()["bonus"]
        self.assertEqual([b["status"] for b in live], ["SCHEDULED"])

    def test_reopen_after_force_close(self):
        client = self.client()
        client.post("/tickets", json={"wallet_address": "wallet-1"})

        closed = client.post("/admin/panic/close-today", headers=ADMIN)
        self.assertEqual(closed.status_code, 200)
        self.assertEqual(client.get("/draw/today").json()["draw"]["status"], "CLOSED")

        reopened = client.post("/admin/draw/reopen", headers=ADMIN)
        self.assertEqual(reopened.status_code, 200)
        self.assertEqual(reopened.json()["status"], "OPEN")

        again = client.post("/admin/draw/reopen", headers=ADMIN)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()["error"], "INVALID_TRANSITION")

    def test_ops_mode_routes(self):
        client = self.client()
        refused = client.post("/admin/ops-mode", headers=ADMIN, json={"mode": "AUTO"})
        self.assertEqual(refused.status_code, 400)
        self.assertEqual(refused.json()["error"], "AUTO_NOT_ALLOWED_IN_THIS_ENV")

        client = self.client(replace(self.settings, auto_draw_enabled=True))
        accepted = client.post("/admin/ops-mode", headers=ADMIN, json={"mode": "AUTO"})
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(client.get("/ops/mode").json()["effectiveMode"], "AUTO")


if __name__ == "__main__":
    unittest.main()
