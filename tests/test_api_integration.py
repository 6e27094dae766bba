"""
Integration tests for the Microfinance API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from microfinance.api import create_app, status_for
from microfinance.api.auth import MicrofinanceSystem
from microfinance.config import MicrofinanceConfig
from microfinance.errors import (
    ConflictError, InvalidStateError, NotFoundError, StoreFailureError, UnauthorizedError,
    ValidationError
)
from microfinance.storage import InMemoryStorage


ADMIN = {"email": "admin@example.com", "nombre": "Ana", "apellido": "Rojas",
         "password": "admin-password-1"}
STAFF_PASSWORD = "staff-password-1"


@pytest.fixture
def system(clock):
    """In-memory system on the shared fixed clock"""
    config = MicrofinanceConfig(database_url="memory://", jwt_secret="api-test-secret",
                                default_page_size=2, max_page_size=5)
    return MicrofinanceSystem(config=config, storage=InMemoryStorage(), clock=clock)


@pytest.fixture
def client(system):
    """Create a test client for the API"""
    return TestClient(create_app(system))


def login(client, email, password):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def team(client):
    """Bootstrapped admin, a supervisor and two advisors, all logged in"""
    assert client.post("/auth/setup", json=ADMIN).status_code == 201
    admin = login(client, ADMIN["email"], ADMIN["password"])

    def create(email, rol, **extra):
        r = client.post("/usuarios", headers=admin, json={
            "email": email, "nombre": email.split("@")[0].title(), "apellido": "Test",
            "rol": rol, "password": STAFF_PASSWORD, **extra
        })
        assert r.status_code == 201, r.text
        return r.json()["id"]

    supervisor_id = create("supervisor@example.com", "supervisor")
    advisor_id = create("advisor@example.com", "asesor", supervisor_id=supervisor_id)
    other_id = create("other@example.com", "asesor")
    return {
        "admin": admin,
        "supervisor": login(client, "supervisor@example.com", STAFF_PASSWORD),
        "advisor": login(client, "advisor@example.com", STAFF_PASSWORD),
        "other": login(client, "other@example.com", STAFF_PASSWORD),
        "supervisor_id": supervisor_id,
        "advisor_id": advisor_id,
        "other_id": other_id,
    }


def create_client(client, headers, dni="12345678", **extra):
    r = client.post("/clientes", headers=headers, json={
        "dni": dni, "nombre": "Carmen", "apellido": "Torres", "telefono": "987654321",
        "direccion": "Av. Grau 123", **extra
    })
    assert r.status_code == 201, r.text
    return r.json()


def active_loan(client, team, cliente_id):
    r = client.post("/prestamos", headers=team["advisor"], json={
        "cliente_id": cliente_id, "monto": "1000", "interes": "10",
        "frecuencia_pago": "diario", "total_cuotas": 30
    })
    assert r.status_code == 201, r.text
    loan_id = r.json()["id"]
    r = client.post(f"/prestamos/{loan_id}/aprobar", headers=team["admin"])
    assert r.status_code == 200, r.text
    return r.json()


class TestHealthAndErrors:
    """Test health endpoint and error status mapping"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    @pytest.mark.parametrize("error,status_code", [
        (ValidationError("bad"), 400),
        (UnauthorizedError("read loan"), 403),
        (NotFoundError("loan", "L1"), 404),
        (InvalidStateError("bad state"), 409),
        (ConflictError("conflict"), 409),
        (StoreFailureError("down"), 503),
    ])
    def test_status_for(self, error, status_code):
        assert status_for(error) == status_code


class TestAuthentication:
    """Test setup, login and token handling"""

    def test_setup_only_once(self, client):
        assert client.post("/auth/setup", json=ADMIN).status_code == 201
        r = client.post("/auth/setup", json={**ADMIN, "email": "second@example.com"})
        assert r.status_code == 409
        assert r.json()["error"] == "conflict"

    def test_login_and_me(self, client, team):
        r = client.get("/auth/me", headers=team["supervisor"])
        assert r.status_code == 200
        data = r.json()
        assert data["rol"] == "supervisor"
        assert data["asesores_supervisados"] == [team["advisor_id"]]
        assert "password_hash" not in data
        assert "password_salt" not in data

    def test_bad_credentials(self, client, team):
        r = client.post("/auth/login", json={"email": ADMIN["email"], "password": "wrong"})
        assert r.status_code == 401

    def test_missing_or_invalid_token(self, client, team):
        assert client.get("/clientes").status_code == 401
        r = client.get("/clientes", headers={"Authorization": "Bearer not-a-token"})
        assert r.status_code == 401
        assert r.headers["www-authenticate"] == "Bearer"

    def test_deactivated_user_token_is_rejected(self, client, team):
        r = client.delete(f"/usuarios/{team['other_id']}", headers=team["admin"])
        assert r.status_code == 200
        assert r.json()["activo"] is False
        assert client.get("/auth/me", headers=team["other"]).status_code == 401


class TestClientsApi:
    """Test client endpoints"""

    def test_create_and_scope(self, client, team):
        created = create_client(client, team["advisor"])
        assert created["asesor_id"] == team["advisor_id"]

        assert client.get(f"/clientes/{created['id']}", headers=team["supervisor"]).status_code == 200
        r = client.get(f"/clientes/{created['id']}", headers=team["other"])
        assert r.status_code == 403
        assert r.json()["error"] == "unauthorized"
        assert client.get("/clientes", headers=team["other"]).json()["pagination"]["total"] == 0

    def test_validation_and_conflict(self, client, team):
        create_client(client, team["advisor"])
        r = client.post("/clientes", headers=team["advisor"], json={
            "dni": "1234", "nombre": "X", "apellido": "Y", "telefono": "987654321",
            "direccion": "Z"
        })
        assert r.status_code == 400
        assert r.json()["field"] == "dni"

        r = client.post("/clientes", headers=team["advisor"], json={
            "dni": "12345678", "nombre": "X", "apellido": "Y", "telefono": "987654321",
            "direccion": "Z"
        })
        assert r.status_code == 409

    def test_update_and_delete(self, client, team):
        created = create_client(client, team["advisor"])
        r = client.put(f"/clientes/{created['id']}", headers=team["advisor"],
                       json={"direccion": "Jr. Lima 456"})
        assert r.status_code == 200
        assert r.json()["direccion"] == "Jr. Lima 456"
        assert r.json()["dni"] == "12345678"

        assert client.delete(f"/clientes/{created['id']}",
                             headers=team["advisor"]).status_code == 403
        assert client.delete(f"/clientes/{created['id']}",
                             headers=team["admin"]).status_code == 200
        assert client.get(f"/clientes/{created['id']}",
                          headers=team["admin"]).status_code == 404

    def test_pagination(self, client, team):
        for n in range(3):
            create_client(client, team["advisor"], dni=f"1000000{n}")
        page = client.get("/clientes", headers=team["advisor"]).json()
        assert len(page["data"]) == 2
        assert page["pagination"] == {"total": 3, "page": 1, "limit": 2, "pages": 2}
        second = client.get("/clientes?page=2", headers=team["advisor"]).json()
        assert len(second["data"]) == 1
        capped = client.get("/clientes?limit=50", headers=team["advisor"]).json()
        assert capped["pagination"]["limit"] == 5


class TestLoanFlow:
    """End-to-end loan lifecycle through the API"""

    def test_submit_approve_and_pay(self, client, team):
        cliente = create_client(client, team["advisor"])
        r = client.post("/prestamos", headers=team["advisor"], json={
            "cliente_id": cliente["id"], "monto": "1000", "interes": "10",
            "frecuencia_pago": "diario", "total_cuotas": 30
        })
        assert r.status_code == 201
        loan = r.json()
        assert loan["estado"] == "pendiente"
        assert loan["monto_total"] == "1100.00"
        assert loan["monto_cuota"] == "36.67"

        assert client.post(f"/prestamos/{loan['id']}/aprobar",
                           headers=team["advisor"]).status_code == 403
        r = client.post(f"/prestamos/{loan['id']}/aprobar", headers=team["admin"],
                        json={"comentario": "Buen historial"})
        assert r.status_code == 200
        assert r.json()["estado"] == "activo"

        r = client.post("/cobranzas/pagos", headers=team["advisor"], json={
            "prestamo_id": loan["id"], "monto": "36.67", "metodo_pago": "yape"
        })
        assert r.status_code == 201
        body = r.json()
        assert body["pago"]["monto"] == "36.67"
        assert body["prestamo"]["cuotas_pagadas"] == 1
        assert body["prestamo"]["saldo_pendiente"] == "1063.33"

        detail = client.get(f"/prestamos/{loan['id']}", headers=team["supervisor"]).json()
        assert len(detail["pagos"]) == 1
        assert detail["cliente"]["dni"] == "12345678"

        schedule = client.get(f"/prestamos/{loan['id']}/cronograma",
                              headers=team["advisor"]).json()["cronograma"]
        assert len(schedule) == 30
        assert schedule[0]["pagada"] is True
        assert schedule[1]["pagada"] is False

    def test_payment_on_pending_loan(self, client, team):
        cliente = create_client(client, team["advisor"])
        r = client.post("/prestamos", headers=team["advisor"], json={
            "cliente_id": cliente["id"], "monto": "500", "interes": "0",
            "frecuencia_pago": "semanal", "total_cuotas": 4
        })
        r = client.post("/cobranzas/pagos", headers=team["advisor"], json={
            "prestamo_id": r.json()["id"], "monto": "125"
        })
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_state"

    def test_invalid_terms(self, client, team):
        cliente = create_client(client, team["advisor"])
        r = client.post("/prestamos", headers=team["advisor"], json={
            "cliente_id": cliente["id"], "monto": "0", "interes": "10",
            "frecuencia_pago": "diario", "total_cuotas": 30
        })
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_amount"

    @pytest.mark.parametrize("terms,error", [
        ({"monto": "1e27", "total_cuotas": 30}, "invalid_amount"),
        ({"monto": "1000", "total_cuotas": 2000000}, "invalid_schedule"),
    ])
    def test_oversized_terms_are_rejected(self, client, team, terms, error):
        cliente = create_client(client, team["advisor"])
        r = client.post("/prestamos", headers=team["advisor"], json={
            "cliente_id": cliente["id"], "interes": "10", "frecuencia_pago": "diario", **terms
        })
        assert r.status_code == 400
        assert r.json()["error"] == error
        r = client.post("/prestamos/simulador", headers=team["advisor"], json={
            "interes": "10", "frecuencia_pago": "diario", **terms
        })
        assert r.status_code == 400

    def test_reject_requires_comment(self, client, team):
        cliente = create_client(client, team["advisor"])
        loan_id = client.post("/prestamos", headers=team["advisor"], json={
            "cliente_id": cliente["id"], "monto": "1000", "interes": "10",
            "frecuencia_pago": "diario", "total_cuotas": 30
        }).json()["id"]
        r = client.post(f"/prestamos/{loan_id}/rechazar", headers=team["admin"], json={})
        assert r.status_code == 400
        r = client.post(f"/prestamos/{loan_id}/rechazar", headers=team["admin"],
                        json={"comentario": "Ingresos insuficientes"})
        assert r.json()["estado"] == "rechazado"
        assert client.post(f"/prestamos/{loan_id}/aprobar",
                           headers=team["admin"]).status_code == 409

    def test_foreign_and_missing_loans(self, client, team):
        loan = active_loan(client, team, create_client(client, team["advisor"])["id"])
        assert client.get(f"/prestamos/{loan['id']}", headers=team["other"]).status_code == 403
        assert client.get("/prestamos/missing", headers=team["admin"]).status_code == 404
        assert client.get("/prestamos", headers=team["other"]).json()["data"] == []

    def test_delete_with_payments_conflicts(self, client, team):
        loan = active_loan(client, team, create_client(client, team["advisor"])["id"])
        client.post("/cobranzas/pagos", headers=team["advisor"],
                    json={"prestamo_id": loan["id"], "monto": "36.67"})
        assert client.delete(f"/prestamos/{loan['id']}", headers=team["admin"]).status_code == 409

    def test_simulator(self, client, team):
        r = client.post("/prestamos/simulador", headers=team["advisor"], json={
            "monto": "1000", "interes": "10", "frecuencia_pago": "semanal",
            "total_cuotas": 4, "fecha_inicio": "2024-03-01"
        })
        assert r.status_code == 200
        data = r.json()
        assert data["monto_total"] == "1100.00"
        assert data["total_intereses"] == "100.00"
        assert [c["fecha"] for c in data["cronograma"]] == [
            "2024-03-08", "2024-03-15", "2024-03-22", "2024-03-29"
        ]


class TestCollectionsApi:
    """Test pending installments and cash closing"""

    def test_cash_closing_flow(self, client, team):
        loan = active_loan(client, team, create_client(client, team["advisor"])["id"])
        client.post("/cobranzas/pagos", headers=team["advisor"],
                    json={"prestamo_id": loan["id"], "monto": "36.67"})

        r = client.get("/cobranzas/pagos", headers=team["advisor"])
        assert r.json()["resumen"]["total"] == "36.67"

        r = client.post("/cobranzas/cuadre-caja", headers=team["advisor"],
                        json={"monto_efectivo": "20", "monto_yape": "16.67"})
        assert r.status_code == 201
        closing = r.json()
        assert closing["diferencia"] == "0.00"
        assert closing["requiere_revision"] is False

        assert client.post("/cobranzas/cuadre-caja", headers=team["advisor"],
                           json={}).status_code == 409
        assert client.post(f"/cobranzas/cuadre-caja/{closing['id']}/revision",
                           headers=team["supervisor"], json={"aprobar": True}).status_code == 403
        r = client.post(f"/cobranzas/cuadre-caja/{closing['id']}/revision",
                        headers=team["admin"], json={"aprobar": True})
        assert r.json()["estado"] == "aprobado"

    def test_pending_installments(self, client, team, clock):
        active_loan(client, team, create_client(client, team["advisor"])["id"])
        assert client.get("/cobranzas", headers=team["advisor"]).json()["data"] == []
        clock.advance(days=3)
        pending = client.get("/cobranzas", headers=team["advisor"]).json()["data"]
        assert len(pending) == 1
        assert pending[0]["dias_atraso"] == 2


class TestBackOfficeApi:
    """Test finance, goals, users and dashboard endpoints"""

    def test_finance(self, client, team):
        r = client.post("/finanzas", headers=team["advisor"], json={
            "tipo": "ingreso", "monto": "100", "categoria": "intereses", "cuenta": "caja"
        })
        assert r.status_code == 403

        for tipo, monto in (("ingreso", "300"), ("egreso", "120.50")):
            r = client.post("/finanzas", headers=team["admin"], json={
                "tipo": tipo, "monto": monto, "categoria": "general", "cuenta": "banco"
            })
            assert r.status_code == 201
        balance = client.get("/finanzas/balance", headers=team["admin"]).json()
        assert balance["balance"] == "179.50"
        assert balance["saldos_por_cuenta"]["banco"] == "179.50"
        report = client.get("/finanzas/reporte", headers=team["admin"]).json()
        assert report["total_egresos"] == "120.50"

    def test_goals(self, client, team):
        r = client.post("/metas", headers=team["admin"], json={
            "asesor_id": team["advisor_id"], "periodo": "2024-03", "meta_clientes": 10,
            "meta_cobranza": "5000", "meta_morosidad": "5", "meta_cartera": "20000"
        })
        assert r.status_code == 200
        goal_id = r.json()["id"]

        r = client.put(f"/metas/{goal_id}/progreso", headers=team["supervisor"],
                       json={"actual_clientes": 10, "actual_cobranza": "5000",
                             "actual_cartera": "20000"})
        assert r.status_code == 200
        assert r.json()["calificacion"] == "sobresaliente"

        assert client.get("/metas", headers=team["advisor"]).status_code == 403
        report = client.get("/metas/reporte?periodo=2024-03", headers=team["admin"]).json()
        assert report["total_asesores"] == 1
        assert report["distribucion"]["sobresaliente"] == 1

    def test_users(self, client, team):
        assert client.get("/usuarios", headers=team["supervisor"]).status_code == 403
        advisors = client.get("/usuarios?rol=asesor", headers=team["admin"]).json()
        assert advisors["pagination"]["total"] == 2

        team_view = client.get(f"/usuarios/{team['supervisor_id']}/asesores",
                               headers=team["supervisor"])
        assert [u["id"] for u in team_view.json()["data"]] == [team["advisor_id"]]
        assert client.get(f"/usuarios/{team['supervisor_id']}/asesores",
                          headers=team["advisor"]).status_code == 403

        r = client.put(f"/usuarios/{team['advisor_id']}/password", headers=team["advisor"],
                       json={"password": "new-password-1"})
        assert r.status_code == 200
        login(client, "advisor@example.com", "new-password-1")
        assert client.put(f"/usuarios/{team['other_id']}/password", headers=team["advisor"],
                          json={"password": "new-password-1"}).status_code == 403

        r = client.put(f"/usuarios/{team['other_id']}/supervisor", headers=team["admin"],
                       json={"supervisor_id": team["supervisor_id"]})
        assert r.json()["supervisor_id"] == team["supervisor_id"]

    def test_dashboard(self, client, team):
        loan = active_loan(client, team, create_client(client, team["advisor"])["id"])
        client.post("/cobranzas/pagos", headers=team["advisor"],
                    json={"prestamo_id": loan["id"], "monto": "36.67"})

        data = client.get("/dashboard", headers=team["admin"]).json()
        assert data["total_clientes"] == 1
        assert data["cartera_total"] == "1063.33"
        assert data["cobrado_hoy"] == "36.67"
        assert data["prestamos_por_estado"]["activo"] == 1

        other = client.get("/dashboard", headers=team["other"]).json()
        assert other["total_clientes"] == 0
