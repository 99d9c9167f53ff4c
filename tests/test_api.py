"""
Payroll Engine - API Tests

End-to-end requests through the FastAPI application with in-memory storage
and fake HR collaborators installed on app.state.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import FakeAttendanceProvider, FakeEmployeeDirectory, attendance_for
from payroll_engine.main import app
from payroll_engine.repositories.memory import InMemoryPayrollRepository

API = "/api/v1/payroll"


@pytest_asyncio.fixture
async def client(employee):
    app.state.payroll_repository = InMemoryPayrollRepository()
    app.state.employee_directory = FakeEmployeeDirectory([employee])
    app.state.attendance_provider = FakeAttendanceProvider({employee.id: attendance_for(2025, 4, 20)})
    app.state.anomaly_validator = None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def create_april_period(client, employer_id):
    response = await client.post(f"{API}/periods", json={
        "employer_id": str(employer_id),
        "period_month": 4,
        "period_year": 2025,
        "payment_date": "2025-04-30",
    })
    assert response.status_code == 201
    return response.json()


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_body(self, client):
        response = await client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"


class TestPeriodEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_get(self, client, employer_id):
        created = await create_april_period(client, employer_id)

        assert created["status"] == "draft"
        assert created["period_name"] == "April 2025"
        assert created["start_date"] == "2025-04-01"

        response = await client.get(f"{API}/periods/{created['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

        listed = await client.get(f"{API}/periods", params={"employer_id": str(employer_id), "year": 2025})
        assert [p["id"] for p in listed.json()] == [created["id"]]

    @pytest.mark.asyncio
    async def test_duplicate_period(self, client, employer_id):
        await create_april_period(client, employer_id)

        response = await client.post(f"{API}/periods", json={
            "employer_id": str(employer_id), "period_month": 4, "period_year": 2025,
        })

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "DUPLICATE_ENTRY"

    @pytest.mark.asyncio
    async def test_unknown_period(self, client):
        response = await client.get(f"{API}/periods/{uuid4()}")

        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["code"] == "PERIOD_NOT_FOUND"
        assert "timestamp" in detail

    @pytest.mark.asyncio
    async def test_invalid_month(self, client, employer_id):
        response = await client.post(f"{API}/periods", json={
            "employer_id": str(employer_id), "period_month": 13, "period_year": 2025,
        })

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_ERROR"
        assert [e["field"] for e in detail["details"]["errors"]] == ["period_month"]

    @pytest.mark.asyncio
    async def test_update_and_delete_draft(self, client, employer_id):
        created = await create_april_period(client, employer_id)

        updated = await client.patch(f"{API}/periods/{created['id']}", json={"notes": "Bonus month"})
        assert updated.json()["notes"] == "Bonus month"

        deleted = await client.delete(f"{API}/periods/{created['id']}")
        assert deleted.status_code == 200
        assert (await client.get(f"{API}/periods/{created['id']}")).status_code == 404


class TestPayrollFlow:
    """Create, process, approve, payslip, pay."""

    @pytest.mark.asyncio
    async def test_full_cycle(self, client, employer_id, employee):
        period = await create_april_period(client, employer_id)
        period_id = period["id"]

        processed = await client.post(f"{API}/periods/{period_id}/process", json={})
        assert processed.status_code == 200
        batch = processed.json()
        assert batch["summaries_created"] == 1
        assert Decimal(batch["total_net_pay"]) == Decimal("8504092")

        summaries = (await client.get(f"{API}/periods/{period_id}/summaries")).json()
        [summary] = summaries
        assert Decimal(summary["pph21"]) == Decimal("186817")
        assert summary["status"] == "calculated"

        stats = (await client.get(f"{API}/periods/{period_id}/stats")).json()
        assert stats["total_employees"] == 1

        early = await client.get(f"{API}/summaries/{summary['id']}/payslip")
        assert early.status_code == 422
        assert early.json()["detail"]["code"] == "BUSINESS_RULE_VIOLATION"

        approved = await client.post(f"{API}/periods/{period_id}/approve", json={"approver_id": str(uuid4())})
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        payslip = await client.get(f"{API}/summaries/{summary['id']}/payslip", params={"language": "en"})
        assert payslip.status_code == 200
        body = payslip.json()
        assert body["earnings"][0]["name"] == "Basic Salary"
        assert Decimal(body["net_pay"]) == Decimal("8504092")
        assert len(body["deductions"][0]["breakdown"]) == 3

        pdf = await client.get(f"{API}/summaries/{summary['id']}/payslip/pdf")
        assert pdf.status_code == 200
        assert pdf.headers["content-type"] == "application/pdf"
        assert 'filename="payslip_EMP-001_2025_04.pdf"' in pdf.headers["content-disposition"]
        assert pdf.content.startswith(b"%PDF")

        paid = await client.post(f"{API}/periods/{period_id}/pay")
        assert paid.json()["status"] == "paid"

        ytd = await client.get(f"{API}/employees/{employee.id}/year-to-date", params={"year": 2025})
        assert Decimal(ytd.json()["total_pph21"]) == Decimal("186817")

    @pytest.mark.asyncio
    async def test_approve_draft_rejected(self, client, employer_id):
        period = await create_april_period(client, employer_id)

        response = await client.post(f"{API}/periods/{period['id']}/approve", json={"approver_id": str(uuid4())})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "INVALID_STATE_TRANSITION"
        assert detail["details"]["allowed_from"] == ["processing"]

    @pytest.mark.asyncio
    async def test_cancel(self, client, employer_id):
        period = await create_april_period(client, employer_id)

        response = await client.post(f"{API}/periods/{period['id']}/cancel", json={"notes": "Created by mistake"})

        assert response.json()["status"] == "cancelled"


class TestComponentEndpoints:

    @pytest.mark.asyncio
    async def test_seed_create_and_delete(self, client, employer_id):
        seeded = await client.post(f"{API}/components/seed", json={"employer_id": str(employer_id)})
        assert seeded.status_code == 201
        system_component = seeded.json()[0]
        assert system_component["is_system_component"]

        created = await client.post(f"{API}/components", json={
            "employer_id": str(employer_id),
            "code": "meal",
            "name": "Tunjangan Makan",
            "component_type": "earning",
            "category": "allowance",
            "calculation_type": "formula",
            "formula": "present_days * 25000",
            "is_taxable": False,
        })
        assert created.status_code == 201
        component = created.json()
        assert component["code"] == "MEAL"

        duplicate = await client.post(f"{API}/components", json={
            "employer_id": str(employer_id),
            "code": "MEAL",
            "name": "Meal",
            "component_type": "earning",
            "category": "allowance",
        })
        assert duplicate.status_code == 409

        deactivated = await client.post(f"{API}/components/{component['id']}/deactivate")
        assert deactivated.json()["is_active"] is False

        blocked = await client.delete(f"{API}/components/{system_component['id']}")
        assert blocked.status_code == 422
        assert blocked.json()["detail"]["code"] == "CANNOT_DELETE"

        removed = await client.delete(f"{API}/components/{component['id']}")
        assert removed.status_code == 200

    @pytest.mark.asyncio
    async def test_formula_component_requires_formula(self, client, employer_id):
        response = await client.post(f"{API}/components", json={
            "employer_id": str(employer_id),
            "code": "BROKEN",
            "name": "Broken",
            "component_type": "earning",
            "category": "allowance",
            "calculation_type": "formula",
        })

        assert response.status_code == 422


class TestCalculatorEndpoints:

    @pytest.mark.asyncio
    async def test_bpjs(self, client):
        response = await client.post(f"{API}/calculate/bpjs", json={"base_salary": "10000000"})

        body = response.json()
        assert Decimal(body["total_employee"]) == Decimal("400000")
        assert Decimal(body["total_employer"]) == Decimal("1024000")

    @pytest.mark.asyncio
    async def test_bpjs_prorated(self, client):
        response = await client.post(f"{API}/calculate/bpjs", json={
            "base_salary": "10000000", "working_days_in_period": 15, "total_days_in_month": 30,
        })

        assert Decimal(response.json()["total_employee"]) == Decimal("200000")

    @pytest.mark.asyncio
    async def test_bpjs_proration_fields_go_together(self, client):
        response = await client.post(f"{API}/calculate/bpjs", json={
            "base_salary": "10000000", "working_days_in_period": 15,
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_pph21(self, client):
        response = await client.post(f"{API}/calculate/pph21", json={
            "gross_income": "9090909", "bpjs_employee": "400000",
        })

        body = response.json()
        assert Decimal(body["monthly_tax"]) == Decimal("186817")
        assert body["ptkp_status"] == "TK/0"

    @pytest.mark.asyncio
    async def test_bonus_tax(self, client):
        response = await client.post(f"{API}/calculate/bonus-tax", json={
            "regular_income": "10000000", "bonus_amount": "10000000",
        })

        assert Decimal(response.json()["bonus_tax"]) == Decimal("1500000")

    @pytest.mark.asyncio
    async def test_severance_tax(self, client):
        response = await client.post(f"{API}/calculate/severance-tax", json={"severance_amount": "150000000"})

        body = response.json()
        assert Decimal(body["total_tax"]) == Decimal("10000000")
        assert len(body["tax_breakdown"]) == 4
