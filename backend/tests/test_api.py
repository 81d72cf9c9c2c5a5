"""
Endpoint tests through the ASGI app.

Checks the response envelope, status codes for each error category,
identity headers, and the CSV export content type and encoding.
"""

import csv
import io
import pytest

from sqlalchemy import select

from app.core.config import settings
from app.models.project import Project
from app.services.notifications import NotificationTypes
from tests.conftest import auth
from tests.factories import InvoiceFactory, ProjectFactory, UserFactory

API = settings.API_PREFIX


def bank_body(amount, **extra):
    return {"amount": amount, "received_at": "2024-03-01T10:00:00", "method": "bank", **extra}


def cash_body(amount, receiver_id, method="cash"):
    return {"amount": amount, "received_at": "2024-03-01T10:00:00", "method": method, "received_by": receiver_id}


class TestEnvelopeAndIdentity:

    @pytest.mark.asyncio
    async def test_missing_user_header(self, client, project):
        response = await client.get(f"{API}/payment/{project.id}")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AUTHORIZATION"
        assert body["error"]["statusCode"] == 401

    @pytest.mark.asyncio
    async def test_role_not_owned(self, client, project, sales_user):
        response = await client.get(f"{API}/payment/{project.id}", headers=auth(sales_user, "finance"))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_route_is_not_found(self, client, finance_user):
        response = await client.get(f"{API}/nothing-here", headers=auth(finance_user))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_body_validation_error(self, client, project, finance_user):
        response = await client.post(
            f"{API}/payment/{project.id}", json={"amount": 100}, headers=auth(finance_user)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION"


class TestPaymentEndpoints:

    @pytest.mark.asyncio
    async def test_manual_entry_requires_finance(self, client, project, sales_user):
        response = await client.post(f"{API}/payment/{project.id}", json=bank_body(100), headers=auth(sales_user))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTHORIZATION"

    @pytest.mark.asyncio
    async def test_scenario_a_over_http(self, client, project, finance_user):
        response = await client.post(f"{API}/payment/{project.id}", json=bank_body(400), headers=auth(finance_user))
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["record"]["status"] == "confirmed"
        assert body["data"]["project"]["payment_status"] == "partially_paid"
        assert body["data"]["project"]["remaining_amount"] == 600.0

        response = await client.post(f"{API}/payment/{project.id}", json=bank_body(600), headers=auth(finance_user))
        summary = response.json()["data"]["project"]
        assert summary["payment_status"] == "paid"
        assert summary["remaining_amount"] == 0.0
        assert summary["is_fully_paid"] is True

    @pytest.mark.asyncio
    async def test_sub_cent_amounts_rejected(self, client, project, sales_user, finance_user):
        response = await client.post(f"{API}/payment/{project.id}", json=bank_body("333.335"), headers=auth(finance_user))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION"

        response = await client.post(
            f"{API}/payment/{project.id}/initiate", json=cash_body("0.004", finance_user.id), headers=auth(sales_user)
        )
        assert response.status_code == 400

        response = await client.post(
            f"{API}/invoice/{project.id}",
            json={"invoice_number": "FP-SUB", "amount": "0.004", "issue_date": "2024-03-01T00:00:00"},
            headers=auth(finance_user),
        )
        assert response.status_code == 400

        listing = await client.get(f"{API}/payment/{project.id}", headers=auth(finance_user))
        assert listing.json()["data"]["total"] == 0
        assert listing.json()["data"]["project"]["received_amount"] == 0.0

    @pytest.mark.asyncio
    async def test_initiate_confirm_flow(self, client, project, sales_user, finance_user, notifier):
        response = await client.post(
            f"{API}/payment/{project.id}/initiate",
            json=cash_body(300, finance_user.id, "wechat"),
            headers=auth(sales_user),
        )
        assert response.status_code == 200
        payment = response.json()["data"]
        assert payment["status"] == "pending"
        assert payment["receiver_name"] == finance_user.name
        assert notifier.sent[0]["type"] == NotificationTypes.PAYMENT_INITIATED

        # only the receiver may confirm
        response = await client.post(
            f"{API}/payment/{payment['id']}/confirm", json={"action": "confirm"}, headers=auth(sales_user)
        )
        assert response.status_code == 403

        response = await client.post(
            f"{API}/payment/{payment['id']}/confirm", json={"action": "confirm"}, headers=auth(finance_user)
        )
        assert response.status_code == 200
        assert response.json()["data"]["project"]["received_amount"] == 300.0

        response = await client.post(
            f"{API}/payment/{payment['id']}/confirm", json={"action": "reject"}, headers=auth(finance_user)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_initiate_error_codes(self, client, project, sales_user, finance_user, translator_user):
        # bank is not an initiable method
        response = await client.post(
            f"{API}/payment/{project.id}/initiate",
            json=cash_body(100, finance_user.id, "bank"),
            headers=auth(sales_user),
        )
        assert response.status_code == 400

        # receiver missing
        response = await client.post(
            f"{API}/payment/{project.id}/initiate",
            json={"amount": 100, "received_at": "2024-03-01T10:00:00", "method": "cash"},
            headers=auth(sales_user),
        )
        assert response.status_code == 400

        # not the owner
        response = await client.post(
            f"{API}/payment/{project.id}/initiate",
            json=cash_body(100, finance_user.id),
            headers=auth(translator_user),
        )
        assert response.status_code == 403

        # project missing
        response = await client.post(
            f"{API}/payment/9999/initiate", json=cash_body(100, finance_user.id), headers=auth(sales_user)
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_review_then_delete(self, client, project, finance_user, db_session):
        created = await client.post(f"{API}/payment/{project.id}", json=bank_body(1000), headers=auth(finance_user))
        record_id = created.json()["data"]["record"]["id"]

        reviewed = await client.post(f"{API}/payment/{record_id}/review", headers=auth(finance_user))
        assert reviewed.status_code == 200
        assert reviewed.json()["data"]["status"] == "approved"
        assert reviewed.json()["data"]["finance_reviewed"] is True

        deleted = await client.delete(f"{API}/payment/{record_id}", headers=auth(finance_user))
        assert deleted.status_code == 200
        assert deleted.json()["data"]["project"]["payment_status"] == "unpaid"

        result = await db_session.execute(
            select(Project).where(Project.id == project.id).execution_options(populate_existing=True)
        )
        assert result.scalar_one().is_fully_paid is False

    @pytest.mark.asyncio
    async def test_review_with_body(self, client, project, finance_user):
        created = await client.post(f"{API}/payment/{project.id}", json=bank_body(100), headers=auth(finance_user))
        record_id = created.json()["data"]["record"]["id"]

        reviewed = await client.post(
            f"{API}/payment/{record_id}/review", json={"reviewed": False, "note": "待补凭证"}, headers=auth(finance_user)
        )
        assert reviewed.json()["data"]["status"] == "confirmed"
        assert reviewed.json()["data"]["finance_review_note"] == "待补凭证"

    @pytest.mark.asyncio
    async def test_listing_with_point_in_time_filter(self, client, project, finance_user, sales_user):
        for amount, day in ((400, "01"), (600, "02")):
            await client.post(
                f"{API}/payment/{project.id}",
                json={"amount": amount, "received_at": f"2024-03-{day}T10:00:00", "method": "bank"},
                headers=auth(finance_user),
            )

        response = await client.get(f"{API}/payment/{project.id}", headers=auth(sales_user))
        data = response.json()["data"]
        assert data["total"] == 2
        assert [r["payment_status_at_time"] for r in data["records"]] == ["paid", "partially_paid"]

        response = await client.get(
            f"{API}/payment/{project.id}", params={"payment_status": "paid"}, headers=auth(sales_user)
        )
        assert [r["amount"] for r in response.json()["data"]["records"]] == [600.0]

    @pytest.mark.asyncio
    async def test_receivers(self, client, finance_user, sales_user, translator_user):
        response = await client.get(f"{API}/payment/receivers", headers=auth(translator_user))
        ids = {r["id"] for r in response.json()["data"]}
        assert ids == {finance_user.id, sales_user.id}


class TestInvoiceEndpoints:

    @pytest.mark.asyncio
    async def test_scenario_b_and_c(self, client, project, finance_user):
        over = await client.post(
            f"{API}/invoice/{project.id}",
            json={"invoice_number": "FP-B", "amount": 1200, "issue_date": "2024-03-01T00:00:00"},
            headers=auth(finance_user),
        )
        assert over.status_code == 400
        assert over.json()["error"]["code"] == "VALIDATION"

        first = await client.post(
            f"{API}/invoice/{project.id}",
            json={"invoice_number": "FP-C1", "amount": 600, "issue_date": "2024-03-01T00:00:00"},
            headers=auth(finance_user),
        )
        assert first.status_code == 200

        second = await client.post(
            f"{API}/invoice/{project.id}",
            json={"invoice_number": "FP-C2", "amount": 500, "issue_date": "2024-03-01T00:00:00"},
            headers=auth(finance_user),
        )
        error = second.json()["error"]
        assert second.status_code == 400
        assert error["details"]["remaining"] == 400.0

    @pytest.mark.asyncio
    async def test_duplicate_number(self, client, project, finance_user):
        body = {"invoice_number": "FP-D", "amount": 100, "issue_date": "2024-03-01T00:00:00"}
        await client.post(f"{API}/invoice/{project.id}", json=body, headers=auth(finance_user))

        response = await client.post(f"{API}/invoice/{project.id}", json=body, headers=auth(finance_user))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "DUPLICATE"

    @pytest.mark.asyncio
    async def test_update_and_list(self, client, project, finance_user, sales_user):
        created = await client.post(
            f"{API}/invoice/{project.id}",
            json={"invoice_number": "FP-U", "amount": 100, "issue_date": "2024-03-01T00:00:00"},
            headers=auth(finance_user),
        )
        invoice_id = created.json()["data"]["id"]

        updated = await client.put(
            f"{API}/invoice/{invoice_id}", json={"amount": 1000}, headers=auth(finance_user)
        )
        assert updated.json()["data"]["amount"] == 1000.0

        listed = await client.get(f"{API}/invoice", headers=auth(sales_user))
        assert [i["invoice_number"] for i in listed.json()["data"]] == ["FP-U"]

    @pytest.mark.asyncio
    async def test_sales_cannot_create(self, client, project, sales_user):
        response = await client.post(
            f"{API}/invoice/{project.id}",
            json={"invoice_number": "FP-S", "amount": 100, "issue_date": "2024-03-01T00:00:00"},
            headers=auth(sales_user),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_translator_cannot_list(self, client, translator_user):
        response = await client.get(f"{API}/invoice", headers=auth(translator_user))
        assert response.status_code == 403


class TestReportEndpoints:

    @pytest.mark.asyncio
    async def test_receivables(self, client, project, finance_user):
        response = await client.get(f"{API}/receivables", headers=auth(finance_user))
        data = response.json()["data"]
        assert data["summary"]["project_count"] == 1
        assert data["items"][0]["outstanding"] == 1000.0

    @pytest.mark.asyncio
    async def test_reconciliation_filter(self, client, project, finance_user, db_session):
        await InvoiceFactory.create(db_session, project, amount="100")

        response = await client.get(
            f"{API}/reconciliation", params={"balanced": "false"}, headers=auth(finance_user)
        )
        data = response.json()["data"]
        assert [i["project_id"] for i in data["items"]] == [project.id]
        assert data["summary"]["unbalanced_count"] == 1

    @pytest.mark.asyncio
    async def test_receivables_export_is_chinese_csv(self, client, db_session, sales_user, finance_user):
        await ProjectFactory.create(db_session, created_by=sales_user.id, project_number="P-中文")

        response = await client.get(f"{API}/receivables/export", headers=auth(finance_user))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert settings.EXPORT_ENCODING in response.headers["content-type"]
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.content.decode(settings.EXPORT_ENCODING))))
        assert rows[0][0] == "项目编号"
        assert rows[1][0] == "P-中文"

    @pytest.mark.asyncio
    async def test_reconciliation_export(self, client, project, finance_user):
        response = await client.get(f"{API}/reconciliation/export", headers=auth(finance_user))
        rows = list(csv.reader(io.StringIO(response.content.decode(settings.EXPORT_ENCODING))))
        assert rows[0][-1] == "是否对平"
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_sales_sees_only_own(self, client, db_session, project, sales_user):
        someone_else = await UserFactory.create(db_session, roles=["sales"])
        await ProjectFactory.create(db_session, created_by=someone_else.id)

        response = await client.get(f"{API}/receivables", headers=auth(sales_user))
        assert [i["id"] for i in response.json()["data"]["items"]] == [project.id]

    @pytest.mark.asyncio
    async def test_translator_forbidden(self, client, translator_user):
        response = await client.get(f"{API}/reconciliation", headers=auth(translator_user))
        assert response.status_code == 403
