"""Tests for the receivables and reconciliation reports and CSV export."""

import csv
import io
import pytest
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.project import Project
from app.services import reports as svc
from app.services.reports import ReceivableFilters
from tests.factories import CustomerFactory, InvoiceFactory, PaymentFactory, ProjectFactory, UserFactory

NOW = datetime(2024, 6, 1, 12, 0, 0)


async def stored_status(db_session, project_id):
    result = await db_session.execute(
        select(Project.payment_status).where(Project.id == project_id)
    )
    return result.scalar_one()


class TestReceivables:

    @pytest.mark.asyncio
    async def test_outstanding_overdue_and_invoice_flags(self, db_session, sales_user, finance_user):
        late = await ProjectFactory.create(
            db_session, created_by=sales_user.id, project_amount="1000", received_amount="300",
            expected_at=datetime(2024, 5, 1, 0, 0, 0),
        )
        settled = await ProjectFactory.create(
            db_session, created_by=sales_user.id, project_amount="500", received_amount="500",
            expected_at=datetime(2024, 5, 1, 0, 0, 0),
        )
        future = await ProjectFactory.create(
            db_session, created_by=sales_user.id, project_amount="800",
            expected_at=datetime(2024, 7, 1, 0, 0, 0),
        )
        await InvoiceFactory.create(db_session, late, amount="300")
        await InvoiceFactory.create(db_session, future, amount="100", status="void")

        report = await svc.receivables_report(db_session, finance_user.id, True, now=NOW)
        items = {i.id: i for i in report.items}

        assert items[late.id].outstanding == 700.0
        assert items[late.id].overdue is True
        assert items[late.id].has_invoice is True
        assert items[settled.id].overdue is False
        assert items[settled.id].outstanding == 0.0
        assert items[future.id].overdue is False
        assert items[future.id].has_invoice is False

        assert report.summary.project_count == 3
        assert report.summary.total_amount == 2300.0
        assert report.summary.total_received == 800.0
        assert report.summary.total_outstanding == 1500.0
        assert report.summary.overdue_count == 1
        assert report.summary.overdue_amount == 700.0

    @pytest.mark.asyncio
    async def test_no_expected_date_is_never_overdue(self, db_session, project, finance_user):
        report = await svc.receivables_report(db_session, finance_user.id, True, now=NOW)
        assert report.items[0].overdue is False

    @pytest.mark.asyncio
    async def test_scoped_to_own_projects(self, db_session, project, sales_user, finance_user):
        await ProjectFactory.create(db_session, created_by=finance_user.id)

        own = await svc.receivables_report(db_session, sales_user.id, False, now=NOW)
        everything = await svc.receivables_report(db_session, finance_user.id, True, now=NOW)

        assert [i.id for i in own.items] == [project.id]
        assert len(everything.items) == 2

    @pytest.mark.asyncio
    async def test_filters(self, db_session, sales_user, finance_user):
        acme = await CustomerFactory.create(db_session, name="Acme")
        other_sales = await UserFactory.create(db_session, roles=["sales"])
        a = await ProjectFactory.create(
            db_session, created_by=sales_user.id, customer=acme, received_amount="100",
            expected_at=datetime(2024, 3, 10, 0, 0, 0), status="completed",
        )
        b = await ProjectFactory.create(
            db_session, created_by=other_sales.id, expected_at=datetime(2024, 4, 10, 0, 0, 0),
        )
        await InvoiceFactory.create(db_session, b, amount="100")

        def ids(report):
            return [i.id for i in report.items]

        async def run(**kwargs):
            return ids(await svc.receivables_report(
                db_session, finance_user.id, True, ReceivableFilters(**kwargs), now=NOW
            ))

        assert await run(customer_id=acme.id) == [a.id]
        assert await run(sales_id=other_sales.id) == [b.id]
        assert await run(status="completed") == [a.id]
        assert await run(payment_status="partially_paid") == [a.id]
        assert await run(has_invoice=True) == [b.id]
        assert await run(has_invoice=False) == [a.id]
        assert await run(expected_from="2024-04-01") == [b.id]
        assert await run(expected_to="2024-03-10") == [a.id]

    @pytest.mark.asyncio
    async def test_bad_date_filter(self, db_session, finance_user):
        with pytest.raises(ValidationError):
            await svc.receivables_report(
                db_session, finance_user.id, True, ReceivableFilters(expected_from="03/01/2024"), now=NOW
            )

    @pytest.mark.asyncio
    async def test_missing_status_is_computed_and_persisted(self, db_session, sales_user, finance_user):
        legacy = await ProjectFactory.create(
            db_session, created_by=sales_user.id, project_amount="1000", received_amount="1000",
            payment_status=None,
        )

        report = await svc.receivables_report(db_session, finance_user.id, True, now=NOW)

        assert report.items[0].payment_status == "paid"
        assert report.items[0].is_fully_paid is True
        assert await stored_status(db_session, legacy.id) == "paid"

    @pytest.mark.asyncio
    async def test_repair_failure_still_returns_computed_value(
            self, db_session, sales_user, finance_user, monkeypatch, caplog):
        legacy = await ProjectFactory.create(
            db_session, created_by=sales_user.id, project_amount="1000", received_amount="200",
            payment_status=None,
        )

        async def failing_persist(db, repairs):
            raise OperationalError("UPDATE projects", {}, Exception("database is locked"))

        monkeypatch.setattr(svc, "persist_repairs", failing_persist)

        report = await svc.receivables_report(db_session, finance_user.id, True, now=NOW)

        assert report.items[0].payment_status == "partially_paid"
        assert await stored_status(db_session, legacy.id) is None
        assert "补算回款状态写回失败" in caplog.text


class TestReconciliation:

    def test_scenario_e_epsilon(self):
        _, balanced = svc.reconcile(Decimal("1000"), Decimal("999.995"))
        assert balanced is True
        difference, balanced = svc.reconcile(Decimal("1000"), Decimal("990"))
        assert balanced is False
        assert difference == Decimal("10")

    @pytest.mark.asyncio
    async def test_counts_only_counted_payments_and_non_void_invoices(self, db_session, project, finance_user):
        await PaymentFactory.create(db_session, project, amount="600")
        await PaymentFactory.create(db_session, project, amount="400", status="approved")
        await PaymentFactory.create(db_session, project, amount="50", status="pending")
        await PaymentFactory.create(db_session, project, amount="70", status="rejected")
        await InvoiceFactory.create(db_session, project, amount="600")
        await InvoiceFactory.create(db_session, project, amount="400")
        await InvoiceFactory.create(db_session, project, amount="300", status="void")

        report = await svc.reconciliation_report(db_session, finance_user.id, True)
        item = report.items[0]

        assert item.total_payments == 1000.0
        assert item.total_invoices == 1000.0
        assert item.payment_count == 2
        assert item.invoice_count == 2
        assert item.is_balanced is True

    @pytest.mark.asyncio
    async def test_unbalanced_and_summary(self, db_session, sales_user, finance_user):
        balanced = await ProjectFactory.create(db_session, created_by=sales_user.id)
        short = await ProjectFactory.create(db_session, created_by=sales_user.id)
        empty = await ProjectFactory.create(db_session, created_by=sales_user.id)
        await PaymentFactory.create(db_session, balanced, amount="500")
        await InvoiceFactory.create(db_session, balanced, amount="500")
        await PaymentFactory.create(db_session, short, amount="1000")
        await InvoiceFactory.create(db_session, short, amount="990")

        report = await svc.reconciliation_report(db_session, finance_user.id, True)
        items = {i.project_id: i for i in report.items}

        assert items[short.id].is_balanced is False
        assert items[short.id].difference == 10.0
        assert items[empty.id].is_balanced is True
        assert report.summary.total_projects == 3
        assert report.summary.balanced_count == 2
        assert report.summary.unbalanced_count == 1
        assert report.summary.total_payments == 1500.0
        assert report.summary.total_invoices == 1490.0
        assert report.summary.total_difference == 10.0

        only_unbalanced = await svc.reconciliation_report(db_session, finance_user.id, True, balanced=False)
        assert [i.project_id for i in only_unbalanced.items] == [short.id]

    @pytest.mark.asyncio
    async def test_reports_do_not_touch_records(self, db_session, project, finance_user):
        payment = await PaymentFactory.create(db_session, project, amount="100", status="pending")
        invoice = await InvoiceFactory.create(db_session, project, amount="100")

        await svc.reconciliation_report(db_session, finance_user.id, True)
        await svc.receivables_report(db_session, finance_user.id, True, now=NOW)

        await db_session.refresh(payment)
        await db_session.refresh(invoice)
        assert payment.status == "pending"
        assert invoice.status == "issued"


class TestCsvExport:

    @pytest.mark.asyncio
    async def test_receivables_csv_uses_export_encoding(self, db_session, sales_user, finance_user):
        customer = await CustomerFactory.create(db_session, name="北京某律所")
        await ProjectFactory.create(db_session, created_by=sales_user.id, customer=customer, received_amount="250")

        report = await svc.receivables_report(db_session, finance_user.id, True, now=NOW)
        payload = b"".join(svc.iter_csv(svc.RECEIVABLE_HEADERS, svc.receivable_rows(report.items)))

        rows = list(csv.reader(io.StringIO(payload.decode(settings.EXPORT_ENCODING))))
        assert rows[0] == svc.RECEIVABLE_HEADERS
        assert rows[1][2] == "北京某律所"
        assert rows[1][3:6] == ["1000.00", "250.00", "750.00"]
        assert rows[1][6] == "部分回款"

    def test_reconciliation_rows(self):
        item = svc.ReconciliationItem(
            project_id=1, project_number="P1", project_name="笔译", customer_name="客户",
            project_amount=1000, total_payments=1000, total_invoices=990, difference=10,
            payment_count=1, invoice_count=1, is_balanced=False,
        )
        rows = list(svc.reconciliation_rows([item]))
        assert rows[0][4:7] == ["1000.00", "990.00", "10.00"]
        assert rows[0][-1] == "否"

    def test_rare_characters_survive_default_encoding(self, caplog):
        payload = b"".join(svc.iter_csv(["客户"], [["𠮷野家翻译"]]))

        rows = list(csv.reader(io.StringIO(payload.decode(settings.EXPORT_ENCODING))))
        assert rows[1] == ["𠮷野家翻译"]
        assert "无法表示" not in caplog.text

    def test_unencodable_characters_are_logged(self, caplog):
        payload = b"".join(svc.iter_csv(["客户"], [["𠮷野家翻译"]], encoding="gbk"))

        assert payload.decode("gbk").splitlines()[1] == "?野家翻译"
        assert "无法表示" in caplog.text
