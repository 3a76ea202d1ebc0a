"""
HTTP API tests: JSON shapes, status codes and error mapping.

Money values travel as strings ("21768.75"), so assertions go through
Decimal.
"""

from datetime import date, timedelta
from decimal import Decimal

from bizdocs.extensions import db
from bizdocs.models import AuditLog, Invoice


def _create_quotation(client, customer, items, **extra):
    payload = {"customerId": customer.id, "taxRate": 7.5, "lineItems": items}
    payload.update(extra)
    return client.post("/api/quotations", json=payload)


class TestQuotationEndpoints:
    def test_create_returns_totals(self, client, customer, scenario_items):
        resp = _create_quotation(client, customer, scenario_items)
        assert resp.status_code == 201

        q = resp.get_json()["quotation"]
        assert Decimal(q["subtotal"]) == Decimal("20250")
        assert Decimal(q["taxAmount"]) == Decimal("1518.75")
        assert Decimal(q["total"]) == Decimal("21768.75")
        assert q["status"] == "DRAFT"
        assert q["displayStatus"] == "DRAFT"
        assert len(q["lineItems"]) == 2
        assert q["customer"]["email"] == "adaeze@example.com"

    def test_missing_quotation_is_404_json(self, client):
        resp = client.get("/api/quotations/9999")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Quotation not found"}

    def test_invalid_line_item_is_400(self, client, customer):
        resp = _create_quotation(client, customer, [{"description": "x", "quantity": -2, "unitPrice": 5}])
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    def test_huge_quantity_is_400(self, client, customer):
        resp = _create_quotation(client, customer, [{"description": "x", "quantity": "1e30", "unitPrice": 5}])
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    def test_huge_unit_price_is_400(self, client, customer):
        resp = _create_quotation(client, customer, [{"description": "x", "quantity": 1, "unitPrice": "1e30"}])
        assert resp.status_code == 400

    def test_fractional_cent_price_is_400(self, client, customer):
        resp = _create_quotation(client, customer, [{"description": "x", "quantity": 100, "unitPrice": "0.125"}])
        assert resp.status_code == 400

    def test_non_json_body_is_400(self, client):
        resp = client.post("/api/quotations", data="nope", content_type="text/plain")
        assert resp.status_code == 400

    def test_invalid_transition_is_409(self, client, customer, scenario_items):
        qid = _create_quotation(client, customer, scenario_items).get_json()["quotation"]["id"]
        assert client.patch(f"/api/quotations/{qid}/status", json={"status": "REJECTED"}).status_code == 200

        resp = client.patch(f"/api/quotations/{qid}/status", json={"status": "SENT"})
        assert resp.status_code == 409

    def test_list_filters_by_status(self, client, customer, scenario_items):
        _create_quotation(client, customer, scenario_items)
        qid = _create_quotation(client, customer, scenario_items).get_json()["quotation"]["id"]
        client.patch(f"/api/quotations/{qid}/status", json={"status": "SENT"})

        resp = client.get("/api/quotations?status=SENT")
        assert [q["id"] for q in resp.get_json()["quotations"]] == [qid]


class TestConvertEndpoint:
    def test_convert_then_conflict(self, client, customer, scenario_items):
        quotation = _create_quotation(client, customer, scenario_items).get_json()["quotation"]

        resp = client.post(f"/api/quotations/{quotation['id']}/convert-to-invoice")
        assert resp.status_code == 201
        body = resp.get_json()
        invoice = body["invoice"]
        assert body["message"] == "Quotation converted to invoice"
        assert invoice["status"] == "draft"
        assert invoice["quotationId"] == quotation["id"]
        assert invoice["total"] == quotation["total"]
        assert [(li["description"], li["quantity"], li["unitPrice"]) for li in invoice["lineItems"]] == [
            (li["description"], li["quantity"], li["unitPrice"]) for li in quotation["lineItems"]
        ]

        after = client.get(f"/api/quotations/{quotation['id']}").get_json()["quotation"]
        assert after["status"] == "ACCEPTED"
        assert after["invoiceIds"] == [invoice["id"]]

        again = client.post(f"/api/quotations/{quotation['id']}/convert-to-invoice")
        assert again.status_code == 409
        assert again.get_json()["invoiceNumber"] == invoice["invoiceNumber"]

    def test_convert_writes_audit_rows(self, client, customer, scenario_items):
        qid = _create_quotation(client, customer, scenario_items).get_json()["quotation"]["id"]
        client.post(f"/api/quotations/{qid}/convert-to-invoice")

        actions = {(row.entity_type, row.action) for row in AuditLog.query.all()}
        assert ("Invoice", "CONVERT") in actions
        assert ("Quotation", "STATUS") in actions

    def test_convert_missing_quotation(self, client):
        assert client.post("/api/quotations/777/convert-to-invoice").status_code == 404


class TestInvoiceEndpoints:
    def _invoice(self, client, customer, items, **extra):
        payload = {"customerId": customer.id, "taxRate": 7.5, "lineItems": items}
        payload.update(extra)
        resp = client.post("/api/invoices", json=payload)
        assert resp.status_code == 201
        return resp.get_json()["invoice"]

    def test_overdue_is_projected(self, client, customer, scenario_items):
        past = date.today() - timedelta(days=40)
        invoice = self._invoice(
            client, customer, scenario_items, date=past.isoformat(), dueDate=(past + timedelta(days=10)).isoformat()
        )
        client.patch(f"/api/invoices/{invoice['id']}/status", json={"status": "sent"})

        data = client.get(f"/api/invoices/{invoice['id']}").get_json()["invoice"]
        assert data["status"] == "sent"
        assert data["displayStatus"] == "overdue"
        assert db.session.get(Invoice, invoice["id"]).status == "sent"

        listed = client.get("/api/invoices?status=overdue").get_json()["invoices"]
        assert [i["id"] for i in listed] == [invoice["id"]]

    def test_payment_flow(self, client, customer, scenario_items):
        invoice = self._invoice(client, customer, scenario_items)
        iid = invoice["id"]

        early = client.post(f"/api/invoices/{iid}/payments", json={"amount": "100"})
        assert early.status_code == 409

        client.patch(f"/api/invoices/{iid}/status", json={"status": "sent"})
        resp = client.post(f"/api/invoices/{iid}/payments", json={"amount": invoice["total"]})
        assert resp.status_code == 201
        assert resp.get_json()["invoice"]["status"] == "paid"

        listing = client.get(f"/api/invoices/{iid}/payments").get_json()
        assert Decimal(listing["balanceDue"]) == Decimal("0")
        assert len(listing["payments"]) == 1

    def test_delivery_note_from_invoice(self, client, customer, scenario_items):
        invoice = self._invoice(client, customer, scenario_items)

        resp = client.post(f"/api/invoices/{invoice['id']}/create-delivery-note")
        assert resp.status_code == 201
        note = resp.get_json()["deliveryNote"]
        assert note["invoiceNumber"] == invoice["invoiceNumber"]
        assert note["status"] == "pending"
        assert note["deliveryNumber"] == "DN-000001"

        blocked = client.delete(f"/api/invoices/{invoice['id']}")
        assert blocked.status_code == 409

        delivered = client.patch(f"/api/delivery-notes/{note['id']}/status", json={"status": "delivered"})
        assert delivered.get_json()["deliveryNote"]["deliveredDate"] == date.today().isoformat()

    def test_huge_payment_amount_is_400(self, client, customer, scenario_items):
        invoice = self._invoice(client, customer, scenario_items)
        client.patch(f"/api/invoices/{invoice['id']}/status", json={"status": "sent"})

        resp = client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount": "1e30"})
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    def test_paid_invoice_cannot_be_edited(self, client, customer, scenario_items):
        invoice = self._invoice(client, customer, scenario_items)
        iid = invoice["id"]
        client.patch(f"/api/invoices/{iid}/status", json={"status": "sent"})
        client.post(f"/api/invoices/{iid}/payments", json={"amount": invoice["total"]})

        resp = client.put(f"/api/invoices/{iid}", json={"notes": "Late edit"})
        assert resp.status_code == 409
        assert client.get(f"/api/invoices/{iid}").get_json()["invoice"]["notes"] is None


class TestCustomerEndpoints:
    def test_duplicate_email_is_409(self, client):
        first = client.post("/api/customers", json={"name": "Tunde", "email": "tunde@example.com"})
        assert first.status_code == 201
        dup = client.post("/api/customers", json={"name": "Tunde B", "email": "TUNDE@example.com"})
        assert dup.status_code == 409

    def test_search_and_pagination(self, client):
        for n in range(3):
            client.post("/api/customers", json={"name": f"Kemi {n}", "email": f"kemi{n}@example.com"})
        client.post("/api/customers", json={"name": "Bola", "email": "bola@example.com"})

        body = client.get("/api/customers?search=kemi&limit=2").get_json()
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert len(body["customers"]) == 2

    def test_customer_with_documents_cannot_be_deleted(self, client, customer, scenario_items):
        _create_quotation(client, customer, scenario_items)
        assert client.delete(f"/api/customers/{customer.id}").status_code == 409

    def test_financial_summary(self, client, customer, scenario_items):
        resp = client.post(
            "/api/invoices", json={"customerId": customer.id, "taxRate": 0, "lineItems": scenario_items}
        )
        iid = resp.get_json()["invoice"]["id"]
        client.patch(f"/api/invoices/{iid}/status", json={"status": "sent"})
        client.post(f"/api/invoices/{iid}/payments", json={"amount": "250"})

        summary = client.get(f"/api/customers/{customer.id}/financial-summary").get_json()
        assert Decimal(summary["totalInvoiced"]) == Decimal("20250")
        assert Decimal(summary["totalPaid"]) == Decimal("250")
        assert Decimal(summary["totalOutstanding"]) == Decimal("20000")
        assert summary["invoiceCount"] == 1
        assert summary["paidInvoiceCount"] == 0


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/health").get_json()["status"] == "ok"


class TestCustomerPayments:
    def _sent_invoice(self, client, customer, items):
        resp = client.post("/api/invoices", json={"customerId": customer.id, "taxRate": 0, "lineItems": items})
        invoice = resp.get_json()["invoice"]
        client.patch(f"/api/invoices/{invoice['id']}/status", json={"status": "sent"})
        return invoice

    def test_unknown_customer_is_404(self, client):
        resp = client.get("/api/customers/9999/payments")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Customer not found"}

    def test_payments_across_invoices_newest_first(self, client, customer, scenario_items):
        first = self._sent_invoice(client, customer, scenario_items)
        second = self._sent_invoice(client, customer, scenario_items)
        client.post(f"/api/invoices/{first['id']}/payments", json={"amount": "100", "paymentDate": "2025-02-01"})
        client.post(f"/api/invoices/{second['id']}/payments", json={"amount": "200", "paymentDate": "2025-03-01"})
        client.post(f"/api/invoices/{first['id']}/payments", json={"amount": "300", "paymentDate": "2025-01-15"})

        payments = client.get(f"/api/customers/{customer.id}/payments").get_json()["payments"]
        assert [p["paymentDate"] for p in payments] == ["2025-03-01", "2025-02-01", "2025-01-15"]
        assert [p["invoiceNumber"] for p in payments] == [
            second["invoiceNumber"],
            first["invoiceNumber"],
            first["invoiceNumber"],
        ]
        assert [Decimal(p["amount"]) for p in payments] == [Decimal("200"), Decimal("100"), Decimal("300")]

    def test_other_customers_payments_are_excluded(self, client, customer, scenario_items):
        invoice = self._sent_invoice(client, customer, scenario_items)
        client.post(f"/api/invoices/{invoice['id']}/payments", json={"amount": "100"})
        other = client.post("/api/customers", json={"name": "Other Ltd", "email": "other@example.com"})

        resp = client.get(f"/api/customers/{other.get_json()['customer']['id']}/payments")
        assert resp.status_code == 200
        assert resp.get_json()["payments"] == []

    def test_record_payment_through_customer(self, client, customer, scenario_items):
        invoice = self._sent_invoice(client, customer, scenario_items)

        resp = client.post(
            f"/api/customers/{customer.id}/payments",
            json={"invoiceId": invoice["id"], "amount": "250", "paymentMethod": "cash"},
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["payment"]["invoiceNumber"] == invoice["invoiceNumber"]
        assert Decimal(body["invoice"]["amountPaid"]) == Decimal("250")

    def test_invoice_of_another_customer_is_404(self, client, customer, scenario_items):
        invoice = self._sent_invoice(client, customer, scenario_items)
        other = client.post("/api/customers", json={"name": "Other Ltd", "email": "other@example.com"})
        other_id = other.get_json()["customer"]["id"]

        resp = client.post(f"/api/customers/{other_id}/payments", json={"invoiceId": invoice["id"], "amount": "10"})
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Invoice not found for this customer"}
