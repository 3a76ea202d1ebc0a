"""
Tests for document services: line item builder, creation, totals,
status transitions, projected statuses and deletion rules.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from bizdocs.documents import (
    build_line_item,
    change_status,
    create_delivery_note,
    create_invoice,
    create_quotation,
    delete_document,
    update_document,
)
from bizdocs.errors import (
    ConflictError,
    InvalidQuantity,
    InvalidTaxRate,
    InvalidTransition,
    ValidationError,
)
from bizdocs.extensions import atomic, db
from bizdocs.models import Customer, Invoice, LineItem, Quotation
from bizdocs.payments import record_payment


class TestBuildLineItem:
    """Line items from API input."""

    def test_product_defaults_from_catalog(self, product):
        item = build_line_item({"itemType": "PRODUCT", "productId": product.id, "quantity": 2})
        assert item.description == "Solar panel 300W"
        assert item.unit_price == Decimal("10000.00")
        assert item.total == Decimal("20000.00")

    def test_explicit_input_wins(self, product):
        item = build_line_item(
            {
                "itemType": "product",
                "productId": product.id,
                "description": "Panel (discounted)",
                "quantity": "1",
                "unitPrice": "9500",
            }
        )
        assert item.item_type == "PRODUCT"
        assert item.description == "Panel (discounted)"
        assert item.total == Decimal("9500.00")

    def test_service_defaults_from_catalog(self, service):
        item = build_line_item({"itemType": "SERVICE", "serviceId": service.id, "quantity": 3})
        assert item.description == "Installation"
        assert item.total == Decimal("750.00")
        assert item.product_id is None

    def test_custom_requires_description(self):
        with pytest.raises(ValidationError):
            build_line_item({"quantity": 1, "unitPrice": 10})

    def test_custom_requires_price(self):
        with pytest.raises(ValidationError):
            build_line_item({"description": "Consulting", "quantity": 1})

    def test_product_requires_existing_product(self, app):
        with pytest.raises(ValidationError):
            build_line_item({"itemType": "PRODUCT", "productId": 999, "quantity": 1})

    def test_unknown_item_type(self):
        with pytest.raises(ValidationError):
            build_line_item({"itemType": "BUNDLE", "description": "x", "quantity": 1, "unitPrice": 1})

    def test_non_positive_quantity(self):
        with pytest.raises(InvalidQuantity):
            build_line_item({"description": "x", "quantity": 0, "unitPrice": 1})


class TestInputPrecision:
    """Stored values are taken as given or refused; never rounded on the way in."""

    def test_unit_price_with_fraction_of_a_cent(self):
        with pytest.raises(ValidationError):
            build_line_item({"description": "Cable", "quantity": 100, "unitPrice": "0.125"})

    def test_unit_price_in_cents(self):
        item = build_line_item({"description": "Cable", "quantity": 100, "unitPrice": "0.12"})
        assert item.unit_price == Decimal("0.12")
        assert item.total == Decimal("12.00")

    def test_quantity_beyond_three_places(self):
        with pytest.raises(ValidationError):
            build_line_item({"description": "Cable", "quantity": "1.0005", "unitPrice": 10})

    def test_quantity_with_three_places(self):
        item = build_line_item({"description": "Cable", "quantity": "2.125", "unitPrice": "4"})
        assert item.quantity == Decimal("2.125")
        assert item.total == Decimal("8.50")

    @pytest.mark.parametrize("field", ["quantity", "unitPrice"])
    def test_huge_values_are_validation_errors(self, field):
        data = {"description": "Cable", "quantity": 1, "unitPrice": 1}
        data[field] = "1e30"
        with pytest.raises(ValidationError):
            build_line_item(data)

    def test_tax_rate_beyond_two_places(self, customer, scenario_items):
        with pytest.raises(ValidationError):
            create_quotation({"customerId": customer.id, "taxRate": "7.125", "lineItems": scenario_items})

    def test_tax_rate_with_two_places(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "taxRate": "7.25", "lineItems": scenario_items})
        assert quotation.tax_rate == Decimal("7.25")
        assert quotation.tax_amount == Decimal("1468.13")
        assert quotation.total == Decimal("21718.13")


class TestCreateQuotation:
    def test_reference_totals(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation(
                {"customerId": customer.id, "taxRate": 7.5, "lineItems": scenario_items}
            )

        assert quotation.subtotal == Decimal("20250.00")
        assert quotation.tax_amount == Decimal("1518.75")
        assert quotation.total == Decimal("21768.75")
        assert quotation.status == "DRAFT"
        assert [li.position for li in quotation.line_items] == [0, 1]
        assert all(li.document_type == "quotation" for li in quotation.line_items)
        assert all(li.document_id == quotation.id for li in quotation.line_items)

    def test_config_defaults(self, customer, scenario_items):
        today = date(2025, 3, 1)
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "lineItems": scenario_items}, today=today)

        assert quotation.tax_rate == Decimal("7.50")
        assert quotation.currency == "NGN"
        assert quotation.issue_date == today
        assert quotation.valid_until == today + timedelta(days=30)

    def test_requires_line_items(self, customer):
        with pytest.raises(ValidationError):
            create_quotation({"customerId": customer.id, "lineItems": []})

    def test_requires_known_customer(self, app, scenario_items):
        with pytest.raises(ValidationError):
            create_quotation({"customerId": 42, "lineItems": scenario_items})

    def test_tax_rate_bounds(self, customer, scenario_items):
        with pytest.raises(InvalidTaxRate):
            create_quotation({"customerId": customer.id, "taxRate": -1, "lineItems": scenario_items})
        with pytest.raises(InvalidTaxRate):
            create_quotation({"customerId": customer.id, "taxRate": 150, "lineItems": scenario_items})


class TestUpdateDocument:
    def test_recalc_is_idempotent(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "taxRate": 7.5, "lineItems": scenario_items})
        with atomic():
            update_document(quotation, {"notes": "Revised"})
            update_document(quotation, {})

        assert quotation.notes == "Revised"
        assert quotation.total == Decimal("21768.75")

    def test_line_items_are_fully_replaced(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "taxRate": 0, "lineItems": scenario_items})
        with atomic():
            update_document(
                quotation, {"lineItems": [{"description": "Battery", "quantity": 4, "unitPrice": "1250.50"}]}
            )

        assert len(quotation.line_items) == 1
        assert LineItem.query.filter_by(quotation_id=quotation.id).count() == 1
        assert quotation.total == Decimal("5002.00")

    def test_tax_rate_change_recomputes(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "taxRate": 0, "lineItems": scenario_items})
        with atomic():
            update_document(quotation, {"taxRate": "7.5"})

        assert quotation.tax_amount == Decimal("1518.75")
        assert quotation.total == Decimal("21768.75")


class TestUpdateGuards:
    """Edits that would break payments or links between documents."""

    def _sent_invoice(self, customer, items):
        with atomic():
            invoice = create_invoice({"customerId": customer.id, "taxRate": 0, "lineItems": items})
            change_status(invoice, "sent")
        return invoice

    def _other_customer(self):
        other = Customer(name="Other Ltd", email="other@example.com")
        db.session.add(other)
        db.session.commit()
        return other

    def test_total_cannot_drop_below_amount_paid(self, customer, scenario_items):
        invoice = self._sent_invoice(customer, scenario_items)
        with atomic():
            record_payment(invoice, {"amount": "800"})

        with pytest.raises(ConflictError):
            with atomic():
                update_document(invoice, {"lineItems": [{"description": "Fuse", "quantity": 1, "unitPrice": "500"}]})

        invoice = db.session.get(Invoice, invoice.id)
        assert invoice.total == Decimal("20250.00")
        assert len(invoice.line_items) == 2

    def test_total_may_equal_amount_paid(self, customer, scenario_items):
        invoice = self._sent_invoice(customer, scenario_items)
        with atomic():
            record_payment(invoice, {"amount": "800"})
        with atomic():
            update_document(invoice, {"lineItems": [{"description": "Fuse", "quantity": 1, "unitPrice": "800"}]})

        assert invoice.total == Decimal("800.00")
        assert invoice.balance_due == Decimal("0.00")

    @pytest.mark.parametrize("status", ["paid", "cancelled"])
    def test_settled_invoice_is_read_only(self, customer, scenario_items, status):
        invoice = self._sent_invoice(customer, scenario_items)
        with atomic():
            if status == "paid":
                record_payment(invoice, {"amount": "20250"})
            else:
                change_status(invoice, "cancelled")
        assert invoice.status == status

        with pytest.raises(ConflictError):
            update_document(invoice, {"notes": "Changed"})

    def test_invoice_with_delivery_note_keeps_customer(self, customer, scenario_items):
        other = self._other_customer()
        with atomic():
            invoice = create_invoice({"customerId": customer.id, "lineItems": scenario_items})
            create_delivery_note({"customerId": customer.id, "invoiceId": invoice.id, "lineItems": scenario_items})

        with pytest.raises(ConflictError):
            with atomic():
                update_document(invoice, {"customerId": other.id})

        assert db.session.get(Invoice, invoice.id).customer_id == customer.id

    def test_quotation_with_invoices_keeps_customer(self, customer, scenario_items):
        other = self._other_customer()
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "lineItems": scenario_items})
            create_invoice({"customerId": customer.id, "quotationId": quotation.id, "lineItems": scenario_items})

        with pytest.raises(ConflictError):
            update_document(quotation, {"customerId": other.id})

    def test_linked_delivery_note_must_match_invoice_customer(self, customer, scenario_items):
        other = self._other_customer()
        with atomic():
            invoice = create_invoice({"customerId": customer.id, "lineItems": scenario_items})
            note = create_delivery_note(
                {"customerId": customer.id, "invoiceId": invoice.id, "lineItems": scenario_items}
            )

        with pytest.raises(ValidationError):
            update_document(note, {"customerId": other.id})

    def test_unlinked_document_may_change_customer(self, customer, scenario_items):
        other = self._other_customer()
        with atomic():
            invoice = create_invoice({"customerId": customer.id, "lineItems": scenario_items})
        with atomic():
            update_document(invoice, {"customerId": other.id})

        assert invoice.customer_id == other.id


class TestTransitions:
    def _quotation(self, customer, items):
        with atomic():
            return create_quotation({"customerId": customer.id, "lineItems": items})

    def test_allowed_transition(self, customer, scenario_items):
        quotation = self._quotation(customer, scenario_items)
        with atomic():
            previous = change_status(quotation, "SENT")
        assert previous == "DRAFT"
        assert quotation.status == "SENT"

    def test_terminal_status_is_final(self, customer, scenario_items):
        quotation = self._quotation(customer, scenario_items)
        with atomic():
            change_status(quotation, "REJECTED")
        with pytest.raises(InvalidTransition):
            change_status(quotation, "SENT")

    def test_unknown_status(self, customer, scenario_items):
        quotation = self._quotation(customer, scenario_items)
        with pytest.raises(ValidationError):
            change_status(quotation, "ARCHIVED")

    def test_invoice_cannot_skip_sent(self, customer, scenario_items):
        with atomic():
            invoice = create_invoice({"customerId": customer.id, "lineItems": scenario_items})
        with pytest.raises(InvalidTransition):
            change_status(invoice, "paid")

    def test_delivered_stamps_date(self, customer, scenario_items):
        with atomic():
            note = create_delivery_note({"customerId": customer.id, "lineItems": scenario_items})
        assert note.delivered_date is None
        with atomic():
            change_status(note, "delivered")
        assert note.delivered_date == date.today()


class TestProjectedStatus:
    """Read-time statuses never touch the stored status."""

    def test_sent_invoice_past_due_reports_overdue(self, customer, scenario_items):
        with atomic():
            invoice = create_invoice(
                {"customerId": customer.id, "date": "2025-01-01", "dueDate": "2025-01-31", "lineItems": scenario_items}
            )
            change_status(invoice, "sent")

        data = invoice.to_dict(today=date(2025, 2, 15))
        assert data["status"] == "sent"
        assert data["displayStatus"] == "overdue"

        db.session.expire_all()
        assert db.session.get(Invoice, invoice.id).status == "sent"

    def test_paid_invoice_is_never_overdue(self, customer, scenario_items):
        with atomic():
            invoice = create_invoice(
                {"customerId": customer.id, "date": "2025-01-01", "dueDate": "2025-01-31", "lineItems": scenario_items}
            )
            change_status(invoice, "sent")
            change_status(invoice, "paid")

        assert invoice.reported_status(date(2025, 6, 1)) == "paid"

    def test_due_today_is_not_overdue(self, customer, scenario_items):
        with atomic():
            invoice = create_invoice(
                {"customerId": customer.id, "date": "2025-01-01", "dueDate": "2025-01-31", "lineItems": scenario_items}
            )
        assert invoice.reported_status(date(2025, 1, 31)) == "draft"

    def test_quotation_reports_expired(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation(
                {"customerId": customer.id, "validUntil": "2025-01-10", "lineItems": scenario_items}
            )
        assert quotation.reported_status(date(2025, 1, 11)) == "EXPIRED"
        assert quotation.status == "DRAFT"


class TestNumbers:
    def test_invoice_numbers_are_sequential_per_year(self, customer, scenario_items):
        numbers = []
        for issue in ("2025-02-01", "2025-03-01", "2026-01-05"):
            with atomic():
                invoice = create_invoice({"customerId": customer.id, "date": issue, "lineItems": scenario_items})
            numbers.append(invoice.invoice_number)

        assert numbers == ["INV-2025-000001", "INV-2025-000002", "INV-2026-000001"]

    def test_delivery_numbers(self, customer, scenario_items):
        with atomic():
            first = create_delivery_note({"customerId": customer.id, "lineItems": scenario_items})
        with atomic():
            second = create_delivery_note({"customerId": customer.id, "lineItems": scenario_items})
        assert (first.delivery_number, second.delivery_number) == ("DN-000001", "DN-000002")

    def test_delivery_note_customer_must_match_invoice(self, customer, scenario_items):
        other = Customer(name="Other Ltd", email="other@example.com")
        db.session.add(other)
        db.session.commit()
        with atomic():
            invoice = create_invoice({"customerId": customer.id, "lineItems": scenario_items})

        with pytest.raises(ValidationError):
            create_delivery_note({"customerId": other.id, "invoiceId": invoice.id, "lineItems": scenario_items})


class TestLineItemOwnership:
    def test_item_cannot_move_between_documents(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "lineItems": scenario_items})
            invoice = create_invoice({"customerId": customer.id, "lineItems": scenario_items})

        with pytest.raises(ValidationError):
            invoice.attach_line_item(quotation.line_items[0])

    def test_database_rejects_mismatched_owner(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "lineItems": scenario_items})
        quotation_id = quotation.id

        db.session.add(
            LineItem(
                document_type="invoice",
                quotation_id=quotation_id,
                item_type="CUSTOM",
                description="Orphan",
                quantity=Decimal("1"),
                unit_price=Decimal("1.00"),
                total=Decimal("1.00"),
            )
        )
        with pytest.raises(IntegrityError):
            db.session.flush()
        db.session.rollback()


class TestDelete:
    def test_quotation_with_invoice_is_kept(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "lineItems": scenario_items})
            create_invoice({"customerId": customer.id, "quotationId": quotation.id, "lineItems": scenario_items})

        with pytest.raises(ConflictError):
            delete_document(quotation)

    def test_delete_cascades_line_items(self, customer, scenario_items):
        with atomic():
            quotation = create_quotation({"customerId": customer.id, "lineItems": scenario_items})
        quotation_id = quotation.id
        with atomic():
            delete_document(quotation)

        assert db.session.get(Quotation, quotation_id) is None
        assert LineItem.query.filter_by(quotation_id=quotation_id).count() == 0
