"""
Integration tests per InvoiceService.

Verificano calcolo dei totali, regole DGI in conferma, numerazione,
idempotenza e vista normalizzata su un database SQLite reale.
"""

import datetime
import re
import uuid

import pydantic
import pytest

from app.core.exceptions import BusinessValidationError, NotFoundError
from app.core.tax_rules import ClientType, CreditNoteNature, DocumentType, ItemKind, TaxGroup
from app.models.invoice import InvoiceStatus, PricingMode
from app.schemas.audit import AuditLogFilter
from app.schemas.exchange_rate import ExchangeRateCreate
from app.schemas.invoice import ClientSnapshot, CreditNoteMeta
from app.services.audit_service import stable_hash
from app.services.invoice_service import NORMALIZED_FIELDS, InvoiceService
from factories import make_invoice, make_line

NUMBER_RE = re.compile(r"^FV\d{4}-\d{6}$")


# ============================================================
# Tests per la creazione della bozza
# ============================================================


class TestCreateDraft:
    """Tests per create_draft."""

    async def test_ttc_line_is_split(self, open_session, invoice_service, tenant_a, draft_data):
        """Test 1.000 x 1160.00 TTC gruppo B = 1000.00 + 160.00."""
        async with open_session(tenant_a) as db:
            invoice = await invoice_service.create_draft(db, draft_data)

        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.number is None
        assert invoice.tenant_id == tenant_a
        assert invoice.totals == {"ht": "1000.00", "vat": "160.00", "ttc": "1160.00"}
        line = invoice.lines[0]
        assert line.line_number == 1
        assert (line.total_ht, line.total_vat, line.total_ttc) == (100000, 16000, 116000)

    async def test_ht_line_adds_vat(self, open_session, invoice_service, tenant_a):
        """Test 2.000 x 500.00 HT gruppo C = 1000.00 + 80.00."""
        data = make_invoice(
            lines=[make_line(tax_group=TaxGroup.C, quantity="2.000", unit_price="500.00")],
            pricing_mode=PricingMode.HT,
        )
        async with open_session(tenant_a) as db:
            invoice = await invoice_service.create_draft(db, data)

        assert invoice.totals == {"ht": "1000.00", "vat": "80.00", "ttc": "1080.00"}

    async def test_totals_sum_lines(self, open_session, invoice_service, tenant_a):
        """Test i totali del documento sono la somma delle righe."""
        data = make_invoice(
            lines=[
                make_line(),
                make_line(kind=ItemKind.SER, tax_group=TaxGroup.A, unit_price="100.00"),
                make_line(kind=ItemKind.TAX, tax_group=TaxGroup.L, unit_price="15.50"),
            ]
        )
        async with open_session(tenant_a) as db:
            invoice = await invoice_service.create_draft(db, data)

        assert invoice.totals == {"ht": "1115.50", "vat": "160.00", "ttc": "1275.50"}
        assert [line.line_number for line in invoice.lines] == [1, 2, 3]

    async def test_default_pricing_mode_from_settings(self, open_session, invoice_service, tenant_a):
        """Test senza modalità si usa quella del tenant (TTC)."""
        async with open_session(tenant_a) as db:
            invoice = await invoice_service.create_draft(db, make_invoice(pricing_mode=None))

        assert invoice.pricing_mode == PricingMode.TTC.value

    async def test_empty_lines_rejected(self, open_session, invoice_service, tenant_a):
        async with open_session(tenant_a) as db:
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.create_draft(db, make_invoice(lines=[]))
        assert exc_info.value.error_code == "INVOICE_LINES_REQUIRED"

    async def test_tax_item_with_vat_group_rejected(self, open_session, invoice_service, tenant_a):
        """Test TAX con gruppo B rifiutata con indice di riga."""
        data = make_invoice(lines=[make_line(), make_line(kind=ItemKind.TAX, tax_group=TaxGroup.B)])
        async with open_session(tenant_a) as db:
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.create_draft(db, data)
            listing = await invoice_service.get_all(db)

        assert exc_info.value.error_code == "TAX_GROUP_NOT_ALLOWED"
        assert exc_info.value.extra["line"] == 2
        assert listing.total == 0

    def test_invalid_amount_rejected_by_schema(self):
        """Test importo con virgola rifiutato già in validazione."""
        with pytest.raises(pydantic.ValidationError):
            make_line(unit_price="12,50")

    def test_oversized_price_rejected_by_schema(self):
        """Test prezzo oltre i limiti a 64 bit rifiutato in validazione."""
        with pytest.raises(pydantic.ValidationError):
            make_line(unit_price="99999999999999999999.00")

    async def test_line_total_out_of_range(self, open_session, invoice_service, tenant_a):
        """Test prodotto quantità x prezzo non memorizzabile rifiutato con indice di riga."""
        data = make_invoice(lines=[make_line(quantity="1000000000.000", unit_price="99999999999.00")])
        async with open_session(tenant_a) as db:
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.create_draft(db, data)
            listing = await invoice_service.get_all(db)

        assert exc_info.value.error_code == "AMOUNT_OUT_OF_RANGE"
        assert exc_info.value.extra["line"] == 1
        assert listing.total == 0

    async def test_line_without_label(self, open_session, invoice_service, tenant_a):
        data = make_invoice(lines=[make_line(label=None)])
        async with open_session(tenant_a) as db:
            invoice = await invoice_service.create_draft(db, data)

        assert invoice.lines[0].label is None
        assert InvoiceService.serialize_invoice(invoice)["lines"][0]["label"] is None


# ============================================================
# Tests per la conferma
# ============================================================


class TestConfirm:
    """Tests per confirm e regole DGI."""

    async def test_confirm_assigns_number(self, open_session, invoice_service, tenant_a, draft_data):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            invoice = await invoice_service.confirm(db, draft.id)

        assert invoice.status == InvoiceStatus.CONFIRMED.value
        assert NUMBER_RE.match(invoice.number)
        assert invoice.number.endswith("-000001")
        assert invoice.confirmed_at is not None

    async def test_confirm_twice_keeps_number(self, open_session, invoice_service, tenant_a, draft_data):
        """Test una seconda conferma non consuma un nuovo numero."""
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            first = await invoice_service.confirm(db, draft.id)
            first_number = first.number
            second = await invoice_service.confirm(db, draft.id)
            assert second.number == first_number

            other = await invoice_service.create_draft(db, draft_data)
            other = await invoice_service.confirm(db, other.id)
            assert other.number.endswith("-000002")

    async def test_confirm_unknown_invoice(self, open_session, invoice_service, tenant_a):
        async with open_session(tenant_a) as db:
            with pytest.raises(NotFoundError):
                await invoice_service.confirm(db, uuid.uuid4())

    async def test_company_client_requires_nif(self, open_session, invoice_service, tenant_a):
        """Test cliente PM senza NIF rifiutato e documento ancora in bozza."""
        data = make_invoice(client=ClientSnapshot(type=ClientType.PM, denomination="Société SARL"))
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, data)
            draft_id = draft.id
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.confirm(db, draft_id)

        assert exc_info.value.error_code == "CLIENT_FIELD_REQUIRED"
        assert exc_info.value.extra["field"] == "nif"

        async with open_session(tenant_a) as db:
            invoice = await invoice_service.get_by_id(db, draft_id)
            assert invoice.status == InvoiceStatus.DRAFT.value
            assert invoice.number is None

    async def test_exempt_organisation_requires_reference(self, open_session, invoice_service, tenant_a):
        data = make_invoice(client=ClientSnapshot(type=ClientType.AO, name="Mission"))
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, data)
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.confirm(db, draft.id)
        assert exc_info.value.extra["field"] == "ref_exo"

    async def test_credit_note_requires_nature(self, open_session, invoice_service, tenant_a):
        data = make_invoice(document_type=DocumentType.FA)
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, data)
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.confirm(db, draft.id)
        assert exc_info.value.error_code == "CREDIT_NOTE_NATURE_REQUIRED"

    async def test_credit_note_requires_origin(self, open_session, invoice_service, tenant_a):
        """Test natura COR senza riferimento origine rifiutata."""
        data = make_invoice(
            document_type=DocumentType.FA,
            credit_note=CreditNoteMeta(nature=CreditNoteNature.COR),
        )
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, data)
            with pytest.raises(BusinessValidationError) as exc_info:
                await invoice_service.confirm(db, draft.id)
        assert exc_info.value.error_code == "CREDIT_NOTE_ORIGIN_REQUIRED"

    async def test_discount_credit_note_without_origin(self, open_session, invoice_service, tenant_a):
        """Test natura RRR confermata senza riferimento, numerazione FA propria."""
        data = make_invoice(
            document_type=DocumentType.FA,
            credit_note=CreditNoteMeta(nature=CreditNoteNature.RRR),
        )
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, data)
            invoice = await invoice_service.confirm(db, draft.id)

        assert re.match(r"^FA\d{4}-000001$", invoice.number)
        assert invoice.credit_note == {"nature": "RRR", "origin_reference": None}

    async def test_equivalent_currency_snapshot(self, open_session, invoice_service, tenant_a, draft_data):
        """Test il tasso più recente viene congelato sul documento."""
        async with open_session(tenant_a) as db:
            await invoice_service.fx_provider.create(
                db,
                ExchangeRateCreate(
                    quote="usd",
                    rate="2800.50",
                    valid_from=datetime.datetime(2025, 3, 1, tzinfo=datetime.timezone.utc),
                ),
            )
            draft = await invoice_service.create_draft(db, draft_data)
            invoice = await invoice_service.confirm(db, draft.id, "USD")

        assert invoice.equivalent_currency_code == "USD"
        assert invoice.equivalent_currency_rate == 2_800_500_000
        assert invoice.equivalent_currency["rate"] == "2800.500000"
        assert invoice.equivalent_currency_provider == "manual"
        assert InvoiceService.serialize_invoice(invoice)["equivalentCurrency"]["provider"] == "manual"

    async def test_missing_rate_keeps_draft(self, open_session, invoice_service, tenant_a, draft_data):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            draft_id = draft.id
            with pytest.raises(NotFoundError):
                await invoice_service.confirm(db, draft_id, "EUR")
            invoice = await invoice_service.get_by_id(db, draft_id)
            assert invoice.status == InvoiceStatus.DRAFT.value


# ============================================================
# Tests per la conferma idempotente
# ============================================================


class TestConfirmIdempotent:
    """Tests per confirm_idempotent."""

    async def test_same_key_replays_response(self, open_session, invoice_service, tenant_a, draft_data):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            first, first_replayed = await invoice_service.confirm_idempotent(db, draft.id, "key-1")
            second, second_replayed = await invoice_service.confirm_idempotent(db, draft.id, "key-1")

        assert first_replayed is False
        assert second_replayed is True
        assert first == second
        assert NUMBER_RE.match(first["number"])

    async def test_without_key_confirms(self, open_session, invoice_service, tenant_a, draft_data):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            response, replayed = await invoice_service.confirm_idempotent(db, draft.id, None)

        assert replayed is False
        assert response["status"] == "CONFIRMED"
        assert response["totals"] == {"ht": "1000.00", "vat": "160.00", "ttc": "1160.00"}


# ============================================================
# Tests per lettura e vista normalizzata
# ============================================================


class TestLookup:
    """Tests per get_by_number, get_all e normalized."""

    async def test_get_by_number(self, open_session, invoice_service, tenant_a, tenant_b, draft_data):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            confirmed = await invoice_service.confirm(db, draft.id)
            found = await invoice_service.get_by_number(db, confirmed.number)
            assert found.id == draft.id

        async with open_session(tenant_b) as db:
            with pytest.raises(NotFoundError):
                await invoice_service.get_by_number(db, confirmed.number)

    async def test_get_all_filters_and_pages(self, open_session, invoice_service, tenant_a, draft_data):
        async with open_session(tenant_a) as db:
            for _ in range(3):
                await invoice_service.create_draft(db, draft_data)
            draft = await invoice_service.create_draft(db, draft_data)
            await invoice_service.confirm(db, draft.id)

            drafts = await invoice_service.get_all(db, status_filter=InvoiceStatus.DRAFT)
            page = await invoice_service.get_all(db, page=2, limit=3)

        assert drafts.total == 3
        assert page.total == 4
        assert page.total_pages == 2
        assert len(page.items) == 1

    async def test_normalized_view(self, open_session, invoice_service, tenant_a, draft_data):
        """Test payload con soli campi fiscali e hash coerente."""
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            view = await invoice_service.normalized(db, draft.id)

        assert tuple(view.payload) == NORMALIZED_FIELDS
        assert "lines" not in view.payload
        assert view.hash == stable_hash(view.payload)
        assert len(view.hash) == 64


# ============================================================
# Tests per l'audit delle operazioni
# ============================================================


class TestInvoiceAudit:
    """Tests per le voci di audit scritte dal service."""

    async def test_draft_and_confirm_are_audited(self, open_session, invoice_service, tenant_a, actor_id, draft_data):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            await invoice_service.confirm(db, draft.id)
            await invoice_service.confirm(db, draft.id)
            await db.commit()
            entries = await invoice_service.audit.query(
                db, AuditLogFilter(resource_id=str(draft.id))
            )

        actions = sorted(entry.action for entry in entries.items)
        assert actions == ["invoice.confirm", "invoice.confirm.idempotent", "invoice.createDraft"]
        confirm_entry = next(e for e in entries.items if e.action == "invoice.confirm")
        assert confirm_entry.actor_id == actor_id
        assert confirm_entry.before_hash != confirm_entry.after_hash
