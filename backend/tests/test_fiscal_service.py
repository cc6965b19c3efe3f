"""
Integration tests per il timbro fiscale.
"""

import dataclasses
import datetime
import uuid

import pytest

from app.core.exceptions import ConflictError, FiscalIntegrityError, NotFoundError
from app.schemas.tenant_settings import TenantSettingsUpdate
from app.services.fiscal_service import FiscalStampService, MockFiscalGateway

CERTIFIED_AT = datetime.datetime(2025, 5, 2, 10, 30, 0, tzinfo=datetime.timezone.utc)


class TamperingGateway(MockFiscalGateway):
    """Gateway che restituisce totali diversi da quelli inviati."""

    async def certify(self, invoice, payload):
        certification = await super().certify(invoice, payload)
        return dataclasses.replace(
            certification,
            totals={"ht": "999.00", "vat": "160.00", "ttc": "1159.00"},
        )


class TransactionCheckingGateway(MockFiscalGateway):
    """Gateway che registra se la sessione ha una transazione aperta."""

    def __init__(self, db):
        super().__init__()
        self.db = db
        self.in_transaction_during_certify = None

    async def certify(self, invoice, payload):
        self.in_transaction_during_certify = self.db.in_transaction()
        return await super().certify(invoice, payload)


@pytest.fixture
def gateway():
    return MockFiscalGateway(device_id="EMCF-TEST-01", tax_id="A1234567B", clock=lambda: CERTIFIED_AT)


@pytest.fixture
def stamp_service(audit_service, settings_service):
    return FiscalStampService(audit=audit_service, settings_service=settings_service)


async def confirmed_invoice(open_session, invoice_service, tenant_id, draft_data):
    async with open_session(tenant_id) as db:
        draft = await invoice_service.create_draft(db, draft_data)
        return await invoice_service.confirm(db, draft.id)


class TestApplyStamp:
    """Tests per FiscalStampService.apply_stamp."""

    async def test_stamp_confirmed_invoice(
        self, open_session, invoice_service, stamp_service, gateway, tenant_a, draft_data
    ):
        invoice = await confirmed_invoice(open_session, invoice_service, tenant_a, draft_data)
        async with open_session(tenant_a) as db:
            stamped = await stamp_service.apply_stamp(db, invoice.id, gateway)

        assert stamped.fiscal_source == "emcf"
        assert stamped.fiscal_device_reference == "EMCF-TEST-01"
        assert len(stamped.fiscal_signature) == 32
        assert stamped.fiscal_counters == "1/1 FV"
        assert stamped.fiscal_verification_payload == (
            f"RDCDEF01;EMCF-TEST-01;{stamped.fiscal_signature};A1234567B;20250502103000"
        )

    async def test_second_stamp_is_noop(
        self, open_session, invoice_service, stamp_service, gateway, tenant_a, draft_data
    ):
        invoice = await confirmed_invoice(open_session, invoice_service, tenant_a, draft_data)
        async with open_session(tenant_a) as db:
            first = await stamp_service.apply_stamp(db, invoice.id, gateway)
            signature = first.fiscal_signature
            second = await stamp_service.apply_stamp(db, invoice.id, gateway)

        assert second.fiscal_signature == signature
        assert second.fiscal_counters == "1/1 FV"

    async def test_draft_cannot_be_stamped(
        self, open_session, invoice_service, stamp_service, gateway, tenant_a, draft_data
    ):
        async with open_session(tenant_a) as db:
            draft = await invoice_service.create_draft(db, draft_data)
            draft_id = draft.id

        async with open_session(tenant_a) as db:
            with pytest.raises(ConflictError) as exc_info:
                await stamp_service.apply_stamp(db, draft_id, gateway)

        assert exc_info.value.error_code == "INVOICE_NOT_CONFIRMED"
        assert exc_info.value.extra == {"status": "DRAFT"}

    async def test_gateway_called_outside_transaction(
        self, open_session, invoice_service, stamp_service, tenant_a, draft_data
    ):
        """Test nessuna transazione aperta durante la certificazione."""
        invoice = await confirmed_invoice(open_session, invoice_service, tenant_a, draft_data)
        async with open_session(tenant_a) as db:
            gateway = TransactionCheckingGateway(db)
            stamped = await stamp_service.apply_stamp(db, invoice.id, gateway)

        assert gateway.in_transaction_during_certify is False
        assert stamped.fiscal_signature is not None

    async def test_unknown_invoice(self, open_session, stamp_service, gateway, tenant_a):
        async with open_session(tenant_a) as db:
            with pytest.raises(NotFoundError):
                await stamp_service.apply_stamp(db, uuid.uuid4(), gateway)

    async def test_totals_mismatch_rejected(
        self, open_session, invoice_service, stamp_service, tenant_a, draft_data
    ):
        """Test totali del dispositivo diversi: timbro rifiutato."""
        invoice = await confirmed_invoice(open_session, invoice_service, tenant_a, draft_data)
        async with open_session(tenant_a) as db:
            with pytest.raises(FiscalIntegrityError) as exc_info:
                await stamp_service.apply_stamp(db, invoice.id, TamperingGateway())
            reloaded = await invoice_service.get_by_id(db, invoice.id)
            assert reloaded.fiscal_signature is None

        assert exc_info.value.error_code == "FISCAL_TOTALS_MISMATCH"
        assert exc_info.value.extra["expected"]["ttc"] == "1160.00"
        assert exc_info.value.extra["received"]["ttc"] == "1159.00"

    async def test_mismatch_accepted_when_check_disabled(
        self, open_session, invoice_service, stamp_service, tenant_a, draft_data
    ):
        invoice = await confirmed_invoice(open_session, invoice_service, tenant_a, draft_data)
        async with open_session(tenant_a) as db:
            await stamp_service.settings_service.update(
                db, TenantSettingsUpdate(fiscal_subtotal_check=False)
            )
            stamped = await stamp_service.apply_stamp(db, invoice.id, TamperingGateway())

        assert stamped.fiscal_signature is not None
