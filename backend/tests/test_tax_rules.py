"""
Unit tests per le tabelle normative DGI.
"""

import pytest

from app.core.tax_rules import (
    ALLOWED_GROUPS_BY_KIND,
    TAX_GROUP_RULES,
    ClientType,
    CreditNoteNature,
    DocumentType,
    ItemKind,
    TaxGroup,
    is_credit_document,
    is_group_allowed_for_kind,
    rate_for_group,
    required_client_fields,
    requires_origin_reference,
    requires_specific_presentation,
)


class TestTaxGroups:
    """Tests per gruppi fiscali e aliquote."""

    def test_every_group_has_rule(self):
        """Test ogni gruppo ha una regola."""
        assert set(TAX_GROUP_RULES) == set(TaxGroup)

    @pytest.mark.parametrize(
        "group, rate",
        [(TaxGroup.A, 0), (TaxGroup.B, 16), (TaxGroup.C, 8), (TaxGroup.F, 16), (TaxGroup.G, 8), (TaxGroup.L, None)],
    )
    def test_rates(self, group, rate):
        assert rate_for_group(group) == rate

    def test_specific_presentation(self):
        """Test M e N con presentazione separata."""
        assert requires_specific_presentation(TaxGroup.M)
        assert requires_specific_presentation(TaxGroup.N)
        assert not requires_specific_presentation(TaxGroup.B)


class TestKindCompatibility:
    """Tests per la compatibilità natura articolo / gruppo."""

    def test_tax_items_only_l_and_n(self):
        """Test le tasse ammettono solo L e N."""
        assert ALLOWED_GROUPS_BY_KIND[ItemKind.TAX] == frozenset({TaxGroup.L, TaxGroup.N})
        assert not is_group_allowed_for_kind(ItemKind.TAX, TaxGroup.B)

    @pytest.mark.parametrize("kind", [ItemKind.BIE, ItemKind.SER])
    def test_goods_and_services(self, kind):
        """Test beni e servizi esclusi da L, N e gruppi riservati."""
        assert is_group_allowed_for_kind(kind, TaxGroup.B)
        assert is_group_allowed_for_kind(kind, TaxGroup.M)
        for group in (TaxGroup.L, TaxGroup.N, TaxGroup.O, TaxGroup.P):
            assert not is_group_allowed_for_kind(kind, group)

    def test_accepts_string_codes(self):
        assert is_group_allowed_for_kind("SER", "C")


class TestClientAndCreditNoteRules:
    """Tests per i campi obbligatori e le note di credito."""

    def test_required_client_fields(self):
        assert required_client_fields(ClientType.PP) == ()
        assert required_client_fields(ClientType.PM) == ("denomination", "nif")
        assert required_client_fields(ClientType.AO) == ("name", "ref_exo")

    def test_origin_reference(self):
        """Test RRR unica natura senza riferimento obbligatorio."""
        assert not requires_origin_reference(CreditNoteNature.RRR)
        for nature in (CreditNoteNature.COR, CreditNoteNature.RAN, CreditNoteNature.RAM):
            assert requires_origin_reference(nature)

    def test_credit_documents(self):
        assert is_credit_document(DocumentType.FA)
        assert is_credit_document(DocumentType.EA)
        assert not is_credit_document(DocumentType.FV)
