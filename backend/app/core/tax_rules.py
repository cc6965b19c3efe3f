"""
Tabelle normative DGI (fatturazione normalizzata)
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Enumerazioni chiuse e tabelle di compatibilità usate dalla validazione
delle fatture. Le tabelle sono dati: aggiungere un gruppo fiscale o una
natura di nota di credito significa aggiungere una voce qui. Ogni tabella
viene verificata all'import contro la propria enumerazione, quindi una
modifica parziale blocca l'avvio dell'applicazione.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DocumentType(str, Enum):
    """Tipi di documento fiscale."""

    FV = "FV"  # Fattura di vendita
    FT = "FT"  # Fattura di acconto
    FA = "FA"  # Nota di credito (avoir)
    EV = "EV"  # Vendita export
    ET = "ET"  # Acconto export
    EA = "EA"  # Nota di credito export


class TaxGroup(str, Enum):
    """Gruppi fiscali DGI (O e P riservati)."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    G = "G"
    H = "H"
    I = "I"  # noqa: E741
    J = "J"
    K = "K"
    L = "L"
    M = "M"
    N = "N"
    O = "O"  # noqa: E741
    P = "P"


class ItemKind(str, Enum):
    """Natura dell'articolo fatturato."""

    BIE = "BIE"  # Bene
    SER = "SER"  # Servizio
    TAX = "TAX"  # Tassa / prelievo


class ClientType(str, Enum):
    """Tipologia di cliente."""

    PP = "PP"  # Persona fisica
    PM = "PM"  # Persona giuridica
    PC = "PC"  # Professionista / commerciante
    PL = "PL"  # Libero professionista
    AO = "AO"  # Organismo esonerato


class CreditNoteNature(str, Enum):
    """Natura della nota di credito."""

    COR = "COR"  # Correzione
    RAN = "RAN"  # Annullamento
    RAM = "RAM"  # Rettifica importo
    RRR = "RRR"  # Sconto / ristorno


@dataclass(frozen=True)
class TaxGroupRule:
    """Regola fiscale associata ad un gruppo."""

    label: str
    vat_rate: Optional[int]
    notes: str = ""


# ------------------------------------------------------------
# Tabelle
# ------------------------------------------------------------
TAX_GROUP_RULES: dict[TaxGroup, TaxGroupRule] = {
    TaxGroup.A: TaxGroupRule("Exonéré", 0, "Opération non soumise à la TVA par un assujetti"),
    TaxGroup.B: TaxGroupRule("Taxable 16%", 16, "TVA au taux standard"),
    TaxGroup.C: TaxGroupRule("Taxable 8%", 8, "TVA au taux réduit"),
    TaxGroup.D: TaxGroupRule("Régimes dérogatoires TVA", None, "TVA prise en charge par l'État"),
    TaxGroup.E: TaxGroupRule("Exportation", 0, "TVA à 0% (export et assimilées)"),
    TaxGroup.F: TaxGroupRule("Marché public 16%", 16, "TVA facturée à 16%, payée par crédit d'impôt"),
    TaxGroup.G: TaxGroupRule("Marché public 8%", 8, "TVA facturée à 8%, payée par crédit d'impôt"),
    TaxGroup.H: TaxGroupRule("Consignation d'emballage", None, "Hors champ TVA"),
    TaxGroup.I: TaxGroupRule("Garantie & caution", None, "Hors champ TVA"),
    TaxGroup.J: TaxGroupRule("Débours", None, "Remboursements au franc le franc, hors champ"),
    TaxGroup.K: TaxGroupRule("Non-assujettis", None, "Opérations par non-redevables TVA"),
    TaxGroup.L: TaxGroupRule("Prélèvements sur ventes", None, "Taxes parafiscales; n'entrent pas dans base TVA"),
    TaxGroup.M: TaxGroupRule("Ventes réglementées (HT)", None, "TVA spécifique facturée séparément (voir N)"),
    TaxGroup.N: TaxGroupRule("TVA spécifique", None, "Montant TVA spécifique lié à M"),
    TaxGroup.O: TaxGroupRule("(réservé)", None),
    TaxGroup.P: TaxGroupRule("(réservé)", None),
}

_GOODS_AND_SERVICES = frozenset(
    {
        TaxGroup.A, TaxGroup.B, TaxGroup.C, TaxGroup.D, TaxGroup.E, TaxGroup.F,
        TaxGroup.G, TaxGroup.H, TaxGroup.I, TaxGroup.J, TaxGroup.K, TaxGroup.M,
    }
)

ALLOWED_GROUPS_BY_KIND: dict[ItemKind, frozenset[TaxGroup]] = {
    ItemKind.BIE: _GOODS_AND_SERVICES,
    ItemKind.SER: _GOODS_AND_SERVICES,
    ItemKind.TAX: frozenset({TaxGroup.L, TaxGroup.N}),
}

CLIENT_REQUIRED_FIELDS: dict[ClientType, tuple[str, ...]] = {
    ClientType.PP: (),
    ClientType.PM: ("denomination", "nif"),
    ClientType.PC: ("name", "nif"),
    ClientType.PL: ("name", "nif"),
    ClientType.AO: ("name", "ref_exo"),
}

# RRR può non essere legata ad una fattura specifica
ORIGIN_REQUIRED_BY_NATURE: dict[CreditNoteNature, bool] = {
    CreditNoteNature.COR: True,
    CreditNoteNature.RAN: True,
    CreditNoteNature.RAM: True,
    CreditNoteNature.RRR: False,
}

CREDIT_DOCUMENT_TYPES = frozenset({DocumentType.FA, DocumentType.EA})

# Gruppi che richiedono una presentazione separata in fattura
SPECIFIC_PRESENTATION_GROUPS = frozenset({TaxGroup.M, TaxGroup.N})


# ------------------------------------------------------------
# Interrogazioni
# ------------------------------------------------------------
def is_group_allowed_for_kind(kind: ItemKind, group: TaxGroup) -> bool:
    return TaxGroup(group) in ALLOWED_GROUPS_BY_KIND[ItemKind(kind)]


def rate_for_group(group: TaxGroup) -> Optional[int]:
    """Aliquota IVA in percentuale intera, None se il gruppo è fuori campo IVA."""
    return TAX_GROUP_RULES[TaxGroup(group)].vat_rate


def requires_origin_reference(nature: CreditNoteNature) -> bool:
    return ORIGIN_REQUIRED_BY_NATURE[CreditNoteNature(nature)]


def required_client_fields(client_type: ClientType) -> tuple[str, ...]:
    return CLIENT_REQUIRED_FIELDS[ClientType(client_type)]


def is_credit_document(document_type: DocumentType) -> bool:
    return DocumentType(document_type) in CREDIT_DOCUMENT_TYPES


def requires_specific_presentation(group: TaxGroup) -> bool:
    return TaxGroup(group) in SPECIFIC_PRESENTATION_GROUPS


def _check_exhaustive() -> None:
    """Ogni tabella deve coprire tutti i membri della propria enumerazione."""
    tables = (
        ("TAX_GROUP_RULES", TAX_GROUP_RULES, TaxGroup),
        ("ALLOWED_GROUPS_BY_KIND", ALLOWED_GROUPS_BY_KIND, ItemKind),
        ("CLIENT_REQUIRED_FIELDS", CLIENT_REQUIRED_FIELDS, ClientType),
        ("ORIGIN_REQUIRED_BY_NATURE", ORIGIN_REQUIRED_BY_NATURE, CreditNoteNature),
    )
    for name, table, enum_cls in tables:
        missing = set(enum_cls) - set(table)
        if missing:
            codes = ", ".join(sorted(m.value for m in missing))
            raise RuntimeError(f"Tabella {name} incompleta: mancano {codes}")


_check_exhaustive()
