"""
Eccezioni Custom per l'applicazione.
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Definisce le eccezioni del dominio fiscale per una gestione
centralizzata degli errori. Ogni eccezione porta con sé lo status HTTP
e un codice errore stabile che il gestore in main.py restituisce al client.

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole fiscali (gestiti dal nostro handler → 422)
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "MoneyParseError",
    "ConflictError",
    "FiscalIntegrityError",
    "TenantContextError",
    "AuthorizationError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il client
        detail: Messaggio di errore leggibile
        extra: Dizionario con dati aggiuntivi (es. campo violato)
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al client (default: None)
        """
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        self.status_code = self.__class__.status_code
        super().__init__(detail)


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Nota: una risorsa di un altro tenant è, per definizione, non trovata.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole fiscali.

    Eredita da ValueError per essere catturata dai validatori Pydantic.

    Esempi di utilizzo:
        - "Gruppo fiscale L non ammesso per articoli di tipo BIE"
        - "Nota di credito FA senza natura"
        - "Cliente AO senza riferimento di esonero"
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, extra)


# Alias per compatibilità
ValidationError = BusinessValidationError


class MoneyParseError(BusinessValidationError):
    """Stringa decimale non valida per importi, quantità o tassi."""

    error_code: str = "INVALID_DECIMAL"

    def __init__(
        self,
        detail: str = "Valore decimale non valido",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di stato o di concorrenza.

    Utilizzata quando un'operazione non può essere completata a causa
    dello stato corrente della risorsa (es. contatore esaurito, numero
    duplicato dopo i tentativi previsti, scrittura sul registro di audit).
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class FiscalIntegrityError(AppException):
    """
    Totali certificati dal dispositivo fiscale diversi da quelli registrati.

    Il timbro fiscale viene rifiutato e nulla viene salvato.
    """

    status_code: int = 422
    error_code: str = "FISCAL_TOTALS_MISMATCH"

    def __init__(
        self,
        detail: str = "Totali fiscali non coerenti",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class TenantContextError(AppException):
    """
    Operazione su dati di un tenant senza contesto tenant valido.

    Sollevata anche quando un oggetto di un altro tenant viene
    scritto nella sessione corrente.
    """

    status_code: int = 400
    error_code: str = "TENANT_CONTEXT_MISSING"

    def __init__(
        self,
        detail: str = "Contesto tenant mancante",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class AuthorizationError(AppException):
    """
    Eccezione sollevata per accesso non autorizzato.

    Esempi di utilizzo:
        - "L'utente non appartiene al tenant richiesto"
    """

    status_code: int = 403
    error_code: str = "FORBIDDEN"

    def __init__(
        self,
        detail: str = "Accesso non autorizzato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)
