"""
Cache di idempotenza per la conferma dei documenti
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Memorizza la risposta serializzata di una conferma per
(tenant, documento, chiave di idempotenza) fino alla scadenza.
Una ripetizione entro la validità restituisce la stessa risposta senza
rieseguire la conferma.

Le voci vivono in una cachetools.TLRUCache: scadenza per voce (la
validità è configurata dal tenant) e dimensione massima con eviction LRU.
La cache vive nel processo: con più repliche, la garanzia di "un solo
numero per documento" resta comunque affidata alla macchina a stati
del documento.
"""

import asyncio
import copy
import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, Optional

from cachetools import TLRUCache

from app.core.config import settings

# Logger per questo modulo
logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    ttl: datetime.timedelta


@dataclass
class _KeyLock:
    """Lock di una chiave con il numero di richieste che lo usano."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _entry_expiry(key: Hashable, entry: CacheEntry, now: datetime.datetime) -> datetime.datetime:
    return now + entry.ttl


class IdempotencyCache:
    """
    Cache con scadenza per voce e check-and-set atomico per chiave.

    Implementa:
    - Lettura delle sole voci valide
    - get_or_compute serializzato per chiave (nessun lock globale)
    - Voci scadute scartate ad ogni inserimento, numero massimo di voci
    """

    def __init__(self, maxsize: Optional[int] = None, clock: Optional[Clock] = None) -> None:
        self._entries = TLRUCache(
            maxsize=maxsize or settings.idempotency_cache_size,
            ttu=_entry_expiry,
            timer=clock or utc_now,
        )
        # Solo chiavi con richieste in corso: rimosse all'ultimo rilascio
        self._locks: dict[Hashable, _KeyLock] = {}

    def __len__(self) -> int:
        # currsize scarta prima le voci scadute
        return int(self._entries.currsize)

    @staticmethod
    def make_key(tenant_id, invoice_id, idempotency_key: str) -> tuple[str, str, str]:
        return (str(tenant_id), str(invoice_id), idempotency_key)

    def get(self, key: Hashable) -> Optional[Any]:
        """Copia del valore memorizzato se ancora valido, altrimenti None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return copy.deepcopy(entry.value)

    def set(self, key: Hashable, value: Any, ttl: datetime.timedelta) -> None:
        self._entries[key] = CacheEntry(value=copy.deepcopy(value), ttl=ttl)

    async def get_or_compute(
        self,
        key: Hashable,
        ttl: datetime.timedelta,
        compute: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, bool]:
        """
        Restituisce il valore memorizzato oppure lo calcola una sola volta.

        Due chiamate concorrenti con la stessa chiave non eseguono mai
        entrambe `compute`. Gli errori non vengono memorizzati.

        Args:
            key: Chiave (tenant, documento, chiave di idempotenza)
            ttl: Validità della voce
            compute: Coroutine che produce il valore

        Returns:
            tuple: (valore, True se è una ripetizione)
        """
        cached = self.get(key)
        if cached is not None:
            return cached, True

        key_lock = self._locks.setdefault(key, _KeyLock())
        key_lock.users += 1
        try:
            async with key_lock.lock:
                cached = self.get(key)
                if cached is not None:
                    return cached, True
                value = await compute()
                self.set(key, value, ttl)
                logger.debug("Risposta memorizzata per %s (validità %s)", key, ttl)
                return copy.deepcopy(value), False
        finally:
            key_lock.users -= 1
            if key_lock.users == 0:
                del self._locks[key]

    def pending_keys(self) -> int:
        """Chiavi con una conferma in corso."""
        return len(self._locks)

