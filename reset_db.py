"""
Reset del database del registro fiscale (solo sviluppo).

Elimina e ricrea tutte le tabelle, compresi i trigger append-only del
registro di audit. Rifiuta di operare in produzione: numeri fiscali e
audit non si cancellano.

Uso:
    python reset_db.py --yes
"""

import argparse
import asyncio
import os
import sys

# Aggiungi backend/ alla PYTHONPATH per importare app.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from app.core.config import settings
from app.core.database import engine
from app.models import Base


async def reset() -> None:
    print(f"Connessione a {engine.url.render_as_string(hide_password=True)}, eliminazione tabelle...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        print("Tabelle eliminate. Creazione registro, contatori e trigger di audit...")
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("Registro fiscale resettato con successo!")


def main() -> int:
    parser = argparse.ArgumentParser(description="Reset dello schema del registro fiscale")
    parser.add_argument("--yes", action="store_true", help="Conferma la cancellazione di tutti i dati")
    args = parser.parse_args()

    if settings.is_production:
        print("Reset non consentito con APP_ENV=production", file=sys.stderr)
        return 1
    if not args.yes:
        print("Operazione distruttiva: rieseguire con --yes", file=sys.stderr)
        return 2

    asyncio.run(reset())
    return 0


if __name__ == "__main__":
    sys.exit(main())
