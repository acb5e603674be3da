"""Synchronizes bank logins from the ``banking`` queue"""

from typing import Any, Callable, Dict, Optional

from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.infrastructure.clients.bank import BankClient
from ledger_bank_api.infrastructure.database.models import Job
from ledger_bank_api.services.sync import BankSyncService


class BankSyncWorker:
    name = "BankSyncWorker"
    queue = "banking"

    def __init__(self, session_factory, cache=None, client_factory: Optional[Callable[[str], BankClient]] = None):
        self.session_factory = session_factory
        self.cache = cache
        self.client_factory = client_factory

    async def perform(self, args: Dict[str, Any]) -> Dict[str, int]:
        db = self.session_factory()
        try:
            service = BankSyncService(db, self.cache, self.client_factory)
            return await service.sync_login(args["login_id"])
        finally:
            db.close()

    def on_discard(self, job: Job, error: Exception) -> None:
        reason = error.reason if isinstance(error, DomainException) else "internal_server_error"
        db = self.session_factory()
        try:
            BankSyncService(db, self.cache).mark_error(job.args["login_id"], reason)
        finally:
            db.close()
