"""Party repository: the kernel contract plus code lookup."""

from __future__ import annotations

from sqlalchemy import exists, select

from erp_kernel.db.errors import translate_db_errors
from erp_kernel.repositories.base import SqlRepository
from erp_modules.parties.models import Party
from erp_modules.parties.orm import PartyModel


class PartyRepository(SqlRepository[PartyModel, Party]):
    model = PartyModel
    entity_name = "Party"

    def find_by_code(self, code: str) -> Party:
        return self._find_one(code, PartyModel.code == code)

    def code_exists(self, code: str) -> bool:
        with translate_db_errors(self.entity_name):
            return self._session.scalar(select(exists().where(PartyModel.code == code)))
