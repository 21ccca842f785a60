"""
Money column tests (``procure_kernel.db.types.MoneyDecimal``).

Verifies:
- Decimals come back from the database digit for digit
- SQLite stores the exact decimal text, never a float
- PostgreSQL binds a Decimal at scale 9
- Floats and values needing more than 9 decimal places are refused
"""

from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import StatementError

from procure_kernel.db.types import MoneyDecimal
from procure_kernel.models.budget import BudgetModel

ACTOR = "finance-admin"


def _budget(code: str, allocated) -> BudgetModel:
    return BudgetModel(code=code, name=code, currency="USD", allocated=allocated, created_by=ACTOR)


class TestRoundTrip:

    @pytest.mark.parametrize("amount", [
        Decimal("123456789012.123456789"),
        Decimal("0.000000001"),
        Decimal("99999999999999999999.999999999"),
        Decimal("0"),
    ])
    def test_value_survives_reload(self, session, amount):
        budget = _budget("RT", amount)
        session.add(budget)
        session.commit()
        budget_id = budget.id
        session.expire_all()

        reloaded = session.get(BudgetModel, budget_id)
        assert isinstance(reloaded.allocated, Decimal)
        assert reloaded.allocated == amount

    def test_sqlite_stores_exact_text(self, session, engine):
        if engine.dialect.name != "sqlite":
            pytest.skip("storage class check is SQLite specific")
        session.add(_budget("TXT", Decimal("123456789012.123456789")))
        session.commit()

        stored, storage_class = session.execute(
            text("SELECT allocated, typeof(allocated) FROM budgets WHERE code = 'TXT'")
        ).one()
        assert storage_class == "text"
        assert stored == "123456789012.123456789"


class TestBindRules:

    def test_float_refused(self, session):
        session.add(_budget("FLT", 1.5))
        with pytest.raises(StatementError):
            session.flush()
        session.rollback()

    def test_extra_places_refused(self, session):
        session.add(_budget("DP", Decimal("1.0000000001")))
        with pytest.raises(StatementError):
            session.flush()
        session.rollback()

    def test_sqlite_binds_fixed_point_text(self):
        money = MoneyDecimal()
        bound = money.process_bind_param(Decimal("1E+3"), sqlite.dialect())
        assert bound == "1000.000000000"

    def test_postgres_binds_decimal(self):
        money = MoneyDecimal()
        bound = money.process_bind_param(Decimal("12.5"), postgresql.dialect())
        assert isinstance(bound, Decimal)
        assert bound == Decimal("12.500000000")

    def test_int_accepted(self):
        assert MoneyDecimal().process_bind_param(7, sqlite.dialect()) == "7.000000000"

    def test_result_parsed_to_decimal(self):
        value = MoneyDecimal().process_result_value("0.100000000", sqlite.dialect())
        assert value == Decimal("0.1")
        assert isinstance(value, Decimal)
