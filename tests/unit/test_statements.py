"""
Unit tests for statement synthesis.

Generated SQL always uses pyformat placeholders; conversion for SQLite
happens in the cursor, so the expected text is the same for both
dialects apart from the upsert outcome clause.
"""
import pytest
from recordmap import statements
from recordmap.cache import Cache
from recordmap.exceptions import MissingKeyError, ValidationError
from recordmap.metadata import describe
from recordmap.strategy import get_strategy

from tests.fixtures.models import Car, Document, Membership, Person


@pytest.fixture
def pg():
    return get_strategy('postgresql')


@pytest.fixture
def sl():
    return get_strategy('sqlite')


class TestSelect:

    def test_select_by_key(self, pg):
        sql = statements.select_by_key(pg, describe(Car), 'cars')
        assert sql == 'SELECT * FROM "cars" WHERE "id" = %(id)s'

    def test_select_by_composite_key(self, pg):
        sql = statements.select_by_key(pg, describe(Membership), 'memberships')
        assert sql == ('SELECT * FROM "memberships" '
                       'WHERE "person_id" = %(person_id)s AND "club" = %(club)s')

    def test_select_requires_key(self, pg):
        with pytest.raises(MissingKeyError):
            statements.select_by_key(pg, describe(Document), 'document')


class TestInsert:

    def test_single_row_skips_generated(self, pg):
        sql = statements.insert(pg, describe(Person), 'persons', 1)
        assert sql == ('INSERT INTO "persons" ("first_name", "last_name", "age", "gender") '
                       'VALUES (%(first_name_0)s, %(last_name_0)s, %(age_0)s, %(gender_0)s)')

    def test_multi_row_suffixes(self, sl):
        sql = statements.insert(sl, describe(Car), 'cars', 3)
        assert sql == ('INSERT INTO "cars" ("id", "make") VALUES '
                       '(%(id_0)s, %(make_0)s), (%(id_1)s, %(make_1)s), (%(id_2)s, %(make_2)s)')

    def test_zero_rows_rejected(self, pg):
        with pytest.raises(ValidationError):
            statements.insert(pg, describe(Car), 'cars', 0)

    def test_insert_returning(self, pg):
        sql = statements.insert_returning(pg, describe(Person), 'persons', ('id', 'date_created'))
        assert sql == ('INSERT INTO "persons" ("first_name", "last_name", "age", "gender") '
                       'VALUES (%(first_name)s, %(last_name)s, %(age)s, %(gender)s) '
                       'RETURNING "id", "date_created"')

    def test_insert_if_missing(self, pg):
        sql = statements.insert_if_missing(pg, describe(Car), 'cars', 1, ('id',))
        assert sql.endswith('ON CONFLICT ("id") DO NOTHING')

    def test_conflict_columns_required(self, pg):
        with pytest.raises(ValidationError):
            statements.insert_if_missing(pg, describe(Car), 'cars', 1, ())


class TestUpsert:

    def test_postgres_reports_outcome(self, pg):
        sql = statements.upsert(pg, describe(Car), 'cars', 1, ('id',))
        assert sql == ('INSERT INTO "cars" ("id", "make") VALUES (%(id_0)s, %(make_0)s) '
                       'ON CONFLICT ("id") DO UPDATE SET "make" = excluded."make" '
                       'RETURNING (xmax = 0) AS inserted')

    def test_sqlite_has_no_outcome_clause(self, sl):
        sql = statements.upsert(sl, describe(Car), 'cars', 2, ('id',))
        assert 'RETURNING' not in sql
        assert sql.endswith('DO UPDATE SET "make" = excluded."make"')

    def test_only_key_columns_assign_themselves(self, pg):
        sql = statements.upsert(pg, describe(Membership), 'memberships', 1, ('person_id', 'club', 'role'))
        assert 'DO UPDATE SET "person_id" = excluded."person_id", "club" = excluded."club", ' \
               '"role" = excluded."role"' in sql

    def test_existing_keys_single_column(self, sl):
        sql = statements.existing_keys(sl, describe(Car), 'cars', 2, ('id',))
        assert sql == 'SELECT "id" FROM "cars" WHERE "id" IN (%(id_0)s, %(id_1)s)'

    def test_existing_keys_composite(self, sl):
        sql = statements.existing_keys(sl, describe(Membership), 'memberships', 2, ('person_id', 'club'))
        assert sql == ('SELECT "person_id", "club" FROM "memberships" WHERE ("person_id", "club") '
                       'IN (VALUES (%(person_id_0)s, %(club_0)s), (%(person_id_1)s, %(club_1)s))')

    def test_existing_keys_unknown_column(self, sl):
        with pytest.raises(ValidationError):
            statements.existing_keys(sl, describe(Car), 'cars', 1, ('vin',))


class TestUpdateDelete:

    def test_update_by_key(self, pg):
        sql = statements.update_by_key(pg, describe(Car), 'cars')
        assert sql == 'UPDATE "cars" SET "id" = %(id)s, "make" = %(make)s WHERE "id" = %(id)s'

    def test_update_by_generated_key(self, pg):
        sql = statements.update_by_key(pg, describe(Person), 'persons')
        assert sql == ('UPDATE "persons" SET "first_name" = %(first_name)s, "last_name" = %(last_name)s, '
                       '"age" = %(age)s, "gender" = %(gender)s WHERE "id" = %(id)s')

    def test_update_with_where(self, pg):
        sql = statements.update(pg, describe(Car), 'cars', 'make = %(old)s')
        assert sql.endswith('WHERE make = %(old)s')

    def test_delete_by_key(self, pg):
        sql = statements.delete_by_key(pg, describe(Membership), 'memberships')
        assert sql == 'DELETE FROM "memberships" WHERE "person_id" = %(person_id)s AND "club" = %(club)s'

    @pytest.mark.parametrize('builder', [statements.update_by_key, statements.delete_by_key])
    def test_requires_key(self, pg, builder):
        with pytest.raises(MissingKeyError):
            builder(pg, describe(Document), 'document')


class TestStatementCache:

    def test_builders_are_memoized(self, pg):
        meta = describe(Car)
        first = statements.insert(pg, meta, 'cars', 5)
        assert statements.insert(pg, meta, 'cars', 5) is first
        assert len(Cache.get_instance().get_cache('insert')) == 1

    def test_clearing_does_not_change_output(self, pg):
        meta = describe(Car)
        before = statements.upsert(pg, meta, 'cars', 2, ('id',))
        Cache.get_instance().clear_all()
        assert statements.upsert(pg, meta, 'cars', 2, ('id',)) == before

    def test_dialects_cached_separately(self, pg, sl):
        meta = describe(Car)
        assert statements.upsert(pg, meta, 'cars', 1, ('id',)) != statements.upsert(sl, meta, 'cars', 1, ('id',))
