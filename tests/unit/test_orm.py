"""
Unit tests for operation planning: validation, chunking and upsert outcomes.

Planning never touches a connection, so every failure here happens before
a statement could reach the backend.
"""
import pytest
from recordmap import orm
from recordmap.exceptions import KeyArityMismatchError, MissingKeyError
from recordmap.exceptions import ValidationError
from recordmap.metadata import TypeRegistry
from recordmap.strategy import get_strategy

from tests.fixtures.models import Car, Document, Membership, Person


@pytest.fixture
def registry():
    return TypeRegistry()


@pytest.fixture
def pg():
    return get_strategy('postgresql')


@pytest.fixture
def sl():
    return get_strategy('sqlite')


class TestPlanGet:

    def test_binds_keys(self, pg, registry):
        statement = orm.plan_get(pg, registry.get(Membership), (1, 'chess'))
        assert statement.params == {'person_id': 1, 'club': 'chess'}

    def test_keyless_type(self, pg, registry):
        with pytest.raises(MissingKeyError):
            orm.plan_get(pg, registry.get(Document), ('x',))

    @pytest.mark.parametrize('ids', [(), (1,), (1, 'a', 'b')])
    def test_arity_mismatch(self, pg, registry, ids):
        with pytest.raises(KeyArityMismatchError) as exc:
            orm.plan_get(pg, registry.get(Membership), ids)
        assert exc.value.expected == 2
        assert exc.value.actual == len(ids)


class TestPlanBatch:

    def test_empty_batch(self, pg, registry):
        assert orm.plan_batch(pg, registry, orm.INSERT, []) is None

    def test_single_statement(self, pg, registry):
        cars = [Car(id=str(i)) for i in range(5)]
        plan = orm.plan_batch(pg, registry, orm.INSERT, cars)
        assert len(plan.steps) == 1
        assert plan.steps[0].count == 5
        assert not plan.needs_transaction

    def test_chunks_preserve_order(self, pg, registry):
        cars = [Car(id=f'c{i}') for i in range(7)]
        plan = orm.plan_batch(pg, registry, orm.INSERT, cars, batch_size=3)
        assert [s.count for s in plan.steps] == [3, 3, 1]
        assert plan.steps[1].statement.params['id_0'] == 'c3'
        assert plan.steps[2].statement.params == {'id_0': 'c6', 'make_0': None}
        assert plan.needs_transaction

    def test_chunks_respect_parameter_limit(self, pg, registry, mocker):
        mocker.patch.object(type(pg), 'max_parameters', 5)
        cars = [Car(id=str(i)) for i in range(5)]
        plan = orm.plan_batch(pg, registry, orm.INSERT, cars)
        assert all(len(s.statement.params) <= 5 for s in plan.steps)
        assert [s.count for s in plan.steps] == [2, 2, 1]

    def test_invalid_batch_size(self, pg, registry):
        with pytest.raises(ValidationError):
            orm.plan_batch(pg, registry, orm.INSERT, [Car(id='a')], batch_size=0)

    def test_mixed_types_rejected(self, pg, registry):
        with pytest.raises(ValidationError):
            orm.plan_batch(pg, registry, orm.INSERT, [Car(id='a'), Document(id='b')])

    def test_mixed_dict_shapes_rejected(self, pg, registry):
        rows = [{'id': 'a', 'make': 'x'}, {'make': 'y', 'id': 'b'}]
        with pytest.raises(ValidationError):
            orm.plan_batch(pg, registry, orm.INSERT, rows, table='cars')

    def test_dict_rows_need_table(self, pg, registry):
        with pytest.raises(ValidationError):
            orm.plan_batch(pg, registry, orm.INSERT, [{'id': 'a'}])

    @pytest.mark.parametrize('table', ['cars; drop table cars', 'ca rs', '1cars', ''])
    def test_table_name_validated(self, pg, registry, table):
        with pytest.raises(ValidationError):
            orm.plan_batch(pg, registry, orm.INSERT, [Car(id='a')], table=table)

    def test_conflict_defaults_to_keys(self, pg, registry):
        plan = orm.plan_batch(pg, registry, orm.UPSERT, [Membership(1, 'chess')])
        assert 'ON CONFLICT ("person_id", "club")' in plan.steps[0].statement.sql

    def test_conflict_needs_keys_or_columns(self, pg, registry):
        with pytest.raises(MissingKeyError):
            orm.plan_batch(pg, registry, orm.INSERT_IF_MISSING, [Document(id='a')])

    @pytest.mark.parametrize('conflict', ['id; --', ''])
    def test_conflict_columns_validated(self, pg, registry, conflict):
        with pytest.raises(ValidationError):
            orm.plan_batch(pg, registry, orm.UPSERT, [Car(id='a')], table='cars', conflict=conflict)

    def test_postgres_upsert_needs_no_precheck(self, pg, registry):
        plan = orm.plan_batch(pg, registry, orm.UPSERT, [Car(id='a')])
        assert plan.steps[0].precheck is None
        assert not plan.needs_transaction

    def test_sqlite_upsert_prechecks_conflicts(self, sl, registry):
        plan = orm.plan_batch(sl, registry, orm.UPSERT, [Car(id='a'), Car(id='b')])
        assert plan.steps[0].precheck.startswith('SELECT "id" FROM "cars"')
        assert plan.needs_transaction

    def test_sqlite_upsert_generated_key_skips_precheck(self, sl, registry):
        plan = orm.plan_batch(sl, registry, orm.UPSERT, [Person(first_name='a')])
        assert plan.conflict == ()
        assert plan.steps[0].precheck is None


class TestUpsertOutcomes:

    def test_existing_and_repeated_keys(self, sl, registry):
        cars = [Car(id='a'), Car(id='b'), Car(id='a'), Car(id='c')]
        plan = orm.plan_batch(sl, registry, orm.UPSERT, cars)
        outcomes = orm.upsert_outcomes(plan, plan.steps[0], [('c',)])
        assert outcomes == [True, True, False, False]

    def test_composite_keys(self, sl, registry):
        rows = [Membership(1, 'chess'), Membership(1, 'golf')]
        plan = orm.plan_batch(sl, registry, orm.UPSERT, rows)
        assert orm.upsert_outcomes(plan, plan.steps[0], [(1, 'golf')]) == [True, False]


class TestRecordPlans:

    def test_record_operations_reject_dicts(self, registry):
        with pytest.raises(ValidationError):
            orm.record_meta(registry, {'id': 1}, 'update')

    def test_update_by_key_binds_keys_and_writable(self, pg, registry):
        person = Person(first_name='Foo')
        person.id = 9
        statement = orm.plan_update_by_key(pg, registry, person)
        assert statement.params == {
            'first_name': 'Foo', 'last_name': None, 'age': None, 'gender': 'unknown', 'id': 9}

    def test_delete_by_key_binds_keys_only(self, pg, registry):
        statement = orm.plan_delete_by_key(pg, registry, Car(id='a', make='x'))
        assert statement.params == {'id': 'a'}

    def test_update_args_override_record_values(self, pg, registry):
        statement = orm.plan_update(pg, registry, 'cars', Car(id='a'), 'id = %(id)s', {'id': 'b'})
        assert statement.params['id'] == 'b'

    def test_update_binds_readable_fields_for_predicate(self, pg, registry):
        person = Person(first_name='Foo')
        person.id = 7
        statement = orm.plan_update(pg, registry, 'persons', person, 'id = %(id)s')
        assert statement.sql.startswith(
            'UPDATE "persons" SET "first_name" = %(first_name)s, "last_name" = %(last_name)s')
        assert '"id" =' not in statement.sql
        assert statement.params['id'] == 7
        assert statement.params['first_name'] == 'Foo'

    def test_update_with_args(self, pg, registry):
        statement = orm.plan_update(pg, registry, 'cars', {'make': 'VW'}, 'id = %(key)s', {'key': 'a'})
        assert statement.sql == 'UPDATE "cars" SET "make" = %(make)s WHERE id = %(key)s'
        assert statement.params == {'make': 'VW', 'key': 'a'}

    def test_row_returning_columns(self, pg, registry):
        statement = orm.plan_row_returning(pg, registry, 'persons', {'first_name': 'Foo'}, 'id, date_created')
        assert statement.sql.endswith('RETURNING "id", "date_created"')

    def test_row_returning_rejects_bad_column(self, pg, registry):
        with pytest.raises(ValidationError):
            orm.plan_row_returning(pg, registry, 'persons', {'first_name': 'Foo'}, 'id; drop')
