"""Tests for ORDER BY compilation."""

from sqlalchemy import column, select, table
from sqlalchemy.dialects import postgresql

from gridquery.config import DatatableConfig
from gridquery.engine import QueryBuilderEngine
from gridquery.ordering import normalize_direction
from tests.helpers import col, grid_params, sql
from tests.models import Customer, Order, Product

people = table('people', column('age'), column('name'), column('password'))


def people_engine(columns, sort_by, descending=False, **kwargs):
    return QueryBuilderEngine(select(people), grid_params(columns, sort={'sortBy': sort_by,
                                                                         'descending': descending}), **kwargs)


def order_of(engine, dialect=None):
    rendered = sql(engine.handle.statement, dialect)
    return rendered.split(' ORDER BY ', 1)[1] if ' ORDER BY ' in rendered else ''


def test_order_descending():
    engine = people_engine(['age'], 'age', descending=True)
    engine.ordering()
    assert order_of(engine) == 'age desc'


def test_order_ascending():
    engine = people_engine(['age'], 'age')
    engine.ordering()
    assert order_of(engine) == 'age asc'


def test_no_sort_column():
    engine = QueryBuilderEngine(select(people), grid_params(['age']))
    engine.ordering()
    assert order_of(engine) == ''


def test_sort_column_is_quoted():
    engine = people_engine(['age'], 'age; drop table people')
    engine.ordering()
    assert order_of(engine) == '"age; drop table people" asc'


def test_non_orderable_column():
    engine = people_engine([col('age', orderable=False)], 'age')
    engine.ordering()
    assert order_of(engine) == ''


def test_nulls_last_from_config():
    engine = people_engine(['age'], 'age', descending=True, config=DatatableConfig(nulls_last=True))
    engine.ordering()
    assert order_of(engine) == 'age desc NULLS LAST'


def test_nulls_last_custom_template():
    config = DatatableConfig(nulls_last=True, nulls_last_sql='%s %s NULLS FIRST')
    engine = people_engine(['age'], 'age', config=config)
    engine.ordering()
    assert order_of(engine) == 'age asc NULLS FIRST'


def test_order_by_nulls_last():
    engine = people_engine(['age'], 'age').order_by_nulls_last()
    engine.ordering()
    assert order_of(engine) == 'age asc NULLS LAST'


def test_json_order_with_fallback():
    dialect = postgresql.dialect()
    engine = QueryBuilderEngine(select(Customer.__table__),
                                grid_params([col('details', json='address.city', fallback='city')],
                                            sort={'sortBy': 'details', 'descending': True}),
                                dialect=dialect)
    engine.ordering()
    assert order_of(engine, dialect) == "details#>>'{address,city}' desc, city desc"


def test_blacklisted_column_is_not_ordered():
    engine = people_engine(['password'], 'password')
    engine.ordering()
    assert order_of(engine) == ''


def test_order_override_beats_blacklist():
    engine = people_engine(['password'], 'password', descending=True)
    engine.order_column('password', 'length(password) $1')
    engine.ordering()
    assert order_of(engine) == 'length(password) desc'


def test_order_override_with_bindings():
    engine = people_engine(['name'], 'name')
    engine.order_column('name', 'case when name = ? then 0 else 1 end, name $1', ['admin'])
    engine.ordering()
    assert order_of(engine) == "case when name = 'admin' then 0 else 1 end, name asc"


def test_order_override_callback():
    engine = people_engine(['name'], 'name', descending=True)
    engine.order_column('name', lambda handle, direction: handle.order_by_raw(f'age {direction}, name'))
    engine.ordering()
    assert order_of(engine) == 'age desc, name'


def test_order_callback_replaces_everything():
    engine = people_engine(['age'], 'age')
    engine.order(lambda handle: handle.order_by_raw('name asc'))
    engine.ordering()
    assert order_of(engine) == 'name asc'


def test_relation_order_joins(relations):
    engine = QueryBuilderEngine(select(Order.__table__),
                                grid_params(['order_id', 'customer.company_name'],
                                            sort={'sortBy': 'customer.company_name', 'descending': True}),
                                relations=relations, eager_loads=['customer'])
    engine.ordering()
    assert 'LEFT OUTER JOIN customers' in sql(engine.handle.statement)
    assert order_of(engine) == 'customers.company_name desc'


def test_relation_order_end_to_end(relations, session):
    engine = QueryBuilderEngine(select(Order.__table__),
                                grid_params(['order_id', 'customer.company_name'],
                                            sort={'sortBy': 'customer.company_name', 'descending': True}),
                                bind=session, relations=relations, eager_loads=['customer'])
    result = engine.make()
    assert [row['order_id'] for row in result.data][:2] == [10250, 10249]


def test_polymorphic_relation_is_not_ordered(relations):
    engine = QueryBuilderEngine(select(Product.__table__),
                                grid_params(['product_name', 'comments.body'], sort={'sortBy': 'comments.body'}),
                                relations=relations, eager_loads=['comments'])
    engine.ordering()
    assert order_of(engine) == ''
    assert 'JOIN' not in sql(engine.handle.statement)


def test_normalize_direction():
    assert normalize_direction('asc') == 'asc'
    assert normalize_direction('desc') == 'desc'
    assert normalize_direction('ASC') == 'desc'
    assert normalize_direction(None) == 'desc'
