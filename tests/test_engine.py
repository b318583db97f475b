"""End to end tests for QueryBuilderEngine."""

import datetime
import json
import logging
from decimal import Decimal

import pytest
from sqlalchemy import select

from gridquery.config import DatatableConfig
from gridquery.engine import DatatableResult, JSONEncoder, QueryBuilderEngine
from gridquery.exceptions import RequestValidationError
from gridquery.request import DatatableRequest
from tests.helpers import col, grid_params
from tests.models import Customer, Order


def customers(session, columns=('company_name', 'contact_name', 'city'), **kwargs):
    return QueryBuilderEngine(select(Customer.__table__), grid_params(list(columns), **kwargs), bind=session)


def test_first_page_sorted(session):
    engine = customers(session, sort={'sortBy': 'company_name', 'descending': False, 'page': 1, 'rowsPerPage': 2})
    result = engine.make()
    assert result.total == 4
    assert result.filtered == 4
    assert [row['customer_id'] for row in result.data] == ['ALFKI', 'ANATR']
    assert result.draw == 1


def test_second_page(session):
    engine = customers(session, sort={'sortBy': 'company_name', 'descending': False, 'page': 2, 'rowsPerPage': 2})
    result = engine.make()
    assert [row['customer_id'] for row in result.data] == ['ANTON', 'BLAUS']


def test_global_search(session):
    result = customers(session, search='mor').make()
    assert result.total == 4
    assert result.filtered == 1
    assert result.data[0]['contact_name'] == 'Antonio Moreno'


def test_smart_search_requires_every_term(session):
    result = customers(session, search='mexico ana').make()
    assert result.filtered == 1
    assert result.data[0]['customer_id'] == 'ANATR'


def test_search_without_match(session):
    result = customers(session, search='nowhere').make()
    assert result.total == 4
    assert result.filtered == 0
    assert result.data == []


def test_column_search(session):
    result = customers(session, columns=['company_name', col('city', search='mexico')]).make()
    assert result.filtered == 2


def test_empty_table(session):
    session.query(Order).delete()
    session.commit()
    engine = QueryBuilderEngine(select(Order.__table__), grid_params(['order_id'], search='x'), bind=session)
    result = engine.make()
    assert (result.total, result.filtered, result.data) == (0, 0, [])


def test_filter_callback(session):
    engine = customers(session)
    engine.filter(lambda handle: handle.where('country', '=', 'Germany'))
    result = engine.make()
    assert result.filtered == 2
    assert result.total == 4


def test_filter_callback_disables_global_search(session):
    engine = customers(session, search='maria')
    engine.filter(lambda handle: handle.where('country', '=', 'Germany'))
    assert engine.make().filtered == 2

    engine = customers(session, search='maria')
    engine.filter(lambda handle: handle.where('country', '=', 'Germany'), global_search=True)
    assert engine.make().filtered == 1


def test_add_column_template(session):
    engine = customers(session, search='alfreds')
    engine.add_column('link', '<a href="/customers/{customer_id}">{company_name}</a>')
    row = engine.make().data[0]
    assert row['link'] == '<a href="/customers/ALFKI">Alfreds Futterkiste</a>'
    assert list(row)[-1] == 'link'


def test_add_column_callable_with_position(session):
    engine = customers(session, search='alfreds')
    engine.add_column('label', lambda row: row['company_name'].upper(), order=0)
    row = engine.make().data[0]
    assert list(row)[0] == 'label'
    assert row['label'] == 'ALFREDS FUTTERKISTE'


def test_added_column_is_not_searched(session):
    engine = customers(session, columns=['company_name', 'label'], search='zzz')
    engine.add_column('label', 'zzz')
    assert engine.make().filtered == 0


def test_whitelist(session):
    engine = customers(session, search='berlin')
    engine.whitelist(['company_name'])
    assert engine.make().filtered == 0


def test_request_object_accepted(session):
    request = DatatableRequest(grid_params(['company_name'], search='blauer'))
    engine = QueryBuilderEngine(select(Customer.__table__), request, bind=session)
    assert engine.request is request
    assert engine.make().filtered == 1


def test_legacy_request_rejected(session):
    engine = QueryBuilderEngine(select(Customer.__table__), {'sEcho': 3, 'columns': '[]'}, bind=session)
    with pytest.raises(RequestValidationError):
        engine.make()


def test_draw_is_echoed(session):
    result = customers(session, draw=7).make()
    assert result.to_dict()['draw'] == 7


def test_debug_logs_sql(session, caplog):
    engine = QueryBuilderEngine(select(Customer.__table__), grid_params(['company_name'], search='x'),
                                bind=session, config=DatatableConfig(debug=True))
    with caplog.at_level(logging.DEBUG, logger='gridquery'):
        engine.make()
    assert 'filtering: SELECT' in caplog.text


def test_debug_config_leaves_logger_level(session):
    logger = logging.getLogger('gridquery')
    level = logger.level
    QueryBuilderEngine(select(Customer.__table__), grid_params(['company_name']),
                       bind=session, config=DatatableConfig(debug=True)).make()
    assert logger.level == level


# -- Result -----------------------------------------------------------------


def test_result_to_dict():
    result = DatatableResult(total=10, filtered=3, data=[{'id': 1}], draw=2)
    assert result.to_dict() == {'draw': 2, 'recordsTotal': 10, 'recordsFiltered': 3, 'data': [{'id': 1}]}


def test_result_to_json(session):
    engine = QueryBuilderEngine(select(Order.__table__),
                                grid_params(['order_id'], sort={'sortBy': 'order_id', 'page': 1, 'rowsPerPage': 1}),
                                bind=session)
    payload = json.loads(engine.make().to_json())
    assert payload['recordsTotal'] == 4
    assert payload['data'][0]['freight'] == 32.38
    assert payload['data'][0]['order_date'] == '1996-07-04T00:00:00'


def test_json_encoder():
    data = {'price': Decimal('1.50'), 'day': datetime.date(2024, 1, 2), 'raw': b'abc'}
    assert json.loads(json.dumps(data, cls=JSONEncoder)) == {'price': 1.5, 'day': '2024-01-02', 'raw': 'abc'}


def test_with_relations(relations, session):
    engine = QueryBuilderEngine(select(Order.__table__),
                                grid_params(['order_id', col('customer.city', search='berlin')]),
                                bind=session, relations=relations).with_relations('customer')
    result = engine.make()
    assert result.filtered == 2
    assert sorted(row['order_id'] for row in result.data) == [10248, 10251]
