"""Tests for the package logging helpers."""

import logging

import gridquery


def test_get_logger_attaches_handlers_once():
    logger = gridquery.get_logger('gridquery.test_once')
    assert len(logger.handlers) == 1
    assert gridquery.get_logger('gridquery.test_once') is logger
    assert len(logger.handlers) == 1


def test_get_logger_with_handler_and_formatter():
    handler = logging.NullHandler()
    formatter = logging.Formatter('%(levelname)s %(message)s')
    logger = gridquery.get_logger('gridquery.test_custom', handler, formatter, logging.WARNING)
    assert logger.handlers == [handler]
    assert handler.formatter is formatter
    assert logger.level == logging.WARNING


def test_set_formatter_returns_previous_format():
    logger = gridquery.get_logger('gridquery.test_format', formatter=logging.Formatter('%(message)s'))
    assert gridquery.set_formatter(logger, '%(name)s: %(message)s') == '%(message)s'
    assert logger.handlers[0].formatter._fmt == '%(name)s: %(message)s'


def test_deep_merge():
    target = {'datatables': {'smart': True, 'nulls_last': False}, 'other': 1}
    gridquery.deep_merge(target, {'datatables': {'nulls_last': True}, 'extra': 2})
    assert target == {'datatables': {'smart': True, 'nulls_last': True}, 'other': 1, 'extra': 2}


def test_modules_are_imported():
    assert gridquery.engine.QueryBuilderEngine is not None
    assert gridquery.filters.FilterTreeCompiler is not None
