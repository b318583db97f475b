import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.orm import Session

from gridquery.relations import RelationRegistry
from tests.models import (Base, MODELS, Category, Comment, Customer, Employee, Order, OrderDetail,
                          Product, Tag, product_tags)


def populate_sample_data(session: Session) -> None:
    """Small Northwind data set: 4 customers, 4 orders, 5 products, 2 tags."""
    session.add_all([
        Category(category_id=1, category_name="Beverages",
                 description="Soft drinks, coffees, teas, beers, and ales"),
        Category(category_id=2, category_name="Condiments",
                 description="Sweet and savory sauces, relishes, spreads, and seasonings"),
    ])
    session.add_all([
        Customer(customer_id="ALFKI", company_name="Alfreds Futterkiste", contact_name="Maria Anders",
                 contact_title="Sales Representative", city="Berlin", country="Germany",
                 details={"address": {"city": "Berlin"}}),
        Customer(customer_id="ANATR", company_name="Ana Trujillo Emparedados y helados",
                 contact_name="Ana Trujillo", contact_title="Owner", city="Mexico City", country="Mexico",
                 details={"address": {"city": "Mexico City"}}),
        Customer(customer_id="ANTON", company_name="Antonio Moreno Taqueria", contact_name="Antonio Moreno",
                 contact_title="Owner", city="Mexico City", country="Mexico"),
        Customer(customer_id="BLAUS", company_name="Blauer See Delikatessen", contact_name="Hanna Moos",
                 contact_title=None, city="Mannheim", country="Germany"),
    ])
    session.add_all([
        Employee(employee_id=1, last_name="Davolio", first_name="Nancy", title="Sales Representative"),
        Employee(employee_id=2, last_name="Fuller", first_name="Andrew", title="Vice President, Sales"),
        Employee(employee_id=3, last_name="Leverling", first_name="Janet", title="Sales Representative"),
    ])
    session.add_all([
        Product(product_id=1, product_name="Chai", category_id=1, unit_price=Decimal("18.00")),
        Product(product_id=2, product_name="Chang", category_id=1, unit_price=Decimal("19.00")),
        Product(product_id=3, product_name="Aniseed Syrup", category_id=2, unit_price=Decimal("10.00")),
        Product(product_id=4, product_name="Chef Anton's Cajun Seasoning", category_id=2,
                unit_price=Decimal("22.00")),
        Product(product_id=5, product_name="Grandma's Boysenberry Spread", category_id=2,
                unit_price=Decimal("25.00")),
    ])
    session.add_all([Tag(tag_id=1, name="organic"), Tag(tag_id=2, name="sweet")])
    session.flush()
    session.execute(insert(product_tags), [
        {"product_id": 1, "tag_id": 1},
        {"product_id": 5, "tag_id": 1},
        {"product_id": 5, "tag_id": 2},
        {"product_id": 3, "tag_id": 2},
    ])
    session.add_all([
        Order(order_id=10248, customer_id="ALFKI", employee_id=1, order_date=datetime.datetime(1996, 7, 4),
              freight=Decimal("32.38"), ship_city="Berlin", ship_country="Germany"),
        Order(order_id=10249, customer_id="ANATR", employee_id=3, order_date=datetime.datetime(1996, 7, 5),
              freight=Decimal("11.61"), ship_city="Mexico City", ship_country="Mexico"),
        Order(order_id=10250, customer_id="ANTON", employee_id=2, order_date=datetime.datetime(1996, 7, 8),
              freight=Decimal("65.83"), ship_city="Mexico City", ship_country="Mexico"),
        Order(order_id=10251, customer_id="ALFKI", employee_id=1, order_date=datetime.datetime(1996, 7, 9),
              freight=Decimal("41.34"), ship_city="Berlin", ship_country="Germany"),
    ])
    session.add_all([
        OrderDetail(order_id=10248, product_id=1, unit_price=Decimal("14.00"), quantity=12),
        OrderDetail(order_id=10248, product_id=3, unit_price=Decimal("9.80"), quantity=10),
        OrderDetail(order_id=10249, product_id=2, unit_price=Decimal("15.20"), quantity=5),
        OrderDetail(order_id=10250, product_id=5, unit_price=Decimal("16.80"), quantity=20),
    ])
    session.add_all([
        Comment(comment_id=1, commentable_type="product", commentable_id=1, body="Great tea"),
        Comment(comment_id=2, commentable_type="product", commentable_id=5, body="Too sweet"),
    ])
    session.commit()


@pytest.fixture
def db_engine():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as session:
        populate_sample_data(session)
        yield session


@pytest.fixture
def relations():
    return RelationRegistry.from_models(MODELS)
