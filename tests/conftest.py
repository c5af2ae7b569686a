# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

The app runs on in-memory SQLite with the testing config. Tests that touch
the database use `db_session`, which empties every table afterwards. Tests
that swap services use `app.services.override(...)`; overrides are cleared
after each test.
"""
import os

import pytest

from app import create_app
from extensions import db
from crm_database import Contact, FacebookConfig, Pipeline, PipelineStage


def create_test_contact(**kwargs):
    """
    Helper to build a contact with default values.
    Used across multiple test files.
    """
    defaults = {
        'owner_id': 'owner-1',
        'email': 'jo@example.com',
        'phone': '555-1212',
        'first_name': 'Jo',
        'last_name': 'Smith',
        'full_name': 'Jo Smith',
        'custom_fields': {},
        'source': 'webhook',
    }
    defaults.update(kwargs)
    return Contact(**defaults)


def create_test_pipeline(session, owner_id='owner-1', is_default=True, stages=None, **kwargs):
    """
    Helper to persist a pipeline with stages.

    `stages` is a list of dicts with name/order_index/capi_event_name.
    """
    pipeline = Pipeline(owner_id=owner_id, name=kwargs.pop('name', 'Sales'),
                        is_default=is_default, **kwargs)
    session.add(pipeline)
    session.flush()
    for position, stage in enumerate(stages if stages is not None else [
        {'name': 'New Lead', 'order_index': 0, 'capi_event_name': 'Lead'},
        {'name': 'Qualified', 'order_index': 1},
    ]):
        session.add(PipelineStage(
            pipeline_id=pipeline.id,
            name=stage['name'],
            order_index=stage.get('order_index', position),
            capi_event_name=stage.get('capi_event_name'),
            requirements={'criteria': stage.get('criteria', [])}
        ))
    session.commit()
    return pipeline


def create_test_facebook_config(session, **kwargs):
    defaults = {
        'owner_id': 'owner-1',
        'page_id': 'page-1',
        'page_name': 'Test Page',
        'page_access_token': 'page-token',
        'dataset_id': 'dataset-1',
    }
    defaults.update(kwargs)
    config = FacebookConfig(**defaults)
    session.add(config)
    session.commit()
    return config


@pytest.fixture(scope='session')
def app():
    """
    A Flask application on the testing config for the whole test session.
    Tables are created once and dropped at the end.
    """
    os.environ['FLASK_ENV'] = 'testing'
    app = create_app(config_name='testing')

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """
    The application session. Every table is emptied after the test so each
    test starts from a clean database.
    """
    yield db.session

    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()


@pytest.fixture(autouse=True)
def clear_service_overrides(app):
    """Drop any service overrides a test installed."""
    yield
    app.services.clear_overrides()
