"""Request-ID propagation, metrics exposition and log context."""

from __future__ import annotations

import httpx
import pytest

from docshare.app.main import create_app
from docshare.app.observability.logging import (
    REDACTED,
    _add_request_id,
    _redact_secrets,
    request_id_ctx,
)
from docshare.app.observability.metrics import metrics_text, record_decision
from docshare.app.settings import DocShareSettings

from docshare_factories import SESSION_SECRET


def _client():
    app = create_app(DocShareSettings(session_secret=SESSION_SECRET))
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url='http://test')


@pytest.mark.asyncio
async def test_request_id_is_echoed():
    async with _client() as client:
        resp = await client.get('/health', headers={'X-Request-ID': 'req-12345678'})
    assert resp.status_code == 200
    assert resp.headers['X-Request-ID'] == 'req-12345678'


@pytest.mark.asyncio
async def test_malformed_request_id_is_replaced():
    async with _client() as client:
        resp = await client.get('/health', headers={'X-Request-ID': 'bad id!'})
    assert resp.headers['X-Request-ID'] != 'bad id!'
    assert len(resp.headers['X-Request-ID']) == 36


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_share_decisions():
    record_decision('redeem', 'allowed')
    async with _client() as client:
        resp = await client.get('/metrics')
    assert resp.status_code == 200
    assert 'docshare_share_decisions_total' in resp.text


def test_metrics_text_content_type():
    body, content_type = metrics_text()
    assert b'docshare_http_requests_total' in body
    assert content_type.startswith('text/plain')


def test_request_id_added_to_log_events():
    token = request_id_ctx.set('req-abcdef12')
    try:
        event = _add_request_id(None, 'info', {'event': 'x'})
    finally:
        request_id_ctx.reset(token)
    assert event['request_id'] == 'req-abcdef12'
    assert 'request_id' not in _add_request_id(None, 'info', {'event': 'y'})


def test_secret_fields_are_redacted_from_log_events():
    event = _redact_secrets(
        None,
        'info',
        {
            'event': 'share_link_created',
            'password': 'hunter2',
            'session_token': 'eyJhbGciOi.payload.sig',
            'share_url': 'https://docs.example.com/shared/AbCdEfGh1234567890xyz',
            'document_id': 'doc_1',
        },
    )
    assert event['password'] == REDACTED
    assert event['session_token'] == REDACTED
    assert event['share_url'] == 'https://docs.example.com/shared/AbCdEfGh...'
    assert event['document_id'] == 'doc_1'
