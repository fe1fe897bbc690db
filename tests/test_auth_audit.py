"""Tests for login and the admin audit trail."""

from datetime import datetime, timedelta, timezone

import pytest

from emr_backend.database.models import User, UserRole
from emr_backend.services.auth_service import SESSION_COOKIE, auth_service
from emr_backend.services.audit_service import AuditAction, AuditService, audit_service


@pytest.fixture
def nurse_headers(client, db):
    db.add(User(
        username='nurse',
        email='nurse@emr.local',
        password_hash=auth_service.hash_password('nurse-pass'),
        full_name='Night Nurse',
        role=UserRole.NURSE,
    ))
    db.commit()
    response = client.post('/api/auth/login', json={'username': 'nurse', 'password': 'nurse-pass'})
    return {'Authorization': f"Bearer {response.json()['access_token']}"}


class TestLogin:
    """POST /api/auth/login"""

    def test_login_returns_token_and_cookie(self, client):
        response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'admin123'})

        assert response.status_code == 200
        body = response.json()
        assert body['token_type'] == 'bearer'
        assert body['user']['role'] == 'admin'
        assert response.cookies.get(SESSION_COOKIE) == body['access_token']
        assert auth_service.decode_token(body['access_token'])['sub'] == 'admin'

    def test_wrong_password(self, client):
        response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'nope'})

        assert response.status_code == 401
        assert response.json() == {'success': False, 'error': 'Invalid username or password'}

    def test_login_is_audited(self, client, admin_token):
        events = audit_service.get_log(action=AuditAction.LOGIN)

        assert len(events) == 1
        assert events[0].user_name == 'System Administrator'
        assert events[0].resource == 'auth'

    def test_me(self, client, auth_headers):
        response = client.get('/api/auth/me', headers=auth_headers)

        assert response.json()['username'] == 'admin'

    def test_bad_token(self, client):
        response = client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-jwt'})

        assert response.status_code == 401


class TestAuditService:
    """In-memory event store filtering."""

    def test_filters_and_ordering(self):
        service = AuditService()
        service.log_event('1', 'A', 'admin', AuditAction.LOGIN, 'auth')
        service.log_event('2', 'B', 'nurse', AuditAction.VIEW_PATIENT, 'patient', resource_id='p1')
        service.log_ai_interaction('2', 'B', 'nurse', 'diagnostic', patient_id='p1')

        assert [e.action for e in service.get_log()] == [
            AuditAction.USE_DIAGNOSTIC_ASSIST, AuditAction.VIEW_PATIENT, AuditAction.LOGIN
        ]
        assert len(service.get_log(user_id=2)) == 2
        assert len(service.get_log(resource='patient')) == 1
        assert len(service.get_log(limit=1)) == 1

    def test_time_window(self):
        service = AuditService()
        service.log_event('1', 'A', 'admin', AuditAction.LOGIN, 'auth')
        now = datetime.now(timezone.utc)

        assert service.get_log(start=now - timedelta(minutes=1)) != []
        assert service.get_log(end=now - timedelta(minutes=1)) == []
        # Naive datetimes are read as UTC
        assert service.get_log(start=datetime.utcnow() + timedelta(minutes=1)) == []

    @pytest.mark.parametrize('interaction_type', ['astrology', 'billing', 'triage'])
    def test_unknown_interaction_type(self, interaction_type):
        with pytest.raises(KeyError):
            AuditService().log_ai_interaction('1', 'A', 'admin', interaction_type)


class TestAuditRoute:
    """GET /api/audit"""

    def test_requires_login(self, client):
        assert client.get('/api/audit').status_code == 401

    def test_requires_admin(self, client, nurse_headers):
        response = client.get('/api/audit', headers=nurse_headers)

        assert response.status_code == 403
        assert response.json() == {'success': False, 'error': 'Forbidden'}

    def test_lists_events(self, client, auth_headers):
        client.post('/api/ai/diagnostic-assist', headers=auth_headers, json={'selectedText': 'fever'})

        response = client.get('/api/audit', headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body['count'] == 2
        assert body['data'][0]['action'] == 'use_diagnostic_assist'

        filtered = client.get('/api/audit', headers=auth_headers, params={'action': 'login'}).json()
        assert filtered['count'] == 1

    def test_unknown_action(self, client, auth_headers):
        response = client.get('/api/audit', headers=auth_headers, params={'action': 'dance'})

        assert response.status_code == 400
        assert response.json()['error'] == 'Unknown audit action: dance'
