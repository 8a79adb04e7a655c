"""
Tests for the shop settings API and service.
"""
import pytest
from decimal import Decimal

from prohealth.services.settings_service import settings_service
from prohealth.utils.exceptions import ValidationError


class TestSettingsService:

    def test_defaults(self, app, sample_shop):
        program = settings_service.get_credit_program(sample_shop)
        assert program['threshold'] == Decimal('500')
        assert program['credit_amount'] == Decimal('10')
        assert program['currency'] == 'EUR'

        defaults = settings_service.get_validation_defaults(sample_shop)
        assert defaults == {'value': 10, 'type': '%', 'code_prefix': 'PRO_'}

    def test_env_override(self, app, sample_shop):
        app.config['CREDIT_THRESHOLD'] = '250'
        assert settings_service.get_credit_program(sample_shop)['threshold'] == Decimal('250')

    def test_shop_value_wins_over_env(self, app, sample_shop):
        settings_service.update_credit_program(sample_shop, {'threshold': '750,5'})
        assert settings_service.get_credit_program(sample_shop)['threshold'] == Decimal('750.5')

    @pytest.mark.parametrize('data', [
        {'threshold': 0},
        {'threshold': 'abc'},
        {'credit_amount': -1},
        {'currency': 'EURO'},
        {'threshold': 'NaN'},
        {'threshold': float('inf')},
        {'credit_amount': 'Infinity'},
        {'credit_amount': '-inf'},
    ])
    def test_invalid_credit_program(self, app, sample_shop, data):
        with pytest.raises(ValidationError):
            settings_service.update_credit_program(sample_shop, data)

    def test_percentage_default_capped(self, app, sample_shop):
        with pytest.raises(ValidationError):
            settings_service.update_validation_defaults(sample_shop, {'value': 150})
        result = settings_service.update_validation_defaults(sample_shop, {'value': 150, 'type': '€'})
        assert result['value'] == 150.0

    def test_seed_currency_only_once(self, app, sample_shop):
        assert settings_service.seed_currency(sample_shop, 'chf') is True
        assert settings_service.seed_currency(sample_shop, 'USD') is False
        assert settings_service.get_credit_program(sample_shop)['currency'] == 'CHF'

    def test_prefix_is_uppercased(self, app, sample_shop):
        result = settings_service.update_validation_defaults(sample_shop, {'code_prefix': ' kine_ '})
        assert result['code_prefix'] == 'KINE_'


class TestSettingsApi:

    def test_get_settings(self, client, auth_headers):
        response = client.get('/api/settings', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['settings']['credit_program']['threshold'] == 500.0
        assert data['settings']['validation_defaults']['code_prefix'] == 'PRO_'
        assert set(data['discount_types']) == {'%', '€'}

    def test_requires_shop(self, client):
        response = client.get('/api/settings')
        assert response.status_code == 401

    def test_update_requires_edit_mode(self, client, auth_headers):
        response = client.put('/api/settings/credit-program', headers=auth_headers, json={'threshold': 100})
        assert response.status_code == 403
        assert response.get_json()['error']['code'] == 'EDIT_MODE_LOCKED'

    def test_update_credit_program(self, client, edit_headers, sample_shop):
        response = client.put('/api/settings/credit-program', headers=edit_headers,
                              json={'threshold': 100, 'credit_amount': 5})

        assert response.status_code == 200
        assert response.get_json()['credit_program']['threshold'] == 100.0
        assert sample_shop.settings['credit_program'] == {'threshold': 100.0, 'credit_amount': 5.0}

    def test_invalid_threshold(self, client, edit_headers):
        response = client.put('/api/settings/credit-program', headers=edit_headers, json={'threshold': -5})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_THRESHOLD'

    def test_nan_threshold_is_rejected(self, client, edit_headers, sample_shop):
        response = client.put('/api/settings/credit-program', headers=edit_headers, json={'threshold': 'NaN'})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_THRESHOLD'
        assert 'credit_program' not in (sample_shop.settings or {})

    def test_update_validation_defaults(self, client, edit_headers):
        response = client.put('/api/settings/validation-defaults', headers=edit_headers,
                              json={'value': 15, 'type': '%', 'code_prefix': 'osteo_'})

        assert response.status_code == 200
        assert response.get_json()['validation_defaults'] == {'value': 15.0, 'type': '%', 'code_prefix': 'OSTEO_'}
