"""
Tests for CSV / Excel partner import.
"""
import io
import pytest
import pandas as pd
from unittest.mock import patch

from prohealth.services.import_service import (
    ImportService,
    map_row,
    normalize_key,
    read_rows,
    repair_mojibake,
)
from prohealth.utils.exceptions import ShopifyError, ValidationError

from conftest import make_shopify_mock, partner_entry


CSV_SEMICOLON = (
    'Ref interne;Prénom;Nom;Email;Code;Montant;Type;Profession;Adresse\n'
    'R1;Claire;Martin;claire@example.com;pro_macl;15;%;Ostéopathe;Lyon\n'
    'R2;Paul;Durand;paul@example.com;PRO_DUPA;5 €;€;Podologue;Nice\n'
).encode('utf-8')


class TestRowParsing:

    def test_normalize_key_strips_accents(self):
        assert normalize_key(' Prénom ') == 'prenom'

    def test_repair_mojibake(self):
        assert repair_mojibake('OstÃ©opathe') == 'Ostéopathe'
        assert repair_mojibake('Ostéopathe') == 'Ostéopathe'

    def test_semicolon_csv(self):
        rows = read_rows(CSV_SEMICOLON, 'partners.csv')
        assert len(rows) == 2
        assert rows[0]['Prénom'] == 'Claire'

    def test_latin1_csv(self):
        content = 'ref,prenom,nom,email,code\nR1,Hélène,Faure,h@example.com,PRO_FAHE\n'.encode('latin-1')
        rows = read_rows(content, 'export.csv')
        assert map_row(rows[0])['first_name'] == 'Hélène'

    def test_excel(self):
        buffer = io.BytesIO()
        pd.DataFrame([
            {'Ref': 'R1', 'Prénom': 'Claire', 'Nom': 'Martin', 'Email': 'claire@example.com',
             'Code': 'PRO_MACL', 'Montant': '15'},
        ]).to_excel(buffer, index=False)

        rows = read_rows(buffer.getvalue(), 'partners.xlsx')

        mapped = map_row(rows[0])
        assert mapped['ref'] == 'R1'
        assert mapped['code'] == 'PRO_MACL'
        assert mapped['amount'] == '15'

    def test_unreadable_excel(self):
        with pytest.raises(ValidationError):
            read_rows(b'not a spreadsheet', 'partners.xlsx')

    def test_map_row_aliases_and_type(self):
        mapped = map_row({'Reference': 'R9', 'Prénom': 'Paul', 'NOM': 'Durand', 'E-mail': ' Paul@Example.com ',
                          'Code promo': 'pro_dupa', 'Montant': '5,50 €'})
        assert mapped['ref'] == 'R9'
        assert mapped['email'] == 'paul@example.com'
        assert mapped['code'] == 'PRO_DUPA'
        assert mapped['amount'] == '5.50'
        assert mapped['type'] == '€'


class TestImportRows:

    def test_import_file(self, app, sample_shop):
        client = make_shopify_mock([partner_entry()])
        report = ImportService(sample_shop, client).import_file(CSV_SEMICOLON, 'partners.csv')

        assert report.added == 2
        assert report.errors == []
        codes = sorted(e['fields']['code'] for e in client.store.values())
        assert codes == ['PRO_DUJE', 'PRO_DUPA', 'PRO_MACL']

    def test_duplicates_skipped(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(identification='R7')])
        rows = [
            {'ref': 'R1', 'prenom': 'A', 'nom': 'B', 'email': 'a@example.com', 'code': 'PRO_DUJE'},
            {'ref': 'r7', 'prenom': 'C', 'nom': 'D', 'email': 'c@example.com', 'code': 'PRO_NEW'},
            {'ref': 'R2', 'prenom': 'E', 'nom': 'F', 'email': 'e@example.com', 'code': 'PRO_EF'},
            {'ref': 'R3', 'prenom': 'G', 'nom': 'H', 'email': 'g@example.com', 'code': 'pro_ef'},
        ]
        report = ImportService(sample_shop, client).import_rows(rows)

        assert report.added == 1
        assert report.skipped == 3
        assert len(report.duplicates) == 3

    def test_missing_fields_reported(self, app, sample_shop):
        client = make_shopify_mock()
        rows = [
            {'ref': '', 'prenom': 'A', 'nom': 'B', 'email': 'a@example.com', 'code': 'X1'},
            {'ref': 'R2', 'prenom': 'C', 'nom': 'D', 'email': '', 'code': ''},
            {'ref': '', 'prenom': '', 'nom': '', 'email': '', 'code': ''},
        ]
        report = ImportService(sample_shop, client).import_rows(rows)

        assert report.added == 0
        assert report.errors == [
            'Line 2: missing reference',
            'Line 3 (R2): missing email, code',
        ]

    def test_amount_defaults_to_shop_value(self, app, sample_shop):
        client = make_shopify_mock()
        rows = [{'ref': 'R1', 'prenom': 'A', 'nom': 'B', 'email': 'a@example.com', 'code': 'PRO_BA'}]

        ImportService(sample_shop, client).import_rows(rows)

        assert client.create_code_discount.call_args[1]['value'] == 10

    def test_shopify_failure_recorded_and_import_continues(self, app, sample_shop):
        client = make_shopify_mock()
        create_discount = client.create_code_discount.side_effect

        def fail_first(title, code, value, discount_type='%'):
            if code == 'PRO_BA':
                raise ShopifyError('Code already exists in Shopify')
            return create_discount(title, code, value, discount_type)

        client.create_code_discount.side_effect = fail_first
        rows = [
            {'ref': 'R1', 'prenom': 'A', 'nom': 'B', 'email': 'a@example.com', 'code': 'PRO_BA'},
            {'ref': 'R2', 'prenom': 'C', 'nom': 'D', 'email': 'c@example.com', 'code': 'PRO_DC'},
        ]
        report = ImportService(sample_shop, client).import_rows(rows)

        assert report.added == 1
        assert 'Line 2 (R1)' in report.errors[0]


class TestImportApi:

    def test_import_endpoint(self, client, edit_headers):
        shopify = make_shopify_mock()
        headers = {k: v for k, v in edit_headers.items() if k != 'Content-Type'}
        with patch('prohealth.api.partners.client_for_shop', return_value=shopify):
            response = client.post(
                '/api/partners/import',
                headers=headers,
                data={'file': (io.BytesIO(CSV_SEMICOLON), 'partners.csv')},
                content_type='multipart/form-data',
            )

        assert response.status_code == 200
        assert response.get_json()['added'] == 2

    def test_import_rejects_other_files(self, client, edit_headers):
        headers = {k: v for k, v in edit_headers.items() if k != 'Content-Type'}
        response = client.post(
            '/api/partners/import',
            headers=headers,
            data={'file': (io.BytesIO(b'hello'), 'notes.txt')},
            content_type='multipart/form-data',
        )
        assert response.status_code == 400
