"""Tests for the medication catalog and FHIR medication search."""

import pytest

from emr_backend.services.medication_catalog_service import (
    NDC_SYSTEM, RXNORM_SYSTEM, catalog_fields_from_medication
)


def fhir_medication(med_id='med-1', ndc='0071-0155-23', name='Lipitor 20 MG Oral Tablet'):
    return {
        'resourceType': 'Medication',
        'id': med_id,
        'code': {
            'text': name,
            'coding': [
                {'system': NDC_SYSTEM, 'code': ndc, 'display': 'Lipitor'},
                {'system': RXNORM_SYSTEM, 'code': '617310', 'display': 'atorvastatin 20 MG'},
            ],
        },
        'form': {'text': 'Tablet'},
        'ingredient': [{
            'itemCodeableConcept': {'text': 'Atorvastatin'},
            'strength': {'numerator': {'value': 20, 'unit': '20 mg'}},
        }],
        'manufacturer': {'display': 'Pfizer'},
    }


class TestFieldMapping:

    def test_full_medication(self):
        fields = catalog_fields_from_medication(fhir_medication())

        assert fields == {
            'name': 'Lipitor 20 MG Oral Tablet',
            'ndc_code': '0071-0155-23',
            'rx_cui': '617310',
            'form': 'Tablet',
            'strength': '20 mg',
            'fhir_medication_id': 'Medication/med-1',
        }

    def test_sparse_medication_falls_back(self):
        fields = catalog_fields_from_medication({'resourceType': 'Medication', 'id': 'm9'})

        assert fields['name'] == 'Medication'
        assert fields['ndc_code'] == 'm9'
        assert fields['rx_cui'] is None


class TestCatalogRoutes:
    """Local catalog CRUD."""

    def test_upsert_then_update_by_ndc(self, client):
        created = client.post('/api/medications/catalog', json={
            'name': 'Metformin 500 MG', 'ndcCode': '0093-1048-01', 'form': 'Tablet',
        })
        assert created.status_code == 200
        item = created.json()['data']
        assert item['active'] is True

        updated = client.post('/api/medications/catalog', json={
            'name': 'Metformin HCl 500 MG', 'ndcCode': '0093-1048-01', 'active': False,
        })

        assert updated.json()['data']['id'] == item['id']
        assert updated.json()['data']['name'] == 'Metformin HCl 500 MG'
        assert updated.json()['data']['active'] is False

    def test_list_filters(self, client):
        client.post('/api/medications/catalog', json={'name': 'Warfarin 5 MG', 'ndcCode': '111'})
        client.post('/api/medications/catalog', json={'name': 'Aspirin 81 MG', 'ndcCode': '222'})
        client.post('/api/medications/catalog', json={'name': 'Heparin', 'ndcCode': '333', 'active': False})

        everything = client.get('/api/medications/catalog').json()['data']
        assert [i['name'] for i in everything] == ['Aspirin 81 MG', 'Heparin', 'Warfarin 5 MG']

        search = client.get('/api/medications/catalog', params={'search': 'warf'}).json()['data']
        assert [i['ndcCode'] for i in search] == ['111']

        by_ndc = client.get('/api/medications/catalog', params={'search': '22'}).json()['data']
        assert [i['name'] for i in by_ndc] == ['Aspirin 81 MG']

        inactive = client.get('/api/medications/catalog', params={'active': 'false'}).json()['data']
        assert [i['name'] for i in inactive] == ['Heparin']

    def test_update_onto_another_items_ndc_conflicts(self, client):
        client.post('/api/medications/catalog', json={'name': 'Warfarin 5 MG', 'ndcCode': '111'})
        second = client.post('/api/medications/catalog', json={'name': 'Aspirin 81 MG', 'ndcCode': '222'})

        response = client.post('/api/medications/catalog', json={
            'id': second.json()['data']['id'], 'name': 'Aspirin 81 MG', 'ndcCode': '111',
        })

        assert response.status_code == 409
        assert response.json() == {'success': False, 'error': 'NDC 111 is already used by another catalog item'}
        names = [i['name'] for i in client.get('/api/medications/catalog').json()['data']]
        assert names == ['Aspirin 81 MG', 'Warfarin 5 MG']

    def test_requires_name_and_ndc(self, client):
        response = client.post('/api/medications/catalog', json={'name': '', 'ndcCode': '1'})

        assert response.status_code == 400
        assert response.json()['success'] is False


class TestImportByNdc:

    def test_import_from_fhir(self, client, aidbox):
        aidbox.add(fhir_medication())

        response = client.post('/api/medications/catalog/import', json={'ndcCode': '0071-0155-23'})

        assert response.status_code == 200
        body = response.json()
        assert body['message'] == 'Medication imported from Aidbox into catalog'
        assert body['data']['fhirMedicationId'] == 'Medication/med-1'
        assert body['data']['rxCui'] == '617310'

        search = aidbox.requests_for('GET', '/Medication')[-1]
        assert search.url.params['code'] == f'{NDC_SYSTEM}|0071-0155-23'

    def test_reimport_updates_existing_row(self, client, aidbox):
        aidbox.add(fhir_medication())
        first = client.post('/api/medications/catalog/import', json={'ndcCode': '0071-0155-23'}).json()
        second = client.post('/api/medications/catalog/import', json={'ndcCode': '0071-0155-23'}).json()

        assert first['data']['id'] == second['data']['id']
        assert len(client.get('/api/medications/catalog').json()['data']) == 1

    def test_unknown_ndc(self, client):
        response = client.post('/api/medications/catalog/import', json={'ndcCode': '9999'})

        assert response.status_code == 404
        assert response.json() == {'success': False, 'error': 'No Medication found in Aidbox for NDC 9999'}


class TestMedicationSearch:
    """Live FHIR Medication search."""

    def test_requires_query(self, client):
        response = client.get('/api/medications/search')

        assert response.status_code == 400
        assert response.json()['error'] == 'Search query is required'

    def test_search_by_rxnorm(self, client, aidbox):
        aidbox.add(fhir_medication())
        aidbox.add(fhir_medication(med_id='med-2', ndc='0000-0000-00', name='Other'))

        response = client.get('/api/medications/search', params={'rxnorm': '617310', 'limit': 5})

        assert response.status_code == 200
        body = response.json()
        assert body['count'] == 2
        first = body['medications'][0]
        assert first['ndc'] == '0071-0155-23'
        assert first['manufacturer'] == 'Pfizer'
        assert first['ingredients'] == [{'name': 'Atorvastatin', 'strength': '20 mg'}]

        request = aidbox.requests_for('GET', '/Medication')[-1]
        assert request.url.params['code'] == f'{RXNORM_SYSTEM}|617310'
        assert request.url.params['_count'] == '5'

    @pytest.mark.parametrize('param', ['q', 'query'])
    def test_text_search(self, client, aidbox, param):
        client.get('/api/medications/search', params={param: 'lipitor'})

        request = aidbox.requests_for('GET', '/Medication')[-1]
        assert request.url.params['code:text'] == 'lipitor'
