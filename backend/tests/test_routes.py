"""
HTTP surface tests: status codes and the {data, error} body shape.
"""

from trashdrop.errors import BATCH_DUPLICATE, BATCH_INVALID, BATCH_NOT_FOUND, BATCH_NOT_OWNED


class TestScanEndpoint:
    def test_activation(self, client, sync, make_batch):
        make_batch("BATCH-R1", bag_count=5)
        response = client.post('/api/batches/scan', json={
            'identifier': 'https://trashdrop.app/scan?code=BATCH-R1',
            'user_id': 'user-1',
        })
        assert response.status_code == 200
        body = response.get_json()
        assert body['error'] is None
        assert body['data']['bags_added'] == 5

    def test_missing_fields(self, client, sync):
        response = client.post('/api/batches/scan', json={'user_id': 'user-1'})
        assert response.status_code == 400
        assert response.get_json()['error']['code'] == BATCH_INVALID

    def test_not_found(self, client, sync):
        response = client.post('/api/batches/scan', json={'identifier': 'BATCH-NONE', 'user_id': 'u'})
        assert response.status_code == 404
        error = response.get_json()['error']
        assert error['code'] == BATCH_NOT_FOUND
        assert error['user_message']

    def test_not_owned(self, client, sync, make_batch):
        make_batch("BATCH-THEIRS", owner_id="user-2")
        response = client.post('/api/batches/scan', json={'identifier': 'BATCH-THEIRS', 'user_id': 'user-1'})
        assert response.status_code == 403
        assert response.get_json()['error']['code'] == BATCH_NOT_OWNED

    def test_duplicate(self, client, sync, make_batch):
        make_batch("BATCH-DUP", bag_count=1)
        payload = {'identifier': 'BATCH-DUP', 'user_id': 'user-1'}
        client.post('/api/batches/scan', json=payload)
        response = client.post('/api/batches/scan', json=payload)
        assert response.status_code == 409
        assert response.get_json()['error']['code'] == BATCH_DUPLICATE

    def test_offline_scan_is_accepted(self, client, sync):
        client.post('/api/sync/connectivity', json={'online': False})
        response = client.post('/api/batches/scan', json={'identifier': 'BATCH-Q', 'user_id': 'user-1'})
        assert response.status_code == 202
        assert response.get_json()['data']['queued'] is True


class TestLookupEndpoints:
    def test_normalize(self, client):
        response = client.get('/api/batches/normalize', query_string={'raw': 'trashdrop://scan?batch_id=BATCH-N'})
        assert response.get_json()['data']['normalized'] == 'BATCH-N'

    def test_lookup(self, client, sync, make_batch):
        batch = make_batch("BATCH-LK", bags=2)
        response = client.get('/api/batches/lookup', query_string={'identifier': 'batch-lk'})
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['id'] == batch.id
        assert data['total_bags'] == 2

    def test_user_stats(self, client, sync, make_batch):
        make_batch("BATCH-ST", bag_count=4)
        client.post('/api/batches/scan', json={'identifier': 'BATCH-ST', 'user_id': 'user-9'})
        response = client.get('/api/users/user-9/stats')
        assert response.status_code == 200
        assert response.get_json()['data']['available_bags'] == 4

    def test_bag_scans(self, client, sync, make_batch):
        batch = make_batch("BATCH-BG", bags=1)
        bag_id = batch.bags[0].id
        response = client.post(f'/api/bags/{bag_id}/scans', json={
            'scanner_id': 'collector-1',
            'location': {'text': 'Depot', 'coordinates': [1.0, 2.0]},
        })
        assert response.status_code == 201
        history = client.get(f'/api/bags/{bag_id}/scans').get_json()['data']
        assert len(history) == 1


class TestSyncEndpoints:
    def test_queue_then_reconnect(self, client, sync, make_batch):
        make_batch("BATCH-RC", bag_count=2)
        client.post('/api/sync/connectivity', json={'online': False})
        client.post('/api/batches/scan', json={'identifier': 'BATCH-RC', 'user_id': 'user-1'})

        queue = client.get('/api/sync/queue').get_json()['data']
        assert [e['payload']['batch_identifier'] for e in queue['entries']] == ['BATCH-RC']

        response = client.post('/api/sync/connectivity', json={'online': True})
        data = response.get_json()['data']
        assert data['came_online'] is True
        assert data['pending'] == 0
        assert data['last_report']['succeeded'] == 1

    def test_drain_offline(self, client, sync):
        client.post('/api/sync/connectivity', json={'online': False})
        assert client.post('/api/sync/drain').status_code == 503

    def test_drain(self, client, sync):
        response = client.post('/api/sync/drain', json={'limit': 5})
        assert response.status_code == 200
        assert response.get_json()['data']['attempted'] == 0

    def test_bad_limit(self, client, sync):
        assert client.post('/api/sync/drain', json={'limit': 0}).status_code == 400

    def test_connectivity_requires_bool(self, client, sync):
        assert client.post('/api/sync/connectivity', json={'online': 'yes'}).status_code == 400

    def test_status(self, client, sync):
        data = client.get('/api/sync/status').get_json()['data']
        assert data['online'] is True
        assert data['listener_attached'] is True


class TestHealth:
    def test_health(self, client, sync):
        response = client.get('/api/health')
        assert response.status_code == 200
        body = response.get_json()
        assert body['status'] == 'healthy'
        assert body['checks']['sync_queue']['details']['pending'] == 0

    def test_version(self, client):
        assert client.get('/api/version').get_json()['backend_mode'] == 'sql'
