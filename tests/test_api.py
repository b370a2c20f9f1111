import io

from ovm.extensions import db, document_tasks
from ovm.models.expense import Expense
from ovm.models.inspection import InspectionRecord


class TestCompletionEndpoints:

    def test_complete_collection(self, client, job_factory, make_image, make_data_url):
        job = job_factory()
        response = client.post(f'/api/mobile/jobs/{job.job_number}/collection/complete', json={
            'customer_name': 'Pat Customer',
            'inspection': {'odometer': 1200},
            'damage_markers': [{'position': {'view': 'front'}, 'type': 'scratch', 'severity': 'minor'}],
            'expenses': [{'type': 'fuel', 'amount': 30, 'receipt': make_data_url(make_image(400, 600))}],
            'weather': 'rain',
        })

        assert response.status_code == 200
        body = response.get_json()
        for key in ('success', 'message', 'inspection_id', 'job_status', 'expenses_created', 'document_task_id'):
            assert key in body
        assert body['job_status'] == 'collected'
        assert body['expenses_created'] == 1

        db.session.expire_all()
        record = InspectionRecord.query.filter_by(job_id=job.id, stage='collection').one()
        assert record.data['weather'] == 'rain'
        assert Expense.query.filter_by(job_id=job.id).count() == 1

    def test_error_codes(self, client, job_factory):
        job_factory(job_number='150825003')
        job_factory(job_number='160825001', status='cancelled', registration='ZZ99 ZZZ')

        assert client.post('/api/mobile/jobs/999999999/collection/complete', json={}).status_code == 404
        assert client.post('/api/mobile/jobs/150825003/handover/complete', json={}).status_code == 400
        assert client.post('/api/mobile/jobs/160825001/collection/complete', json={}).status_code == 409
        response = client.post('/api/mobile/jobs/150825003/collection/complete', json={'expenses': 'fuel'})
        assert response.status_code == 400
        assert 'details' in response.get_json()

    def test_auto_save_round_trip(self, client, job_factory):
        job = job_factory()
        url = f'/api/mobile/jobs/{job.id}/delivery/auto-save'

        assert client.get(url).get_json() == {'exists': False, 'record': None}

        response = client.post(url, json={'data': {'odometer': 500}, 'current_step': 2})
        assert response.status_code == 200
        assert response.get_json()['current_step'] == 2

        body = client.get(url).get_json()
        assert body['exists'] is True
        assert body['record']['data'] == {'odometer': 500}
        assert body['record']['stage'] == 'delivery'

        assert client.post(url, json={'current_step': 3}).status_code == 400


class TestPhotoEndpoints:

    def test_upload_list_delete(self, client, job_factory, make_image):
        job = job_factory()
        base = f'/api/mobile/jobs/{job.job_number}/photos'

        response = client.post(base, data={
            'file': (io.BytesIO(make_image(1200, 900)), 'nearside.jpg'),
            'stage': 'collection',
            'category': 'damage',
        }, content_type='multipart/form-data')
        assert response.status_code == 201
        photo = response.get_json()['photo']
        assert photo['filename'] == 'nearside.jpg'
        assert photo['compression_stats']['compressed_size'] > 0

        listing = client.get(f'{base}?stage=collection').get_json()
        assert listing['count'] == 1

        assert client.delete(f'{base}/collection/nearside.jpg').status_code == 200
        assert client.delete(f'{base}/collection/nearside.jpg').status_code == 404
        assert client.get(base).get_json()['count'] == 0

    def test_upload_validation(self, client, job_factory, make_image):
        job = job_factory()
        base = f'/api/mobile/jobs/{job.job_number}/photos'
        assert client.post(base, data={}, content_type='multipart/form-data').status_code == 400
        response = client.post(base, data={
            'file': (io.BytesIO(b'MZ...'), 'tool.exe'),
        }, content_type='multipart/form-data')
        assert response.status_code == 400
        response = client.post(base, data={
            'file': (io.BytesIO(b'not really a jpeg'), 'broken.jpg'),
        }, content_type='multipart/form-data')
        assert response.status_code == 422


class TestExpenseEndpoints:

    def test_submit_and_approve(self, client, job_factory, make_image):
        job = job_factory()
        response = client.post(f'/api/mobile/jobs/{job.id}/expenses', data={
            'type': 'train',
            'amount': '24.80',
            'stage': 'delivery',
            'receipt': (io.BytesIO(make_image(500, 700)), 'ticket.jpg'),
        }, content_type='multipart/form-data')
        assert response.status_code == 201
        expense = response.get_json()
        assert expense['receipt_filename'] == 'train_receipt_150825003 (AB12 CDE).jpg'

        response = client.put(f"/api/expenses/{expense['id']}/approval",
                              json={'is_approved': True, 'charge_to_customer': True, 'approved_by': 'ops'})
        assert response.status_code == 200
        assert response.get_json()['charge_to_customer'] is True

        assert client.put('/api/expenses/missing/approval', json={'is_approved': True}).status_code == 404
        assert client.put(f"/api/expenses/{expense['id']}/approval", json={}).status_code == 400

        receipts = client.get(f'/api/jobs/{job.id}/receipts?stage=delivery').get_json()
        assert receipts['count'] == 1

    def test_submit_requires_receipt_and_description(self, client, job_factory, make_image):
        job = job_factory()
        url = f'/api/mobile/jobs/{job.id}/expenses'
        assert client.post(url, data={'type': 'bus', 'amount': '2'},
                           content_type='multipart/form-data').status_code == 400
        response = client.post(url, data={
            'type': 'other',
            'amount': '2',
            'receipt': (io.BytesIO(make_image(100, 100)), 'r.jpg'),
        }, content_type='multipart/form-data')
        assert response.status_code == 400


class TestJobEndpoints:

    def test_status_and_audit(self, client, job_factory):
        job = job_factory(status='delivered')
        response = client.post(f'/api/jobs/{job.job_number}/status', json={'status': 'collected'})
        assert response.status_code == 409

        response = client.post(f'/api/jobs/{job.job_number}/status', json={'status': 'bogus'})
        assert response.status_code == 400

        response = client.post(f'/api/jobs/{job.job_number}/status', json={'status': 'invoiced', 'changed_by': 'ops'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'invoiced'

        audit = client.get(f'/api/jobs/{job.job_number}/audit').get_json()
        assert [a['new_status'] for a in audit] == ['invoiced']

    def test_document_download(self, client, job_factory):
        job = job_factory()
        url = f'/api/jobs/{job.job_number}/documents/POC'

        assert client.get(url).status_code == 404
        assert client.get(f'/api/jobs/{job.job_number}/documents/Contract').status_code == 400
        assert client.post(f'{url}/regenerate').status_code == 409

        client.post(f'/api/mobile/jobs/{job.job_number}/collection/complete', json={'customer_name': 'Pat'})
        assert document_tasks.wait(timeout=30)

        response = client.get(url)
        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')

        response = client.post(f'{url}/regenerate')
        assert response.status_code == 202
        assert response.get_json()['task']['name'] == 'generate_poc'

    def test_get_job_and_unknown(self, client, job_factory):
        job = job_factory()
        body = client.get(f'/api/jobs/{job.id}').get_json()
        assert body['job_number'] == '150825003'
        assert body['vehicle_reg'] == 'AB12 CDE'
        assert body['inspections'] == {'collection': None, 'delivery': None}
        assert client.get('/api/jobs/nope').status_code == 404


class TestArchiveAndTaskEndpoints:

    def test_archive_flow(self, app, client, job_factory, make_image):
        job = job_factory()
        client.post(f'/api/mobile/jobs/{job.job_number}/photos', data={
            'file': (io.BytesIO(make_image(600, 400)), 'a.jpg'),
        }, content_type='multipart/form-data')

        months = client.get('/api/archive/months').get_json()
        assert [m['month'] for m in months['months']] == ['August 2025']

        jobs = client.get('/api/archive/months/August%202025/jobs').get_json()
        assert jobs['jobs'][0]['job_id'] == '150825003'
        assert jobs['jobs'][0]['photo_count'] == 1

        cleanup = client.delete('/api/archive/months/August%202025/cleanup').get_json()
        assert cleanup['deleted'] is False

        response = client.post('/api/archive/months/August%202025/archive', json={})
        assert response.status_code == 201
        assert response.get_json()['archived_jobs'] == ['150825003']

        cleanup = client.delete('/api/archive/months/August%202025/cleanup').get_json()
        assert cleanup['deleted'] is True

        stats = client.get('/api/archive/storage-stats').get_json()
        assert stats['archive_count'] == 1
        assert stats['total_jobs'] == 0

    def test_invalid_month(self, client):
        assert client.get('/api/archive/months/Smarch%202025/jobs').status_code == 400
        assert client.get('/api/archive/months/March%202020/jobs').status_code == 404
        assert client.post('/api/archive/months/Smarch%202025/archive').status_code == 400

    def test_tasks(self, client, job_factory):
        assert client.get('/api/tasks/unknown').status_code == 404
        assert client.post('/api/tasks/unknown/retry').status_code == 404

        job = job_factory(status='delivered')
        client.post(f'/api/jobs/{job.id}/status', json={'status': 'invoiced'})
        assert document_tasks.wait(timeout=30)

        tasks = client.get('/api/tasks').get_json()
        assert tasks['count'] == 1
        task = tasks['tasks'][0]
        assert task['status'] == 'succeeded'
        assert client.get(f"/api/tasks/{task['id']}").get_json()['name'] == 'generate_invoice'
        assert client.post(f"/api/tasks/{task['id']}/retry").status_code == 409
        assert client.get('/api/tasks?status=failed').get_json()['count'] == 0

    def test_health_check(self, client):
        response = client.get('/api/health-check')
        assert response.status_code == 200
        assert response.get_json()['database'] is True
