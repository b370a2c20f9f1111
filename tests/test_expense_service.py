from pathlib import Path

import pytest

from ovm.services.errors import ExpenseNotFound, ServiceError
from ovm.services.expense_service import ExpenseService, decode_receipt


def test_decode_receipt(make_data_url):
    assert decode_receipt(make_data_url(b'\xff\xd8abc')) == b'\xff\xd8abc'
    assert decode_receipt(None) is None
    assert decode_receipt('https://example.com/receipt.jpg') is None
    with pytest.raises(ServiceError):
        decode_receipt('data:image/png;base64,@@@@')


class TestCreate:

    def test_create_saves_watermarked_receipt(self, job_factory, make_image):
        job = job_factory(fuel_type='petrol')

        expense = ExpenseService.create(job.job_number, {'type': 'fuel', 'amount': 60.0, 'stage': 'delivery'},
                                        make_image(800, 600))

        assert expense.fuel_type == 'petrol'
        assert expense.stage == 'delivery'
        assert expense.is_approved is False
        assert Path(expense.receipt_path).name == 'fuel_receipt_150825003 (AB12 CDE).jpg'
        assert Path(expense.receipt_path).parent.name == 'Delivery'

    def test_vehicle_without_registration_uses_placeholder(self, job_factory, make_image):
        job = job_factory()
        job.vehicle_id = None
        job.vehicle = None

        expense = ExpenseService.create(job.id, {'type': 'taxi', 'amount': 18.0}, make_image(300, 300))

        assert Path(expense.receipt_path).name == 'taxi_receipt_150825003 (NOREG).jpg'

    @pytest.mark.parametrize('data', [
        {'type': 'parking', 'amount': 5},
        {'type': 'fuel', 'amount': 0},
        {'type': 'fuel', 'amount': 'lots'},
        {'type': 'other', 'amount': 5},
        {'type': 'other', 'amount': 5, 'description': '   '},
    ])
    def test_validation(self, job_factory, make_image, data):
        job = job_factory()
        with pytest.raises(ServiceError):
            ExpenseService.create(job.id, data, make_image(100, 100))

    def test_receipt_required(self, job_factory):
        job = job_factory()
        with pytest.raises(ServiceError):
            ExpenseService.create(job.id, {'type': 'bus', 'amount': 2.5}, b'')


class TestApproval:

    def test_charge_requires_approval(self, job_factory, make_image):
        job = job_factory()
        expense = ExpenseService.create(job.id, {'type': 'train', 'amount': 30.0}, make_image(200, 200))

        rejected = ExpenseService.approve(expense.id, False, charge_to_customer=True, approved_by='admin')
        assert rejected.is_approved is False
        assert rejected.charge_to_customer is False
        assert rejected.approved_at is None
        assert ExpenseService.chargeable_for_job(job.id) == []

        approved = ExpenseService.approve(expense.id, True, charge_to_customer=True, approved_by='admin')
        assert approved.is_chargeable
        assert approved.approved_by == 'admin'
        assert [e.id for e in ExpenseService.chargeable_for_job(job.id)] == [expense.id]

    def test_unknown_expense(self, app):
        with pytest.raises(ExpenseNotFound):
            ExpenseService.approve('missing', True)

    def test_list_for_driver_filters_by_approval(self, job_factory, make_image):
        job = job_factory()
        first = ExpenseService.create(job.id, {'type': 'bus', 'amount': 2.0}, make_image(100, 100))
        ExpenseService.create(job.id, {'type': 'bus', 'amount': 3.0, 'driver_id': job.driver_id},
                              make_image(100, 100, color=(0, 0, 0)))
        ExpenseService.approve(first.id, True)

        assert len(ExpenseService.list_for_driver(job.driver_id)) == 2
        assert [e.id for e in ExpenseService.list_for_driver(job.driver_id, approved=True)] == [first.id]
        assert len(ExpenseService.list_for_job(job.job_number)) == 2
