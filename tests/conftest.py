import base64
import io

import pytest
from PIL import Image

from ovm.config import TestConfig
from ovm.extensions import db, document_tasks
from ovm.models.customer import Customer
from ovm.models.driver import Driver
from ovm.models.job import Job
from ovm.models.vehicle import Vehicle
from ovm.server import create_app
from ovm.services.image_compression import CompressionPipeline
from ovm.services.media_store import MediaStore


def _make_image(width=2400, height=1600, color=(200, 30, 30), fmt='JPEG', mode='RGB'):
    img = Image.new(mode, (width, height), color)
    # Some structure so the encoder has real work to do
    for x in range(0, width, 50):
        for y in range(height // 3, height // 3 + 10):
            img.putpixel((x, y), (255, 255, 255) if mode == 'RGB' else (255, 255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image():
    return _make_image


@pytest.fixture
def make_data_url():
    def factory(data, mime='image/jpeg'):
        return f"data:{mime};base64,{base64.b64encode(data).decode()}"
    return factory


@pytest.fixture
def store(tmp_path):
    return MediaStore(tmp_path / 'Jobs', compression=CompressionPipeline(pool_size=2, cache_size=8))


@pytest.fixture
def app(tmp_path):
    class LocalTestConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"
        JOBS_STORAGE_ROOT = str(tmp_path / 'Jobs')
        ARCHIVE_ROOT = str(tmp_path / 'archives')

    app = create_app(LocalTestConfig)
    with app.app_context():
        yield app
        document_tasks.wait(timeout=30)
        db.session.remove()
        db.drop_all()
    document_tasks.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def job_factory(app):
    """Create a job with customer, driver and vehicle attached."""
    def factory(job_number='150825003', status='assigned', registration='AB12 CDE', fuel_type='diesel', **kwargs):
        customer = Customer(
            name='Acme Leasing',
            email='ops@acme.test',
            default_poc_emails=['poc@acme.test'],
            default_pod_emails=['pod@acme.test'],
            default_invoice_emails=['billing@acme.test'],
        )
        driver = Driver(name='Sam Driver', email='sam@ovm.test')
        vehicle = Vehicle(registration=registration, make='Ford', model='Focus', colour='Blue', fuel_type=fuel_type)
        db.session.add_all([customer, driver, vehicle])
        db.session.flush()
        job = Job(
            job_number=job_number,
            customer_id=customer.id,
            driver_id=driver.id,
            vehicle_id=vehicle.id,
            status=status,
            collection_address={'line1': '1 High Street', 'city': 'Leeds', 'postcode': 'LS1 1AA'},
            delivery_address={'line1': '2 Low Road', 'city': 'York', 'postcode': 'YO1 1AA'},
            total_movement_fee=150.0,
            **kwargs
        )
        db.session.add(job)
        db.session.commit()
        return job
    return factory
