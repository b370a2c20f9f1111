from ovm.models.customer import Customer
from ovm.models.driver import Driver
from ovm.models.vehicle import Vehicle
from ovm.models.job import Job, JobStatus
from ovm.models.job_audit import JobAudit
from ovm.models.inspection import InspectionRecord
from ovm.models.expense import Expense

__all__ = [
    'Customer',
    'Driver',
    'Vehicle',
    'Job',
    'JobStatus',
    'JobAudit',
    'InspectionRecord',
    'Expense',
]
