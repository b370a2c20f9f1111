class ServiceError(Exception):
    """Base error raised by the service layer; ``code`` is the HTTP status the API returns."""

    code = 400

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class JobNotFound(ServiceError):
    code = 404


class JobStateError(ServiceError):
    code = 409


class ExpenseNotFound(ServiceError):
    code = 404


class MediaStoreError(ServiceError):
    pass


class InvalidJobNumber(MediaStoreError):
    pass


class InvalidFileType(MediaStoreError):
    pass


class InvalidStage(MediaStoreError):
    pass


class PayloadTooLarge(MediaStoreError):
    code = 413


class ImageProcessingError(ServiceError):
    code = 422


class ArchiveError(ServiceError):
    pass
