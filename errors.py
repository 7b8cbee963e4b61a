"""Error types raised by the domain modules and mapped to HTTP in main.py."""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(ServiceError):
    status_code = 400


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class PaymentNotCompleted(ServiceError):
    status_code = 400

    def __init__(self, message: str = "Payment not completed"):
        super().__init__(message)


class ExternalServiceFailure(ServiceError):
    status_code = 502
