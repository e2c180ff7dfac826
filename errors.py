"""
Error taxonomy shared by the domain modules.

Every error carries the HTTP status it maps to; main.py renders them as
{"message": ...} responses.
"""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(StoreError):
    status_code = 400


class Unauthorized(StoreError):
    status_code = 401


class Forbidden(StoreError):
    status_code = 403


class NotFound(StoreError):
    status_code = 404


class Conflict(StoreError):
    status_code = 400


class OutOfStock(InvalidInput):
    def __init__(self, message: str, product_id: str = None):
        super().__init__(message)
        self.product_id = product_id


class ProductNotFound(NotFound):
    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class InternalError(StoreError):
    status_code = 500
