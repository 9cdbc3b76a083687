from functools import wraps
from flask import request
from pydantic import ValidationError
from .responses import validation_error_response


def validate_schema(schema, source="json"):
    """Decorator to validate the request body (or query string) against a Pydantic schema."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            raw = request.args.to_dict() if source == "args" else (request.get_json(silent=True) or {})
            try:
                obj = schema(**raw)
            except ValidationError as ve:
                return validation_error_response(ve.errors())
            request.validated_data = obj
            return fn(*args, **kwargs)
        return wrapper

    return decorator
