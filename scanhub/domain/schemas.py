"""
Schema Validation Module
========================
JSON schema validation for request payloads.
"""

from typing import Dict, Any, Optional

from ..core.logging_config import get_logger
from ..core.exceptions import SchemaValidationError

logger = get_logger(__name__)

# Request body schemas, jsonschema draft 7 format

_USERNAME = {"type": "string", "pattern": "^[a-zA-Z0-9]{1,20}$"}
_PASSWORD = {"type": "string", "minLength": 8, "maxLength": 30}
_EMAIL = {
    "type": "string",
    "pattern": r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
    "maxLength": 254,
}

_SCHEMAS: Dict[str, Dict[str, Any]] = {
    # Actions on a user: follow / unfollow
    "user_action": {
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["follow", "unfollow"]},
        },
        "required": ["type"],
    },

    # Actions on a file: rescan / like / unlike
    "file_action": {
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["rescan", "like", "unlike"]},
        },
        "required": ["type"],
    },

    "comment": {
        "type": "object",
        "properties": {
            "body": {"type": "string", "minLength": 1},
        },
        "required": ["body"],
    },

    "register": {
        "type": "object",
        "properties": {
            "username": _USERNAME,
            "password": _PASSWORD,
            "email": _EMAIL,
        },
        "required": ["username", "password", "email"],
    },

    "login": {
        "type": "object",
        "properties": {
            "username": {"type": "string", "minLength": 1},
            "password": {"type": "string", "minLength": 1},
        },
        "required": ["username", "password"],
    },

    "email": {
        "type": "object",
        "properties": {
            "email": _EMAIL,
        },
        "required": ["email"],
    },

    "password": {
        "type": "object",
        "properties": {
            "password": _PASSWORD,
        },
        "required": ["password"],
    },

    "password_update": {
        "type": "object",
        "properties": {
            "oldpassword": {"type": "string", "minLength": 1},
            "newpassword": _PASSWORD,
        },
        "required": ["oldpassword", "newpassword"],
    },

    "email_update": {
        "type": "object",
        "properties": {
            "password": {"type": "string", "minLength": 1},
            "email": _EMAIL,
        },
        "required": ["password", "email"],
    },
}


def register_schema(name: str, schema: Dict[str, Any]) -> None:
    """
    Register a JSON schema for validation.

    Args:
        name: Schema name
        schema: JSON schema dict
    """
    _SCHEMAS[name] = schema
    logger.debug(f"Registered schema: {name}")


def get_schema(name: str) -> Optional[Dict[str, Any]]:
    """
    Get a registered schema by name.

    Args:
        name: Schema name

    Returns:
        Optional[Dict[str, Any]]: Schema dict or None if not found
    """
    return _SCHEMAS.get(name)


def validate_payload(name: str, payload: Any) -> Dict[str, Any]:
    """
    Validate a request payload against a named schema.

    Args:
        name: Schema name
        payload: Decoded JSON body

    Returns:
        Dict[str, Any]: The validated payload

    Raises:
        SchemaValidationError: If the payload does not match the schema
        KeyError: If no schema is registered under ``name``
    """
    import jsonschema
    from jsonschema.exceptions import ValidationError

    schema = _SCHEMAS[name]

    try:
        jsonschema.validate(instance=payload, schema=schema)
    except ValidationError as e:
        logger.info(f"Schema validation failed for {name}: {e.message}")
        raise SchemaValidationError(
            f"Payload failed validation against schema '{name}': {e.message}",
            schema_name=name,
            errors=[e.message],
            cause=e,
        )

    return payload
