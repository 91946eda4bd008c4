import os
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from . import log

logger = log.get_logger(__name__)


class EnvVarSpec(BaseModel):
    """Declaration of a single environment variable.

    ``type`` is a pydantic field definition tuple used by ``validate``,
    e.g. ``(int, ...)`` for a required int.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    is_optional: bool = False
    type: tuple = (str, ...)


def get_raw(spec: EnvVarSpec) -> Optional[str]:
    value = os.environ.get(spec.id)
    if value is None or value == "":
        return spec.default
    return value


def parse(spec: EnvVarSpec) -> Any:
    raw = get_raw(spec)
    if raw is None:
        if spec.is_optional:
            return None
        raise ValueError(f"Environment variable '{spec.id}' is not set")
    return spec.parse(raw)


def validate(specs: List[EnvVarSpec]) -> bool:
    """Parse every spec and type-check the results in one pydantic model."""
    fields = {}
    values = {}
    errors = []
    for spec in specs:
        field_type = spec.type
        if spec.is_optional:
            field_type = (Optional[field_type[0]], None)
        fields[spec.id] = field_type
        try:
            values[spec.id] = parse(spec)
        except Exception as e:
            errors.append(f"{spec.id}: {e}")

    if errors:
        for error in errors:
            logger.error(f"Invalid environment variable {error}")
        return False

    model = create_model("EnvVars", **fields)
    try:
        model(**values)
    except ValidationError as e:
        logger.error(f"Environment validation failed: {e}")
        return False
    return True
