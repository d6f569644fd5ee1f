import logging
from typing import Any, Mapping, Type, TypeVar

from pydantic import BaseModel, ValidationError

from mentorchat.core.errors import DataCorrupted

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def decode_document(model: Type[ModelT], doc: Mapping[str, Any]) -> ModelT:
    """Validate a raw store record into ``model``.

    ``_id`` is normalized to a string ``id``. Missing or mistyped required
    fields raise ``DataCorrupted`` instead of falling back to defaults.
    """
    data = dict(doc)
    if "_id" in data:
        data["id"] = str(data.pop("_id"))
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Corrupted %s record %s: %s", model.__name__, data.get("id"), exc)
        raise DataCorrupted() from exc
