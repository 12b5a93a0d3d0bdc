"""
Transform Notion property values into Google Sheets cell values
"""

from typing import Any, Callable, Dict, Optional, Union
import logging

logger = logging.getLogger(__name__)

CellValue = Union[str, int, float, bool]

DEFAULT_DELIMITER = ", "
DATE_RANGE_SEPARATOR = " → "


class PropertyTransformer:
    """
    Map one typed Notion property to one cell value.

    Handles:
    - Every Notion property type used in a mapping
    - Formula and rollup sub-types
    - List-valued types joined with a configurable delimiter

    Unknown or newly introduced property types become "" so a single
    unsupported column never fails a whole batch.
    """

    def __init__(self):
        self._transformers: Dict[str, Callable[[Dict[str, Any], str], CellValue]] = {
            "title": self._transform_title,
            "rich_text": self._transform_rich_text,
            "number": self._transform_number,
            "select": self._transform_select,
            "multi_select": self._transform_multi_select,
            "date": self._transform_date,
            "people": self._transform_people,
            "files": self._transform_files,
            "checkbox": self._transform_checkbox,
            "url": self._transform_url,
            "email": self._transform_email,
            "phone_number": self._transform_phone_number,
            "formula": self._transform_formula,
            "relation": self._transform_relation,
            "rollup": self._transform_rollup,
            "created_time": self._transform_created_time,
            "created_by": self._transform_created_by,
            "last_edited_time": self._transform_last_edited_time,
            "last_edited_by": self._transform_last_edited_by,
            "status": self._transform_status,
            "unique_id": self._transform_unique_id,
        }

    @property
    def supported_types(self):
        return set(self._transformers)

    def transform(
        self,
        property_type: str,
        value: Optional[Dict[str, Any]],
        delimiter: Optional[str] = None,
    ) -> CellValue:
        """
        Transform a raw Notion property object (``{"type": ..., "<type>": ...}``).

        Never raises: malformed values degrade to "".
        """
        transformer = self._transformers.get(property_type)
        if transformer is None:
            logger.debug(f"Unsupported Notion property type: {property_type}")
            return ""

        if not isinstance(value, dict):
            return ""

        try:
            return transformer(value, delimiter or DEFAULT_DELIMITER)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            logger.warning(f"Malformed {property_type} property value: {str(e)}")
            return ""

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    @staticmethod
    def _plain_text(fragments) -> str:
        return "".join(fragment.get("plain_text") or "" for fragment in fragments or [])

    def _transform_title(self, value, delimiter):
        return self._plain_text(value.get("title"))

    def _transform_rich_text(self, value, delimiter):
        return self._plain_text(value.get("rich_text"))

    def _transform_url(self, value, delimiter):
        return value.get("url") or ""

    def _transform_email(self, value, delimiter):
        return value.get("email") or ""

    def _transform_phone_number(self, value, delimiter):
        return value.get("phone_number") or ""

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    def _transform_number(self, value, delimiter):
        number = value.get("number")
        return number if number is not None else 0

    def _transform_checkbox(self, value, delimiter):
        return bool(value.get("checkbox") or False)

    def _transform_select(self, value, delimiter):
        return (value.get("select") or {}).get("name") or ""

    def _transform_status(self, value, delimiter):
        return (value.get("status") or {}).get("name") or ""

    def _transform_date(self, value, delimiter):
        date = value.get("date")
        if not date:
            return ""

        start = date.get("start") or ""
        end = date.get("end")
        return f"{start}{DATE_RANGE_SEPARATOR}{end}" if end else start

    def _transform_unique_id(self, value, delimiter):
        unique_id = value.get("unique_id")
        if not unique_id:
            return ""

        prefix = unique_id.get("prefix")
        number = unique_id.get("number")
        return f"{prefix}-{number}" if prefix else str(number)

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def _transform_multi_select(self, value, delimiter):
        return delimiter.join(option.get("name") or "" for option in value.get("multi_select") or [])

    def _transform_people(self, value, delimiter):
        return delimiter.join(person.get("name") or person.get("id") or "" for person in value.get("people") or [])

    def _transform_files(self, value, delimiter):
        urls = []
        for item in value.get("files") or []:
            hosted = item.get("file") or {}
            external = item.get("external") or {}
            urls.append(hosted.get("url") or external.get("url") or "")
        return delimiter.join(urls)

    def _transform_relation(self, value, delimiter):
        return delimiter.join(related.get("id") or "" for related in value.get("relation") or [])

    # ------------------------------------------------------------------
    # Computed
    # ------------------------------------------------------------------

    def _transform_formula(self, value, delimiter):
        formula = value.get("formula")
        if not formula:
            return ""

        formula_type = formula.get("type")
        if formula_type == "string":
            return formula.get("string") or ""
        elif formula_type == "number":
            number = formula.get("number")
            return number if number is not None else 0
        elif formula_type == "boolean":
            return bool(formula.get("boolean") or False)
        elif formula_type == "date":
            return (formula.get("date") or {}).get("start") or ""
        return ""

    def _transform_rollup(self, value, delimiter):
        rollup = value.get("rollup")
        if not rollup:
            return ""

        rollup_type = rollup.get("type")
        if rollup_type == "number":
            number = rollup.get("number")
            return number if number is not None else 0
        elif rollup_type == "date":
            return (rollup.get("date") or {}).get("start") or ""
        elif rollup_type == "array":
            return str(len(rollup.get("array") or []))
        return ""

    # ------------------------------------------------------------------
    # Audit fields
    # ------------------------------------------------------------------

    def _transform_created_time(self, value, delimiter):
        return value.get("created_time") or ""

    def _transform_last_edited_time(self, value, delimiter):
        return value.get("last_edited_time") or ""

    def _transform_created_by(self, value, delimiter):
        user = value.get("created_by") or {}
        return user.get("name") or user.get("id") or ""

    def _transform_last_edited_by(self, value, delimiter):
        user = value.get("last_edited_by") or {}
        return user.get("name") or user.get("id") or ""


property_transformer = PropertyTransformer()
