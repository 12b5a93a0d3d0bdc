"""
Pydantic schemas for the Notion → Google Sheets column mapping
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal

NotionPropertyType = Literal[
    "title",
    "rich_text",
    "number",
    "select",
    "multi_select",
    "date",
    "people",
    "files",
    "checkbox",
    "url",
    "email",
    "phone_number",
    "formula",
    "relation",
    "rollup",
    "created_time",
    "created_by",
    "last_edited_time",
    "last_edited_by",
    "status",
    "unique_id",
]

IDENTITY_COLUMN_HEADER = "Notion UUID"
LAST_SYNC_COLUMN_HEADER = "Last Synced"


class TransformOptions(BaseModel):
    """Per-column rendering options"""
    date_format: Optional[str] = Field(None, alias="dateFormat")
    number_format: Optional[str] = Field(None, alias="numberFormat")
    include_time: Optional[bool] = Field(None, alias="includeTime")
    delimiter: Optional[str] = None

    class Config:
        populate_by_name = True


class ColumnMapping(BaseModel):
    """One Notion property → one sheet column"""
    notion_property_id: str = Field(..., alias="notionPropertyId")
    notion_property_name: str = Field(..., alias="notionPropertyName")
    # Kept as a plain string: new Notion property types must not break a mapping
    notion_property_type: str = Field(..., alias="notionPropertyType")
    sheet_column_index: int = Field(..., ge=0, alias="sheetColumnIndex")
    sheet_column_letter: str = Field(..., alias="sheetColumnLetter")
    transform_options: Optional[TransformOptions] = Field(None, alias="transformOptions")

    class Config:
        populate_by_name = True


class MappingConfig(BaseModel):
    """
    Column mapping of one automation.

    Stored as JSON on notion_sheets_mappings.mapping_config using the
    camelCase keys of the aliases; read-only to the pipeline.
    """
    automation_id: Optional[int] = Field(None, alias="automationId")
    sheet_name: str = Field("Sheet1", alias="sheetName")
    header_row: int = Field(1, ge=1, alias="headerRow")
    data_start_row: int = Field(2, ge=1, alias="dataStartRow")
    columns: List[ColumnMapping] = Field(default_factory=list)
    include_notion_id: bool = Field(True, alias="includeNotionId")
    include_last_sync: bool = Field(False, alias="includeLastSync")

    @field_validator("sheet_name")
    @classmethod
    def clean_sheet_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("sheetName cannot be empty")
        return v

    @property
    def identity_column_index(self) -> int:
        """Zero-based index of the identity column (right after mapped columns)"""
        return len(self.columns)

    def header_values(self) -> List[str]:
        headers = [column.notion_property_name for column in self.columns]
        if self.include_notion_id:
            headers.append(IDENTITY_COLUMN_HEADER)
        if self.include_last_sync:
            headers.append(LAST_SYNC_COLUMN_HEADER)
        return headers

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "sheetName": "Tasks",
                "headerRow": 1,
                "dataStartRow": 2,
                "includeNotionId": True,
                "includeLastSync": False,
                "columns": [
                    {
                        "notionPropertyId": "title",
                        "notionPropertyName": "Name",
                        "notionPropertyType": "title",
                        "sheetColumnIndex": 0,
                        "sheetColumnLetter": "A"
                    },
                    {
                        "notionPropertyId": "%3AUPp",
                        "notionPropertyName": "Tags",
                        "notionPropertyType": "multi_select",
                        "sheetColumnIndex": 1,
                        "sheetColumnLetter": "B",
                        "transformOptions": {"delimiter": "; "}
                    }
                ]
            }
        }
