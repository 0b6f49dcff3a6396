"""Configuration validation models using Pydantic."""
from __future__ import annotations

import logging
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import ConfigError


DEFAULT_SHEET_KINDS: Dict[str, List[str]] = {
    "university": ["universit", "institution", "college"],
    "program": ["program", "course", "degree"],
}


class IngestionConfig(BaseModel):
    """Workbook reading and row validation settings."""

    allowed_extensions: List[str] = Field(
        default_factory=lambda: [".xlsx", ".xlsm", ".csv"],
        description="File extensions accepted by the importer",
    )
    max_failure_rate: float = Field(
        0.5, ge=0, le=1, description="Sheets with a larger failed-row fraction are rejected"
    )
    max_workers: int = Field(1, ge=1, description="Parallel sheet validation workers")
    decimal_separator: Literal["auto", ".", ","] = Field("auto", description="Decimal mark for text numbers")
    default_currency: str = Field("AED", min_length=3, max_length=3, description="Currency for bare tuition amounts")
    on_sheet_rejection: Literal["abort", "skip_sheet"] = Field(
        "abort", description="Abort the whole import or drop only the rejected sheet"
    )
    derive_universities_from_programs: bool = Field(
        False, description="Create name-only universities for unmatched program references"
    )
    sheet_kinds: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SHEET_KINDS.items()},
        description="Sheet-name substrings hinting the entity kind of a sheet",
    )

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        """Lower-case and dot-prefix every extension."""
        out = []
        for ext in v:
            text = str(ext).strip().lower()
            if not text:
                continue
            out.append(text if text.startswith(".") else f".{text}")
        if not out:
            raise ValueError("allowed_extensions must not be empty")
        return out

    @field_validator("default_currency")
    @classmethod
    def upper_currency(cls, v):
        return v.upper()

    @field_validator("sheet_kinds")
    @classmethod
    def validate_sheet_kinds(cls, v):
        unknown = set(v) - set(DEFAULT_SHEET_KINDS)
        if unknown:
            raise ValueError(f"Unknown sheet kinds: {sorted(unknown)}")
        return {k: [str(t).strip().lower() for t in tokens if str(t).strip()] for k, tokens in v.items()}


class ResolutionConfig(BaseModel):
    near_duplicate_cutoff: Optional[float] = Field(
        0.92, gt=0, le=1, description="difflib ratio above which names count as near-duplicates; null disables"
    )


class LoggingConfig(BaseModel):
    level: str = Field("INFO", description="Logging level name")
    file_name: str = Field("import_log.txt", description="Log file written under paths.logs_dir")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        name = str(v).upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"Unknown logging level: {v}")
        return name


class PathsConfig(BaseModel):
    logs_dir: str = "logs"
    reports_dir: str = "reports"


class ImportConfig(BaseModel):
    """Complete importer configuration."""

    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    column_map: Optional[str] = Field(None, description="Extra YAML synonym table merged over the built-in one")


def load_and_validate_config(config_dict: Optional[dict]) -> ImportConfig:
    """
    Validate a raw configuration mapping.

    Args:
        config_dict: Parsed YAML mapping (None is treated as empty)

    Returns:
        Validated ImportConfig object

    Raises:
        ConfigError: If configuration is invalid
    """
    if config_dict is None:
        config_dict = {}
    if not isinstance(config_dict, dict):
        raise ConfigError(f"Configuration must be a mapping, got {type(config_dict).__name__}")
    try:
        return ImportConfig.model_validate(config_dict)
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        raise ConfigError(f"Invalid configuration: {errors}", context={"errors": errors}) from exc
