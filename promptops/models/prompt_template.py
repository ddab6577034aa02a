"""Prompt template models"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VariableType(str, Enum):
    """Declared variable types"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class VariableConstraints(BaseModel):
    """Optional constraints checked against a bound value"""
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    enum: Optional[List[Any]] = None


class PromptVariable(BaseModel):
    """Variable declared by a template"""
    name: str
    type: VariableType = VariableType.STRING
    required: bool = True
    description: Optional[str] = None
    default: Optional[Any] = None
    constraints: Optional[VariableConstraints] = None

    @property
    def has_default(self) -> bool:
        return self.default is not None


class PromptTemplate(BaseModel):
    """Prompt template with versioning"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: str = ""
    category: str
    template: str  # Template string with {{variables}}
    variables: List[PromptVariable] = Field(default_factory=list)
    version: str = "1.0.0"
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    created_by: Optional[str] = None

    # Metadata
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    def get_variable(self, name: str) -> Optional[PromptVariable]:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None


class PromptTemplateCreate(BaseModel):
    """Fields supplied by the caller when creating a template"""
    name: str
    description: str = ""
    category: str
    template: str
    variables: List[PromptVariable] = Field(default_factory=list)
    created_by: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PromptVersion(BaseModel):
    """Version history for prompt templates"""
    model_config = ConfigDict(frozen=True)

    template_id: str
    version: str
    template: str
    variables: List[PromptVariable]
    changelog: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    created_by: Optional[str] = None


class CompilationOptions(BaseModel):
    """Compiler behaviour switches"""
    strict_mode: bool = True
    missing_value: str = ""
    preserve_whitespace: bool = False
    escape_html: bool = True


class ValidationResult(BaseModel):
    """Aggregated outcome of validating a template against bindings"""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    missing_variables: List[str] = Field(default_factory=list)
    unused_variables: List[str] = Field(default_factory=list)
    compiled_prompt: Optional[str] = None


class SortField(str, Enum):
    """Search sort keys"""
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    NAME = "name"
    USAGE = "usage"
    PERFORMANCE = "performance"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SearchCriteria(BaseModel):
    """Template search filters, sort and pagination"""
    query: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    is_active: Optional[bool] = None
    has_variables: Optional[bool] = None
    sort_by: Optional[SortField] = None
    sort_order: SortOrder = SortOrder.ASC
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)
