"""Pydantic models for versioned prompt templates."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class PromptCategory(str, Enum):
    CHAT = "chat"
    COMPLETION = "completion"
    SYSTEM_INSTRUCTION = "system_instruction"
    CODE_GENERATION = "code_generation"
    DATA_EXTRACTION = "data_extraction"


class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class PromptVariable(BaseModel):
    """A named placeholder of a template."""
    name: str = Field(..., min_length=1)
    type: VariableType = VariableType.STRING
    required: bool = True
    default_value: Any = None
    description: str = ""


class Prompt(BaseModel):
    """A prompt template; ``version`` is the version the template and variables belong to."""
    id: str
    name: str
    description: str = ""
    category: PromptCategory
    template: str
    variables: List[PromptVariable] = Field(default_factory=list)
    version: int = 1
    is_active: bool = True
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PromptUpdate(BaseModel):
    """Partial update of a prompt; only explicitly set fields apply."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[PromptCategory] = None
    template: Optional[str] = Field(None, min_length=1)
    variables: Optional[List[PromptVariable]] = None
    is_active: Optional[bool] = None
    tags: Optional[List[str]] = None
    created_by: Optional[str] = None


class PromptVersion(BaseModel):
    """A stored revision of a prompt's template."""
    id: str
    prompt_id: str
    version: int
    template: str
    variables: List[PromptVariable] = Field(default_factory=list)
    is_active: bool
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    change_note: Optional[str] = None


class RenderedPrompt(BaseModel):
    template: str
    variables: Dict[str, Any]
    rendered_text: str
    version: int
