"""Per-user AI tool settings consumed by prompt and tool assembly."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ToolFlags(BaseModel):
    postgres_query: bool = True
    postgres_schema: bool = True
    html_to_markdown: bool = True
    pdf_to_markdown: bool = True
    code_exec_python: bool = True


class WhitelistUrl(BaseModel):
    id: Optional[int] = None
    url: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class WhitelistPdf(BaseModel):
    id: Optional[int] = None
    pdf_url: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class Whitelists(BaseModel):
    urls: list[WhitelistUrl] = []
    pdfs: list[WhitelistPdf] = []


class ToolSettings(BaseModel):
    tools: ToolFlags = Field(default_factory=ToolFlags)
    whitelists: Whitelists = Field(default_factory=Whitelists)
    updated_at: Optional[datetime] = None
