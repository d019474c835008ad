from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class CredentialRequest(BaseModel):
  api_key: Optional[str] = Field(None, min_length=1)


class StateResponse(BaseModel):
  state: str
  files: list[str] = Field(default_factory=list)
  # blob: handles, served from /blobs/{handle}
  previews: list[str] = Field(default_factory=list)
  portrait: Optional[str] = None
  video: Optional[str] = None
  progress_message: Optional[str] = None
  error: Optional[str] = None
  credential_problem: bool = False
  credential_selected: bool = False
