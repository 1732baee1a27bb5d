from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional
from pydantic import ConfigDict


class UserContext(BaseModel):
    """User identity and permission context."""
    user_id: Optional[str] = Field(default=None, description="Unique identifier for the user.")
    tenant_id: Optional[str] = Field(default=None, description="Organization/Tenant identifier.")
    roles: List[str] = Field(default_factory=list, description="List of assigned roles.")
    model_config = ConfigDict(extra="ignore")


class RolePolicy(BaseModel):
    """Defines which business modules a role may report on."""

    description: str = Field(..., description="Human-readable description of the role")
    role: str = Field(..., description="Role ID used for logging and auditing")
    allowed_modules: List[str] = Field(default_factory=list, description="Module codes, or '*' for every module")

    @field_validator("allowed_modules")
    def validate_modules(cls, v: List[str]) -> List[str]:
        """Normalizes module codes and rejects partial wildcards."""
        normalized = []
        for module in v:
            module = module.strip().upper()
            if module == "*":
                normalized.append(module)
                continue
            if not module or "*" in module or "." in module:
                raise ValueError(f"Invalid module '{module}'. Use a plain module code or '*'.")
            normalized.append(module)
        return normalized


class PolicyFileConfig(BaseModel):
    """File-level schema for policies.json."""
    version: int = Field(1, description="Schema version")
    roles: Dict[str, RolePolicy] = Field(default_factory=dict)

    def get_role(self, role: str) -> Optional[RolePolicy]:
        return self.roles.get(role)
