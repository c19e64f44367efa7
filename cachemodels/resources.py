from typing import Optional, Tuple

from pydantic import Field, field_validator

from .base import CacheBaseModel, ResourceRelation, validate_segment


class ResourceRef(CacheBaseModel):
    service: str = Field(..., description="Service owning the resource")
    resource_type: str = Field(..., description="Resource type, e.g. 'instance'")
    resource_id: Optional[str] = Field(
        default=None, description="Resource identifier, None for the whole collection"
    )
    relation: ResourceRelation = Field(
        default=ResourceRelation.DIRECT,
        description="direct for describe-style entries, listing for enumerations",
    )

    @field_validator("service", "resource_type")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return validate_segment(v, "service/resource_type")

    @field_validator("resource_id")
    @classmethod
    def validate_resource_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v:
            raise ValueError("resource_id must not be empty")
        return v

    @property
    def index_key(self) -> Tuple[str, str, Optional[str]]:
        return (self.service, self.resource_type, self.resource_id)

    @classmethod
    def listing(
        cls, service: str, resource_type: str, resource_id: Optional[str] = None
    ) -> "ResourceRef":
        return cls(
            service=service,
            resource_type=resource_type,
            resource_id=resource_id,
            relation=ResourceRelation.LISTING,
        )
