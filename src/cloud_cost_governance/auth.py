"""Tenant resolution for API requests.

Authentication happens upstream; requests arrive with the caller's tenant in
the ``X-Tenant-ID`` header.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Header

from cloud_cost_governance.errors import ValidationError


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int


def get_current_tenant(
    x_tenant_id: Annotated[str | None, Header(description="Owning tenant id")] = None,
) -> TenantContext:
    """Resolve the request's tenant from the X-Tenant-ID header.

    Raises:
        ValidationError: If the header is missing or not a positive integer.
    """
    if x_tenant_id is None or not x_tenant_id.strip().isdigit() or int(x_tenant_id) <= 0:
        raise ValidationError("X-Tenant-ID header must be a positive integer")
    return TenantContext(tenant_id=int(x_tenant_id))
